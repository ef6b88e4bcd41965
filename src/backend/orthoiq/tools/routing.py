"""
Triage Routing — picks specialists when a caller names none.

Each specialty is viable when its data is critical or reasonably complete,
or when a little data plus keywords in the complaint suggest it is needed.
Triage confidence grows with completeness and the number of viable
specialties, and decides how many of them are consulted:
  confidence > high threshold   → every viable specialty
  minimum core data present     → the first few
  otherwise                     → triage alone
"""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from orthoiq.config import settings
from orthoiq.models.schemas import CaseInput, SpecialtyTag, TriageRouting
from orthoiq.tools.case_metrics import core_data_score, specialty_data_score

logger = logging.getLogger(__name__)

ROUTED_SPECIALTIES = (
    SpecialtyTag.PAIN,
    SpecialtyTag.MOVEMENT,
    SpecialtyTag.STRENGTH,
    SpecialtyTag.MIND,
)

_MIND_WORDS = (
    "stress", "anxious", "worried", "scared", "nervous", "fear", "chronic", "sleep",
    "athlete", "sport", "surgery", "post-op", "re-injury", "recurring",
)

# words that suggest a specialty when its own data is thin
INFERENCE_KEYWORDS: Dict[SpecialtyTag, Tuple[str, ...]] = {
    SpecialtyTag.PAIN: ("pain", "hurt", "ache"),
    SpecialtyTag.MOVEMENT: ("walk", "move", "stiff"),
    SpecialtyTag.STRENGTH: ("weak", "strength", "function"),
    SpecialtyTag.MIND: _MIND_WORDS,
}

# complaint keywords naming a primary specialty, checked in order
PRIMARY_KEYWORDS: List[Tuple[SpecialtyTag, Tuple[str, ...]]] = [
    (SpecialtyTag.PAIN, ("pain", "analges")),
    (SpecialtyTag.MOVEMENT, ("movement", "biomechan", "gait")),
    (SpecialtyTag.STRENGTH, ("strength", "rehabilitation", "function")),
    (SpecialtyTag.MIND, ("psycho", "mental", "anxiety", "depression") + _MIND_WORDS),
]


def _complaint_text(case: CaseInput) -> str:
    return " ".join([case.primary_complaint, *case.symptoms]).lower()


def _is_critical(case: CaseInput, tag: SpecialtyTag) -> bool:
    if tag == SpecialtyTag.PAIN:
        return case.pain_level is not None and case.pain_level > 6
    if tag == SpecialtyTag.MIND:
        anxiety = (case.model_extra or {}).get("anxiety_level")
        return isinstance(anxiety, (int, float)) and anxiety > 7
    return False


def primary_specialty(complaint: str) -> SpecialtyTag:
    """First specialty whose keywords appear in the complaint; strength by default."""
    text = complaint.lower()
    for tag, words in PRIMARY_KEYWORDS:
        if any(w in text for w in words):
            return tag
    return SpecialtyTag.STRENGTH


def viable_specialists(case: CaseInput, scores: Dict[SpecialtyTag, float]) -> List[SpecialtyTag]:
    text = _complaint_text(case)
    viable = [SpecialtyTag.TRIAGE]
    for tag in ROUTED_SPECIALTIES:
        score = scores[tag]
        if _is_critical(case, tag) or score >= 0.3:
            viable.append(tag)
        elif score >= 0.1 and any(w in text for w in INFERENCE_KEYWORDS[tag]):
            viable.append(tag)

    if len(viable) == 1:
        viable.append(primary_specialty(case.primary_complaint))
    return viable


def triage_confidence(completeness: float, viable_count: int) -> float:
    return min(completeness + min(viable_count * 0.1, 0.3), 0.95)


def select_specialists(
    recommended: Sequence[SpecialtyTag], confidence: float, minimum_data_met: bool
) -> List[SpecialtyTag]:
    if confidence > settings.routing_high_confidence:
        return list(recommended)
    if minimum_data_met:
        return list(recommended[: settings.routing_medium_limit])
    return [SpecialtyTag.TRIAGE]


def route_case(case: CaseInput) -> TriageRouting:
    """Decide which specialists a case with no explicit request should see."""
    core = core_data_score(case)
    scores = {tag: specialty_data_score(case, tag) for tag in ROUTED_SPECIALTIES}
    completeness = core * 0.6 + sum(scores.values()) / len(scores) * 0.4

    recommended = viable_specialists(case, scores)
    confidence = triage_confidence(completeness, len(recommended))
    minimum_data_met = core >= settings.routing_min_core_score
    selected = select_specialists(recommended, confidence, minimum_data_met)

    logger.info(
        "Triage routing: completeness %.0f%%, confidence %.0f%% -> %s",
        completeness * 100, confidence * 100, ", ".join(t.value for t in selected),
    )
    if selected == [SpecialtyTag.TRIAGE]:
        logger.info("Data insufficient for a multi-specialist consultation; routing to triage only")

    return TriageRouting(
        core_data_score=round(core, 3),
        completeness=round(completeness, 3),
        confidence=round(confidence, 3),
        minimum_data_met=minimum_data_met,
        recommended_specialists=recommended,
        selected_specialists=selected,
    )
