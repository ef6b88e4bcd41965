"""
Synthesis — merges successful specialist responses into one phased plan.

Recommendations are bucketed into immediate / short-term / long-term
phases and merged across specialists by normalized intervention. Red
flags come from the assessment envelopes plus a keyword scan of the raw
text. Consensus confidence starts from the mean specialist confidence and
drops 0.05 per conference disagreement.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Dict, List, Optional

from orthoiq.agent.errors import NoSuccessfulResponses
from orthoiq.models.schemas import (
    ConferenceMetadata,
    ConsensusLevel,
    PlanItem,
    PlanPhase,
    SpecialistResponse,
    SynthesizedPlan,
)
from orthoiq.tools.case_metrics import parse_duration_days
from orthoiq.tools.conference import normalize_intervention

logger = logging.getLogger(__name__)

RED_FLAG_KEYWORDS = {
    "numbness": "Numbness reported: screen for nerve involvement",
    "loss of bladder": "Loss of bladder control: urgent physician evaluation",
    "fever": "Fever with musculoskeletal pain: rule out infection",
    "night pain": "Night pain: rule out serious pathology",
    "unexplained weight loss": "Unexplained weight loss: rule out systemic disease",
    "saddle anesthesia": "Saddle anesthesia: urgent evaluation for cauda equina",
}

DISAGREEMENT_PENALTY = 0.05
MIN_CONSENSUS_CONFIDENCE = 0.1

_IMMEDIATE_WORDS = ("immediate", "urgent", "now", "today", "asap", "acute")
_LONG_TERM_WORDS = ("ongoing", "long-term", "long term", "maintenance", "chronic", "lifelong")
_WORD = re.compile(r"[a-z]{5,}")


def classify_phase(timeline: Optional[str], priority: int) -> PlanPhase:
    if timeline:
        lower = timeline.lower()
        if any(re.search(rf"\b{w}\b", lower) for w in _IMMEDIATE_WORDS):
            return PlanPhase.IMMEDIATE
        if any(w in lower for w in _LONG_TERM_WORDS):
            return PlanPhase.LONG_TERM
        days = parse_duration_days(timeline)
        if days is not None:
            if days <= 7:
                return PlanPhase.IMMEDIATE
            if days <= 42:
                return PlanPhase.SHORT_TERM
            return PlanPhase.LONG_TERM
    if priority <= 2:
        return PlanPhase.IMMEDIATE
    if priority == 3:
        return PlanPhase.SHORT_TERM
    return PlanPhase.LONG_TERM


def build_phases(responses: List[SpecialistResponse]) -> Dict[PlanPhase, List[PlanItem]]:
    merged: Dict[str, PlanItem] = {}
    for response in responses:
        tag = response.specialist.value
        for rec in response.assessment.recommendations:
            key = normalize_intervention(rec.intervention)
            if not key:
                continue
            item = merged.get(key)
            if item is None:
                merged[key] = PlanItem(
                    intervention=rec.intervention.strip(),
                    phase=classify_phase(rec.timeline, rec.priority),
                    priority=rec.priority,
                    timeline=rec.timeline,
                    recommended_by=[tag],
                    evidence_grade=rec.evidence_grade,
                )
                continue
            if tag not in item.recommended_by:
                item.recommended_by.append(tag)
            if rec.priority < item.priority:
                item.priority = rec.priority
                item.timeline = rec.timeline or item.timeline
                item.phase = classify_phase(item.timeline, item.priority)
            item.timeline = item.timeline or rec.timeline
            item.evidence_grade = item.evidence_grade or rec.evidence_grade

    phases: Dict[PlanPhase, List[PlanItem]] = {phase: [] for phase in PlanPhase}
    for item in merged.values():
        phases[item.phase].append(item)
    for items in phases.values():
        items.sort(key=lambda i: (i.priority, -len(i.recommended_by)))
    return phases


def collect_red_flags(responses: List[SpecialistResponse]) -> List[str]:
    flags: List[str] = []
    seen = set()

    def add(flag: str) -> None:
        key = flag.strip().lower()
        if key and key not in seen:
            seen.add(key)
            flags.append(flag.strip())

    for response in responses:
        for flag in response.assessment.red_flags:
            add(flag)
    for response in responses:
        text = f"{response.assessment.summary} {response.assessment.raw_response}".lower()
        for keyword, message in RED_FLAG_KEYWORDS.items():
            if keyword in text:
                add(message)
    return flags


def consensus_confidence(responses: List[SpecialistResponse], disagreement_count: int) -> float:
    mean = sum(r.confidence for r in responses) / len(responses)
    return round(max(MIN_CONSENSUS_CONFIDENCE, mean - DISAGREEMENT_PENALTY * disagreement_count), 3)


def consensus_level(responses: List[SpecialistResponse]) -> ConsensusLevel:
    """Count recommendation terms (and whole interventions) shared by at least two specialists."""
    if len(responses) < 2:
        return ConsensusLevel.LOW
    owners: Dict[str, set] = defaultdict(set)
    for response in responses:
        for rec in response.assessment.recommendations:
            owners["#" + normalize_intervention(rec.intervention)].add(response.specialist)
            for word in _WORD.findall(rec.intervention.lower()):
                owners[word].add(response.specialist)
    shared = sum(1 for agents in owners.values() if len(agents) >= 2)
    if shared > 3:
        return ConsensusLevel.HIGH
    if shared > 1:
        return ConsensusLevel.MEDIUM
    return ConsensusLevel.LOW


def synthesize_plan(
    consultation_id: str,
    responses: Dict[str, SpecialistResponse],
    coordination: Optional[ConferenceMetadata] = None,
) -> SynthesizedPlan:
    """
    Build the plan from the successful entries of ``responses``.

    Raises:
        NoSuccessfulResponses: when no response succeeded.
    """
    successful = [r for r in responses.values() if r.succeeded]
    if not successful:
        raise NoSuccessfulResponses(consultation_id, attempted=len(responses))

    disagreements = len(coordination.disagreements) if coordination else 0
    phases = build_phases(successful)
    red_flags = collect_red_flags(successful)
    confidence = consensus_confidence(successful, disagreements)
    level = consensus_level(successful)

    item_count = sum(len(items) for items in phases.values())
    summary = (
        f"{len(successful)} specialist(s) contributed {item_count} recommendation(s): "
        f"{len(phases[PlanPhase.IMMEDIATE])} immediate, {len(phases[PlanPhase.SHORT_TERM])} short-term, "
        f"{len(phases[PlanPhase.LONG_TERM])} long-term. Consensus {level.value} "
        f"({confidence:.0%} confidence)"
    )
    if red_flags:
        summary += f"; {len(red_flags)} red flag(s) need review."
    else:
        summary += "."

    logger.info(
        "Synthesized plan for %s: %d items, %d red flags, consensus %s",
        consultation_id, item_count, len(red_flags), level.value,
    )
    return SynthesizedPlan(
        summary=summary,
        phases=phases,
        red_flags=red_flags,
        consensus_confidence=confidence,
        consensus_level=level,
        participating_specialists=[r.specialist.value for r in successful],
    )
