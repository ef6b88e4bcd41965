"""
Dialogue Conference — one round of structured inter-agent dialogue.

After the initial assessments are in, each specialist's questions for its
colleagues are routed to the target agents (one batched message per
target, all targets in parallel). The round then looks across the
assessments and the dialogue for disagreements and emergent findings.

A target that cannot be reached only degrades its own questions to
"unavailable" answers; a failure of the whole round yields empty metadata
with ``error`` set instead of raising.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from orthoiq.agent.errors import ConferenceRoutingFailed
from orthoiq.config import settings
from orthoiq.models.schemas import (
    CaseInput,
    ClinicalImportance,
    ConferenceMetadata,
    DialogueExchange,
    Disagreement,
    DisagreementType,
    EmergentFinding,
    ExchangeStatus,
    FindingSource,
    Novelty,
    Priority,
    Severity,
    SpecialistResponse,
    TriageAgreement,
)
from orthoiq.services.registry import SpecialistRegistry, normalize_tag
from orthoiq.tools.case_metrics import round_half_up
from orthoiq.tools.reply_parser import parse_answers, refined_insight

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}

IMPACT_KEYWORDS = [
    "diagnosis", "critical", "significant", "important", "concern",
    "contraindication", "warning", "risk", "requires", "must",
    "urgent", "immediate",
]

NOVEL_WORDS = ["unexpected", "unusual", "atypical", "rare"]
UNUSUAL_WORDS = ["uncommon", "noteworthy", "significant concern"]

DOMAIN_TERMS = [
    "pain", "movement", "strength", "function", "anxiety", "stress",
    "range of motion", "mobility", "stability", "biomechanics",
    "inflammation", "rehabilitation", "recovery", "compensation",
]

IMPORTANCE_LEVELS = {
    ClinicalImportance.LOW: 1,
    ClinicalImportance.MEDIUM: 2,
    ClinicalImportance.HIGH: 3,
    ClinicalImportance.CRITICAL: 4,
}
_IMPORTANCE_NAMES = {v: k.value for k, v in IMPORTANCE_LEVELS.items()}

PRIORITY_SPREAD_THRESHOLD = 3
IMPORTANCE_SPREAD_THRESHOLD = 2


@dataclass
class PendingQuestion:
    from_agent: str
    target: str
    question: str
    priority: Priority


# ──────────────────────────────────────────────
# Text heuristics
# ──────────────────────────────────────────────

def normalize_intervention(intervention: str) -> str:
    text = re.sub(r"[^\w\s]", "", intervention.strip().lower())
    return re.sub(r"\s+", "_", text)[:50]


def has_diagnostic_impact(answer: str, priority: Priority) -> bool:
    if priority == Priority.HIGH:
        return True
    lower = answer.lower()
    return any(k in lower for k in IMPACT_KEYWORDS)


def assess_novelty(answer: str) -> Novelty:
    lower = answer.lower()
    if any(w in lower for w in NOVEL_WORDS):
        return Novelty.NOVEL
    if any(w in lower for w in UNUSUAL_WORDS):
        return Novelty.UNUSUAL
    return Novelty.ROUTINE


def clinical_significance(answer: str) -> str:
    lower = answer.lower()
    if any(w in lower for w in ("critical", "urgent", "immediate")):
        return "High - impacts immediate care decisions"
    if any(w in lower for w in ("important", "significant")):
        return "Moderate - influences treatment approach"
    return "Low - provides additional context"


def extract_domain_terms(text: str) -> List[str]:
    lower = text.lower()
    return [t for t in DOMAIN_TERMS if t in lower]


class DialogueConference:
    """
    Runs conference rounds and keeps their history for statistics.

    Usage:
        conference = DialogueConference()
        metadata = await conference.conduct_round(responses, registry, case)
    """

    def __init__(self, answer_timeout: Optional[float] = None):
        self.answer_timeout = answer_timeout or settings.specialist_timeout_seconds
        self.dialogue_history: List[ConferenceMetadata] = []
        self.disagreement_log: List[Disagreement] = []

    async def conduct_round(
        self,
        initial_responses: Dict[str, SpecialistResponse],
        registry: SpecialistRegistry,
        case_input: CaseInput,
    ) -> ConferenceMetadata:
        start = time.monotonic()
        try:
            logger.info("Starting conference round with %d responses", len(initial_responses))

            questions = self.collect_questions(initial_responses)
            logger.info(f"Collected {len(questions)} inter-agent questions")

            dialogue = await self.route_questions(questions, registry, initial_responses, case_input)
            logger.info(f"Completed {len(dialogue)} inter-agent exchanges")

            disagreements = self.detect_disagreements(initial_responses)
            logger.info(f"Detected {len(disagreements)} disagreements")

            findings = self.track_emergent_findings(dialogue, disagreements)
            logger.info(f"Identified {len(findings)} emergent findings")

            metadata = ConferenceMetadata(
                inter_agent_dialogue=dialogue,
                disagreements=disagreements,
                emergent_findings=findings,
                participating_agents=list(initial_responses.keys()),
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except Exception as e:
            logger.error(f"Conference round failed: {e}", exc_info=True)
            return ConferenceMetadata(
                duration_ms=int((time.monotonic() - start) * 1000),
                error=str(e),
            )

        self.dialogue_history.append(metadata)
        self.disagreement_log.extend(metadata.disagreements)
        return metadata

    # ──────────────────────────────────────────────
    # Step 1-2: collect and route questions
    # ──────────────────────────────────────────────

    @staticmethod
    def collect_questions(responses: Dict[str, SpecialistResponse]) -> List[PendingQuestion]:
        """Questions from successful responses, highest priority first."""
        questions: List[PendingQuestion] = []
        for tag, response in responses.items():
            if not response.succeeded:
                continue
            for q in response.assessment.questions_for_agents:
                if not q.question.strip():
                    continue
                questions.append(PendingQuestion(
                    from_agent=tag,
                    target=q.target_agent,
                    question=q.question.strip(),
                    priority=q.priority,
                ))
        # sort is stable, so arrival order is kept within a priority
        questions.sort(key=lambda q: PRIORITY_ORDER[q.priority])
        return questions

    async def route_questions(
        self,
        questions: List[PendingQuestion],
        registry: SpecialistRegistry,
        responses: Dict[str, SpecialistResponse],
        case_input: CaseInput,
    ) -> List[DialogueExchange]:
        grouped: Dict[str, List[PendingQuestion]] = defaultdict(list)
        for q in questions:
            tag = normalize_tag(q.target)
            grouped[tag.value if tag else q.target].append(q)

        batches = await asyncio.gather(*(
            self._dispatch(target, batch, registry, responses.get(target), case_input)
            for target, batch in grouped.items()
        ))
        return [exchange for batch in batches for exchange in batch]

    async def _dispatch(
        self,
        target: str,
        questions: List[PendingQuestion],
        registry: SpecialistRegistry,
        own_response: Optional[SpecialistResponse],
        case_input: CaseInput,
    ) -> List[DialogueExchange]:
        agent = registry.get(target)
        if agent is None:
            err = ConferenceRoutingFailed(target, "specialist not available")
            logger.warning(str(err))
            return [
                DialogueExchange(
                    from_agent=q.from_agent,
                    to_agent=target,
                    question=q.question,
                    answer="Specialist not available",
                    impact_on_diagnosis=False,
                    priority=q.priority,
                    status=ExchangeStatus.UNAVAILABLE,
                )
                for q in questions
            ]

        own_assessment = None
        if own_response is not None and own_response.assessment is not None:
            own_assessment = own_response.assessment.model_dump_json(
                include={"summary", "assessment", "recommendations"}
            )
        message = self.build_message(questions, own_assessment, case_input)
        context = {
            "type": "coordination_conference",
            "initial_assessment": own_assessment,
            "question_count": len(questions),
        }

        try:
            reply = await asyncio.wait_for(agent.discuss(message, context), timeout=self.answer_timeout)
        except Exception as e:
            err = ConferenceRoutingFailed(target, f"{type(e).__name__}: {e}")
            logger.error(str(err))
            return [
                DialogueExchange(
                    from_agent=q.from_agent,
                    to_agent=target,
                    question=q.question,
                    answer=f"Error: {err.reason}",
                    impact_on_diagnosis=False,
                    priority=q.priority,
                    status=ExchangeStatus.ERROR,
                )
                for q in questions
            ]

        answers = parse_answers(reply, len(questions))
        return [
            DialogueExchange(
                from_agent=q.from_agent,
                to_agent=target,
                question=q.question,
                answer=answer,
                impact_on_diagnosis=has_diagnostic_impact(answer, q.priority),
                priority=q.priority,
                refined_insight=refined_insight(answer),
            )
            for q, answer in zip(questions, answers)
        ]

    @staticmethod
    def build_message(
        questions: List[PendingQuestion], own_assessment: Optional[str], case_input: CaseInput
    ) -> str:
        question_list = "\n".join(
            f"{i + 1}. From {q.from_agent} (Priority: {q.priority.value}): {q.question}"
            for i, q in enumerate(questions)
        )
        return (
            "INTER-AGENT COORDINATION CONFERENCE\n\n"
            f"Case: {case_input.model_dump_json(exclude_none=True)}\n\n"
            f"Your initial assessment: {own_assessment or 'Not provided'}\n\n"
            f"QUESTIONS FROM FELLOW SPECIALISTS:\n{question_list}\n\n"
            "Answer each question from your area of expertise: the direct answer, how it "
            "affects the patient's care, and any action it calls for.\n"
            f'Reply as JSON {{"answers": [...]}} with exactly {len(questions)} answers in order.'
        )

    # ──────────────────────────────────────────────
    # Step 3: disagreements
    # ──────────────────────────────────────────────

    def detect_disagreements(self, responses: Dict[str, SpecialistResponse]) -> List[Disagreement]:
        disagreements = self._explicit_disagreements(responses)
        disagreements.extend(self._recommendation_conflicts(responses))
        disagreements.extend(self._importance_conflicts(responses))
        return disagreements

    @staticmethod
    def _explicit_disagreements(responses: Dict[str, SpecialistResponse]) -> List[Disagreement]:
        found = []
        for tag, response in responses.items():
            if not response.succeeded or tag == "triage":
                continue
            a = response.assessment
            if a.agreement_with_triage not in (TriageAgreement.PARTIAL, TriageAgreement.DISAGREE):
                continue
            if a.disagreement_reason:
                resolution = (
                    f"Consider {tag} perspective: {a.disagreement_reason}. "
                    f"Recommend multi-specialist review."
                )
            else:
                resolution = f"Recommend consultation between triage and {tag} to align on assessment approach."
            base = a.confidence if a.confidence is not None else (response.confidence or 0.5)
            found.append(Disagreement(
                agents=["triage", tag],
                topic="Initial assessment",
                disagreement_type=DisagreementType.EXPLICIT,
                severity=Severity.HIGH if a.agreement_with_triage == TriageAgreement.DISAGREE else Severity.MEDIUM,
                reason=a.disagreement_reason or "Not specified",
                resolution=resolution,
                confidence=min(base + (0.2 if a.disagreement_reason else 0.0), 1.0),
            ))
        return found

    @staticmethod
    def _recommendation_conflicts(responses: Dict[str, SpecialistResponse]) -> List[Disagreement]:
        by_intervention: Dict[str, list] = defaultdict(list)
        for tag, response in responses.items():
            if not response.succeeded:
                continue
            for rec in response.assessment.recommendations:
                key = normalize_intervention(rec.intervention)
                if key:
                    by_intervention[key].append((tag, rec))

        conflicts = []
        for intervention, entries in by_intervention.items():
            agents = list(dict.fromkeys(tag for tag, _ in entries))
            if len(agents) < 2:
                continue

            priorities = [rec.priority for _, rec in entries]
            hi, lo = max(priorities), min(priorities)
            if hi - lo >= PRIORITY_SPREAD_THRESHOLD:
                conflicts.append(Disagreement(
                    agents=agents,
                    topic=intervention,
                    disagreement_type=DisagreementType.PRIORITY_CONFLICT,
                    severity=Severity.MEDIUM,
                    reason=f"Priority mismatch: {lo} to {hi}",
                    resolution=f"Recommended priority: {round_half_up((hi + lo) / 2)}",
                    confidence=0.7,
                ))

            timelines = [rec.timeline for _, rec in entries if rec.timeline]
            if len(set(timelines)) > 1:
                conflicts.append(Disagreement(
                    agents=agents,
                    topic=intervention,
                    disagreement_type=DisagreementType.TIMELINE_CONFLICT,
                    severity=Severity.LOW,
                    reason=f"Different timelines suggested: {', '.join(timelines)}",
                    resolution=f"Use earliest conservative timeline: {timelines[0]}",
                    confidence=0.6,
                ))
        return conflicts

    @staticmethod
    def _importance_conflicts(responses: Dict[str, SpecialistResponse]) -> List[Disagreement]:
        ratings = [
            (tag, IMPORTANCE_LEVELS[r.assessment.assessment.clinical_importance])
            for tag, r in responses.items()
            if r.succeeded
        ]
        if len(ratings) < 2:
            return []
        levels = [level for _, level in ratings]
        hi, lo = max(levels), min(levels)
        if hi - lo < IMPORTANCE_SPREAD_THRESHOLD:
            return []
        return [Disagreement(
            agents=[tag for tag, _ in ratings],
            topic="Clinical importance assessment",
            disagreement_type=DisagreementType.IMPORTANCE_CONFLICT,
            severity=Severity.HIGH if hi == IMPORTANCE_LEVELS[ClinicalImportance.CRITICAL] else Severity.MEDIUM,
            reason=f"Ratings vary from {_IMPORTANCE_NAMES[lo]} to {_IMPORTANCE_NAMES[hi]}",
            resolution=f"Consensus importance: {_IMPORTANCE_NAMES[round_half_up((hi + lo) / 2)]}",
            confidence=0.65,
        )]

    # ──────────────────────────────────────────────
    # Step 4: emergent findings
    # ──────────────────────────────────────────────

    @staticmethod
    def track_emergent_findings(
        dialogue: List[DialogueExchange], disagreements: List[Disagreement]
    ) -> List[EmergentFinding]:
        findings: List[EmergentFinding] = []
        answered = [d for d in dialogue if d.status == ExchangeStatus.ANSWERED]

        for exchange in answered:
            if not exchange.impact_on_diagnosis:
                continue
            novelty = assess_novelty(exchange.answer)
            if novelty == Novelty.ROUTINE:
                continue
            findings.append(EmergentFinding(
                finding=exchange.refined_insight or exchange.answer[:200],
                discovered_by=[exchange.from_agent, exchange.to_agent],
                novelty=novelty,
                clinical_significance=clinical_significance(exchange.answer),
                confidence=0.75,
                source=FindingSource.DIALOGUE,
            ))

        for d in disagreements:
            if d.severity == Severity.HIGH and d.resolution:
                findings.append(EmergentFinding(
                    finding=f"Resolved disagreement: {d.topic}",
                    discovered_by=list(d.agents),
                    novelty=Novelty.UNUSUAL,
                    clinical_significance="May impact treatment approach",
                    confidence=d.confidence,
                    source=FindingSource.DISAGREEMENT_RESOLUTION,
                ))

        by_term: Dict[str, List[DialogueExchange]] = defaultdict(list)
        for exchange in answered:
            for term in extract_domain_terms(f"{exchange.question} {exchange.answer}"):
                by_term[term].append(exchange)
        for term, exchanges in by_term.items():
            agents = list(dict.fromkeys(a for e in exchanges for a in (e.from_agent, e.to_agent)))
            if len(agents) >= 3:
                findings.append(EmergentFinding(
                    finding=f"Cross-specialty consensus on {term}",
                    discovered_by=agents,
                    novelty=Novelty.UNUSUAL,
                    clinical_significance="Multiple specialists identify this as key concern",
                    confidence=0.85,
                    source=FindingSource.CROSS_SPECIALTY,
                ))
        return findings

    def statistics(self) -> dict:
        rounds = len(self.dialogue_history)
        return {
            "total_conferences": rounds,
            "total_disagreements": len(self.disagreement_log),
            "average_dialogue_count": (
                sum(len(h.inter_agent_dialogue) for h in self.dialogue_history) / rounds if rounds else 0
            ),
            "average_emergent_findings": (
                sum(len(h.emergent_findings) for h in self.dialogue_history) / rounds if rounds else 0
            ),
        }
