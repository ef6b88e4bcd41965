"""
Specialist agents — the five recovery specialties on the panel.

Every specialist receives the same case but a different system prompt
that biases it toward its domain. The orchestrator only depends on the
:class:`SpecialistAgent` protocol; :class:`LLMSpecialistAgent` is the
concrete implementation backed by :class:`LLMService`.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from orthoiq.models.schemas import CaseInput, SpecialistAssessment, SpecialtyTag
from orthoiq.services.llm import LLMService

logger = logging.getLogger(__name__)


@runtime_checkable
class SpecialistAgent(Protocol):
    """What the orchestrator and the conference need from an agent."""
    agent_id: str
    name: str
    specialty: SpecialtyTag

    async def assess(self, case: CaseInput) -> SpecialistAssessment:
        ...

    async def discuss(self, message: str, context: Dict[str, Any]) -> str:
        ...

    def confidence(self, topic: str) -> float:
        ...


@dataclass
class SpecialistDef:
    """Definition of a domain-specialist agent."""
    specialty: SpecialtyTag
    agent_id: str
    name: str
    focus: str
    system_prompt_addendum: str
    keywords: List[str] = field(default_factory=list)
    """Topic words the specialist is most confident about."""


# ──────────────────────────────────────────────
# Specialist library
# ──────────────────────────────────────────────

SPECIALIST_TRIAGE = SpecialistDef(
    specialty=SpecialtyTag.TRIAGE,
    agent_id="triage",
    name="OrthoTriage Master",
    focus="triage and case coordination",
    system_prompt_addendum=(
        "You are the triage coordinator of the panel. Establish urgency, screen for "
        "red flags that need physician review, identify which specialists are needed, "
        "and set the overall recovery phase. Your assessment is the reference the "
        "other specialists agree or disagree with."
    ),
    keywords=["urgency", "red flag", "referral", "triage", "coordination", "imaging"],
)

SPECIALIST_PAIN = SpecialistDef(
    specialty=SpecialtyTag.PAIN,
    agent_id="pain_whisperer",
    name="Pain Whisperer",
    focus="pain management and assessment",
    system_prompt_addendum=(
        "You are the pain management specialist. Characterise pain type, intensity "
        "and pattern, separate nociceptive from neuropathic features, and propose a "
        "multimodal pain plan with expected reduction over the first weeks."
    ),
    keywords=["pain", "inflammation", "neuropathic", "analgesia", "flare", "sensitisation"],
)

SPECIALIST_MOVEMENT = SpecialistDef(
    specialty=SpecialtyTag.MOVEMENT,
    agent_id="movement_detective",
    name="Movement Detective",
    focus="biomechanics and movement analysis",
    system_prompt_addendum=(
        "You are the biomechanics and movement analysis specialist. Identify "
        "compensation patterns, range-of-motion deficits and faulty mechanics, and "
        "propose corrective movement work with measurable mobility targets."
    ),
    keywords=["movement", "mobility", "range of motion", "biomechanics", "gait", "compensation"],
)

SPECIALIST_STRENGTH = SpecialistDef(
    specialty=SpecialtyTag.STRENGTH,
    agent_id="strength_sage",
    name="Strength Sage",
    focus="functional restoration and rehabilitation",
    system_prompt_addendum=(
        "You are the functional restoration and rehabilitation specialist. Assess "
        "strength, stability and functional capacity, design a progressive loading "
        "program, and estimate a realistic return-to-activity timeline."
    ),
    keywords=["strength", "function", "stability", "rehabilitation", "loading", "return to activity"],
)

SPECIALIST_MIND = SpecialistDef(
    specialty=SpecialtyTag.MIND,
    agent_id="mind_mender",
    name="Mind Mender",
    focus="psychological aspects of recovery",
    system_prompt_addendum=(
        "You are the psychological aspects specialist. Screen for fear-avoidance, "
        "catastrophising, anxiety and low self-efficacy, estimate adherence risk, "
        "and propose behavioural strategies that support the physical plan."
    ),
    keywords=["anxiety", "stress", "fear", "adherence", "motivation", "coping"],
)

ALL_SPECIALISTS: List[SpecialistDef] = [
    SPECIALIST_TRIAGE,
    SPECIALIST_PAIN,
    SPECIALIST_MOVEMENT,
    SPECIALIST_STRENGTH,
    SPECIALIST_MIND,
]


# ──────────────────────────────────────────────
# Prompts
# ──────────────────────────────────────────────

BASE_SYSTEM_PROMPT = """You are a member of a musculoskeletal recovery panel.
Several specialists assess the same case independently and then answer each
other's questions. You do not diagnose definitively; you give evidence-informed
recovery guidance and flag anything that needs physician review.

Report:
- A one-paragraph summary
- Primary findings and their clinical importance (low, medium, high, critical)
- Recommendations, each with an integer priority (1 = most urgent, 5 = least) and a timeline
- Questions you want another specialist to answer (target by specialty)
- Whether you agree with the triage assessment (full, partial, disagree) and why
- Red flags
- Your confidence between 0 and 1"""

ASSESSMENT_PROMPT = """CASE:
Primary complaint: {complaint}
Location: {location}
Pain level (0-10): {pain}
Duration: {duration}
Age: {age}
Symptoms: {symptoms}
Comorbidities: {comorbidities}
Movement notes: {movement}
Functional limitations: {functional}
Psychological factors: {psychological}
Other details: {extra}

Provide your {focus} assessment."""

DISCUSS_SYSTEM_PROMPT = """You are answering questions from colleagues on the recovery panel.
Answer each question in order, concisely, from your specialty's perspective.
Prefer replying as JSON: {"answers": ["answer to question 1", "answer to question 2", ...]}.
If you reply in prose, number your answers 1., 2., ... to match the questions."""


def format_case(case: CaseInput, focus: str) -> str:
    extra = case.model_extra or {}
    return ASSESSMENT_PROMPT.format(
        complaint=case.primary_complaint,
        location=case.location or "Not specified",
        pain=case.pain_level if case.pain_level is not None else "Not reported",
        duration=case.duration or "Not reported",
        age=case.age or "Unknown",
        symptoms=", ".join(case.symptoms) if case.symptoms else "None reported",
        comorbidities=", ".join(case.comorbidities) if case.comorbidities else "None reported",
        movement=case.movement_notes or "Not provided",
        functional=", ".join(case.functional_limitations) if case.functional_limitations else "None reported",
        psychological=", ".join(case.psychological_factors) if case.psychological_factors else "None reported",
        extra=json.dumps(extra, default=str) if extra else "None",
        focus=focus,
    )


class LLMSpecialistAgent:
    """
    A single specialist backed by the LLM service.

    ``experience`` grows with every successful assessment and feeds
    :meth:`confidence`.
    """

    def __init__(
        self,
        definition: SpecialistDef,
        llm: Optional[LLMService] = None,
        temperature: float = 0.3,
        max_tokens: int = 0,
    ):
        self.definition = definition
        self.agent_id = definition.agent_id
        self.name = definition.name
        self.specialty = definition.specialty
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.experience = 0
        self.llm = llm or LLMService()

    async def assess(self, case: CaseInput) -> SpecialistAssessment:
        system_prompt = BASE_SYSTEM_PROMPT + "\n\n" + self.definition.system_prompt_addendum
        if self.specialty == SpecialtyTag.TRIAGE:
            system_prompt += "\nSet agreement_with_triage to \"self\"."

        result = await self.llm.generate_structured(
            prompt=format_case(case, self.definition.focus),
            response_model=SpecialistAssessment,
            system_prompt=system_prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if result.confidence is None:
            result.confidence = self.confidence(case.primary_complaint)
        self.experience += 1

        logger.info(
            f"  [{self.name}] {len(result.recommendations)} recommendations, "
            f"{len(result.questions_for_agents)} questions, confidence {result.confidence:.2f}"
        )
        return result

    async def discuss(self, message: str, context: Dict[str, Any]) -> str:
        prompt = message
        own = context.get("initial_assessment")
        if own:
            prompt = f"YOUR INITIAL ASSESSMENT:\n{own}\n\n{message}"
        return await self.llm.generate(
            prompt=prompt,
            system_prompt=DISCUSS_SYSTEM_PROMPT + "\n\n" + self.definition.system_prompt_addendum,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    def confidence(self, topic: str) -> float:
        base = 0.5 + min(self.experience * 0.01, 0.4)
        text = (topic or "").lower()
        if any(k in text for k in self.definition.keywords):
            base += 0.1
        return min(base, 1.0)


def build_default_agents(llm: Optional[LLMService] = None) -> List[LLMSpecialistAgent]:
    """One LLM-backed agent per specialty, sharing a single LLM client."""
    llm = llm or LLMService()
    return [LLMSpecialistAgent(definition, llm=llm) for definition in ALL_SPECIALISTS]
