from __future__ import annotations

import asyncio
from pathlib import Path
import sys
from typing import Any, Dict, List, Optional

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1] / "src" / "backend"
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from orthoiq.agent.orchestrator import ConsultationOrchestrator  # noqa: E402
from orthoiq.models.schemas import (  # noqa: E402
    AgentQuestion,
    AssessmentBody,
    CaseInput,
    Recommendation,
    ResponseStatus,
    SpecialistAssessment,
    SpecialistResponse,
    SpecialtyTag,
    TriageAgreement,
)
from orthoiq.services.ledger import InMemoryTokenLedger  # noqa: E402
from orthoiq.services.registry import SpecialistRegistry  # noqa: E402

ALL_TAGS = list(SpecialtyTag)


def make_assessment(
    confidence: float = 0.8,
    recommendations: Optional[List[Recommendation]] = None,
    questions: Optional[List[AgentQuestion]] = None,
    agreement: TriageAgreement = TriageAgreement.FULL,
    importance: str = "medium",
    **kwargs: Any,
) -> SpecialistAssessment:
    return SpecialistAssessment(
        summary=kwargs.pop("summary", "Stable recovery picture."),
        assessment=AssessmentBody(primary_findings=["finding"], clinical_importance=importance),
        recommendations=recommendations if recommendations is not None else [
            Recommendation(intervention="Graded walking program", priority=3, timeline="2 weeks"),
        ],
        questions_for_agents=questions or [],
        agreement_with_triage=agreement,
        confidence=confidence,
        **kwargs,
    )


def make_response(
    tag: SpecialtyTag,
    assessment: Optional[SpecialistAssessment] = None,
    confidence: float = 0.8,
    failed: bool = False,
) -> SpecialistResponse:
    if failed:
        return SpecialistResponse(
            specialist=tag, agent_id=tag.value, name=tag.value, status=ResponseStatus.FAILED, error="down",
        )
    return SpecialistResponse(
        specialist=tag,
        agent_id=tag.value,
        name=tag.value,
        assessment=assessment or make_assessment(confidence=confidence),
        confidence=confidence,
        status=ResponseStatus.SUCCESS,
        latency_ms=1200,
    )


class FakeAgent:
    """Scriptable stand-in for an LLM-backed specialist."""

    def __init__(
        self,
        specialty: SpecialtyTag,
        assessment: Optional[SpecialistAssessment] = None,
        delay: float = 0.0,
        error: Optional[BaseException] = None,
        reply: str = "Noted, no change to my plan.",
        discuss_error: Optional[BaseException] = None,
    ) -> None:
        self.specialty = specialty
        self.agent_id = specialty.value
        self.name = specialty.value.replace("_", " ").title()
        self.assessment = assessment or make_assessment()
        self.delay = delay
        self.error = error
        self.reply = reply
        self.discuss_error = discuss_error
        self.assess_calls = 0
        self.messages: List[Dict[str, Any]] = []

    async def assess(self, case: CaseInput) -> SpecialistAssessment:
        self.assess_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.assessment

    async def discuss(self, message: str, context: Dict[str, Any]) -> str:
        self.messages.append({"message": message, "context": context})
        if self.discuss_error is not None:
            raise self.discuss_error
        return self.reply

    def confidence(self, topic: str) -> float:
        return 0.6


def build_registry(agents: List[FakeAgent]) -> SpecialistRegistry:
    registry = SpecialistRegistry(max_active_per_agent=50)
    for agent in agents:
        registry.register(agent)
    return registry


def build_orchestrator(agents: List[FakeAgent], balance: int = 100) -> ConsultationOrchestrator:
    ledger = InMemoryTokenLedger(initial_balances={a.agent_id: balance for a in agents})
    return ConsultationOrchestrator(build_registry(agents), ledger)


@pytest.fixture
def case() -> CaseInput:
    return CaseInput(
        primary_complaint="Knee pain after a twisting injury",
        pain_level=6,
        duration="3 weeks",
        location="left knee",
        age=34,
        symptoms=["swelling", "clicking"],
    )


@pytest.fixture
def panel() -> List[FakeAgent]:
    return [FakeAgent(tag) for tag in ALL_TAGS]
