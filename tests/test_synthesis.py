from __future__ import annotations

import pytest

from conftest import make_assessment, make_response

from orthoiq.agent.errors import NoSuccessfulResponses
from orthoiq.models.schemas import (
    ConferenceMetadata,
    ConsensusLevel,
    Disagreement,
    DisagreementType,
    PlanPhase,
    Recommendation,
    Severity,
    SpecialtyTag,
)
from orthoiq.tools.synthesis import classify_phase, consensus_level, synthesize_plan


@pytest.mark.parametrize(
    "timeline, priority, phase",
    [
        ("immediate", 5, PlanPhase.IMMEDIATE),
        ("start today", 4, PlanPhase.IMMEDIATE),
        ("ongoing maintenance", 1, PlanPhase.LONG_TERM),
        ("5 days", 4, PlanPhase.IMMEDIATE),
        ("2 weeks", 5, PlanPhase.SHORT_TERM),
        ("3 months", 1, PlanPhase.LONG_TERM),
        (None, 2, PlanPhase.IMMEDIATE),
        (None, 3, PlanPhase.SHORT_TERM),
        ("when convenient", 4, PlanPhase.LONG_TERM),
    ],
)
def test_classify_phase(timeline, priority, phase) -> None:
    assert classify_phase(timeline, priority) == phase


def test_shared_interventions_merge_at_most_urgent_priority() -> None:
    responses = {
        "pain_whisperer": make_response(SpecialtyTag.PAIN, make_assessment(
            recommendations=[Recommendation(intervention="Ice therapy", priority=4)],
        )),
        "movement_detective": make_response(SpecialtyTag.MOVEMENT, make_assessment(
            recommendations=[Recommendation(intervention="ice therapy.", priority=2, evidence_grade="B")],
        )),
    }

    plan = synthesize_plan("c1", responses)

    assert set(plan.phases) == set(PlanPhase)
    (item,) = plan.phases[PlanPhase.IMMEDIATE]
    assert item.priority == 2
    assert item.recommended_by == ["pain_whisperer", "movement_detective"]
    assert item.evidence_grade == "B"
    assert plan.phases[PlanPhase.LONG_TERM] == []


def test_failed_responses_are_excluded() -> None:
    responses = {
        "triage": make_response(SpecialtyTag.TRIAGE),
        "mind_mender": make_response(SpecialtyTag.MIND, failed=True),
    }
    plan = synthesize_plan("c1", responses)
    assert plan.participating_specialists == ["triage"]


def test_no_successful_responses_raises() -> None:
    with pytest.raises(NoSuccessfulResponses):
        synthesize_plan("c1", {"triage": make_response(SpecialtyTag.TRIAGE, failed=True)})


def test_consensus_confidence_drops_per_disagreement() -> None:
    responses = {
        "triage": make_response(SpecialtyTag.TRIAGE, confidence=0.8),
        "pain_whisperer": make_response(SpecialtyTag.PAIN, confidence=0.6),
    }
    disagreement = Disagreement(agents=["triage", "pain_whisperer"], topic="x",
                                disagreement_type=DisagreementType.PRIORITY_CONFLICT, severity=Severity.MEDIUM)
    coordination = ConferenceMetadata(disagreements=[disagreement, disagreement])

    plan = synthesize_plan("c1", responses, coordination)

    assert plan.consensus_confidence == pytest.approx(0.6)


def test_red_flags_from_envelope_and_text() -> None:
    responses = {
        "triage": make_response(SpecialtyTag.TRIAGE, make_assessment(
            red_flags=["Progressive weakness"], summary="Reports night pain and numbness in the foot.",
        )),
        "pain_whisperer": make_response(SpecialtyTag.PAIN, make_assessment(red_flags=["progressive weakness"])),
    }

    plan = synthesize_plan("c1", responses)

    assert plan.red_flags[0] == "Progressive weakness"
    assert len(plan.red_flags) == 3
    assert "red flag(s) need review" in plan.summary


def test_consensus_level() -> None:
    same = [make_response(tag) for tag in (SpecialtyTag.PAIN, SpecialtyTag.STRENGTH)]
    assert consensus_level(same) == ConsensusLevel.HIGH

    different = [
        make_response(SpecialtyTag.PAIN, make_assessment(
            recommendations=[Recommendation(intervention="Heat packs")])),
        make_response(SpecialtyTag.MIND, make_assessment(
            recommendations=[Recommendation(intervention="Breathing drills")])),
    ]
    assert consensus_level(different) == ConsensusLevel.LOW
    assert consensus_level(same[:1]) == ConsensusLevel.LOW
