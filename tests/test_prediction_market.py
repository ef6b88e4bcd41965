from __future__ import annotations

import pytest

from conftest import FakeAgent

from orthoiq.models.schemas import (
    CaseInput,
    DimensionType,
    PredictionDimension,
    PredictionStatus,
    ResolutionPayload,
    ResolutionSource,
    SpecialtyTag,
)
from orthoiq.services.ledger import InMemoryTokenLedger
from orthoiq.tools.prediction_market import (
    PredictionMarket,
    calculate_stake,
    generate_dimensions,
    range_accuracy,
    score_dimension,
    select_source,
    timeline_accuracy,
)


def _market(*tags: SpecialtyTag, balance: int = 100) -> tuple[PredictionMarket, InMemoryTokenLedger, list]:
    agents = [FakeAgent(tag) for tag in tags]
    ledger = InMemoryTokenLedger(initial_balances={a.agent_id: balance for a in agents})
    return PredictionMarket(ledger), ledger, agents


# ──────────────────────────────────────────────
# Staking
# ──────────────────────────────────────────────

def test_stake_is_capped_by_balance_fraction() -> None:
    assert calculate_stake(1.0, 10) == 2


@pytest.mark.parametrize("balance, expected", [(3, 0), (8, 1), (13, 2), (18, 3)])
def test_rounding_never_lifts_stake_over_balance_cap(balance, expected) -> None:
    stake = calculate_stake(1.0, balance)
    assert stake == expected
    assert stake <= 0.2 * balance


def test_stake_grows_with_cube_of_confidence() -> None:
    assert calculate_stake(1.0, 1000) == 5
    assert calculate_stake(0.8, 1000) == 3  # 5 * 0.512 = 2.56
    assert calculate_stake(0.7, 1000) == 2  # 5 * 0.343 = 1.715
    assert calculate_stake(0.3, 1000) == 0


def test_stake_with_empty_balance_is_zero() -> None:
    assert calculate_stake(0.9, 0) == 0


def test_pain_dimensions_follow_reported_pain() -> None:
    dims = {d.name: d for d in generate_dimensions(SpecialtyTag.PAIN, CaseInput(primary_complaint="back pain", pain_level=8))}
    assert dims["pain_reduction_day7"].value == 5
    assert dims["pain_reduction_day7"].value_range == (0, 10)

    no_pain = {d.name: d for d in generate_dimensions(SpecialtyTag.PAIN, CaseInput(primary_complaint="back pain"))}
    assert no_pain["pain_reduction_day7"].value == 4


def test_every_specialty_predicts_user_satisfaction() -> None:
    case = CaseInput(primary_complaint="shoulder stiffness")
    for tag in SpecialtyTag:
        names = [d.name for d in generate_dimensions(tag, case)]
        assert names[0] == "user_satisfaction"
        assert len(names) == 3


# ──────────────────────────────────────────────
# Scoring
# ──────────────────────────────────────────────

def test_range_accuracy_falls_to_zero_at_half_the_range() -> None:
    errors = [0, 10, 20, 30, 40, 50, 60]
    scores = [range_accuracy(50, 50 + e, (0, 100)) for e in errors]
    assert scores == sorted(scores, reverse=True)
    assert scores[0] == 1.0
    assert scores[5] == 0.0
    assert scores[6] == 0.0


def test_range_accuracy_example() -> None:
    assert range_accuracy(40, 60, (0, 100)) == pytest.approx(0.6)


def test_timeline_brackets() -> None:
    assert timeline_accuracy(21, 21) == 1.0
    assert timeline_accuracy(21, 24) == 0.8
    assert timeline_accuracy(21, 28) == 0.6
    assert timeline_accuracy(21, 35) == 0.4
    assert timeline_accuracy(21, 60) == 0.2


def test_absent_dimension_scores_neutral_with_partial_credit() -> None:
    dim = PredictionDimension(name="adherence_rate", type=DimensionType.RANGE, value=75,
                              value_range=(0, 100), confidence=0.7)
    score = score_dimension(dim, {}, ResolutionSource.USER_MODAL)
    assert score.accuracy == 0.5
    assert score.partial_credit is True
    assert score.actual is None


def test_binary_dimension_accepts_string_outcomes() -> None:
    dim = PredictionDimension(name="md_approval", type=DimensionType.BINARY, value=True, confidence=0.8)
    assert score_dimension(dim, {"md_approval": "yes"}, ResolutionSource.MD_REVIEW).accuracy == 1.0
    assert score_dimension(dim, {"md_approval": "rejected"}, ResolutionSource.MD_REVIEW).accuracy == 0.0


def test_source_priority() -> None:
    payload = ResolutionPayload(md_review={"md_approval": True}, follow_up={"user_satisfaction": False})
    source, outcomes = select_source(payload)
    assert source == ResolutionSource.FOLLOW_UP
    assert outcomes == {"user_satisfaction": False}

    source, _ = select_source({"user_modal": {"a": 1}, "inter_agent": {"b": 2}})
    assert source == ResolutionSource.USER_MODAL


def test_plain_outcome_mapping_is_inter_agent() -> None:
    source, outcomes = select_source({"user_satisfaction": True})
    assert source == ResolutionSource.INTER_AGENT
    assert outcomes == {"user_satisfaction": True}


# ──────────────────────────────────────────────
# Initiation and resolution
# ──────────────────────────────────────────────

def test_initiation_merges_by_agent_id() -> None:
    market, _, agents = _market(SpecialtyTag.TRIAGE, SpecialtyTag.PAIN, SpecialtyTag.MOVEMENT)
    triage, pain, movement = agents
    case = CaseInput(primary_complaint="Ankle sprain", pain_level=5)

    market.initiate("c1", case, [triage, pain])
    summary = market.initiate("c1", case, [pain, movement])

    assert summary.total_predictions == 3
    assert sorted(market.predictions("c1").agent_ids()) == ["movement_detective", "pain_whisperer", "triage"]
    assert summary.specialist_count == 2
    assert summary.recommend_md_review is False


def test_md_review_recommended_for_four_specialists() -> None:
    market, _, agents = _market(*SpecialtyTag)
    summary = market.initiate("c1", CaseInput(primary_complaint="Hip pain"), agents)
    assert summary.specialist_count == 4
    assert summary.recommend_md_review is True


def test_resolution_without_predictions_returns_none() -> None:
    market, _, _ = _market(SpecialtyTag.TRIAGE)
    assert market.resolve("missing", {"user_satisfaction": True}) is None


def test_resolving_twice_settles_twice() -> None:
    market, ledger, agents = _market(SpecialtyTag.TRIAGE)
    market.initiate("c1", CaseInput(primary_complaint="Knee pain"), agents)
    assert market.predictions("c1").agent_predictions[0].total_stake == 7

    first = market.resolve_source("c1", ResolutionSource.INTER_AGENT, {
        "user_satisfaction": True, "md_approval": True, "recovery_phase_transition": 14,
    })
    assert first.agent_results[0].net_change == 14
    assert ledger.balance("triage") == 114

    second = market.resolve_source("c1", ResolutionSource.USER_MODAL, {
        "user_satisfaction": False, "md_approval": False, "recovery_phase_transition": 40,
    })
    result = second.agent_results[0]
    assert result.tokens_won == 1
    assert result.tokens_lost == 7
    assert ledger.balance("triage") == 108

    stored = market.resolution("c1")
    assert stored.source == ResolutionSource.USER_MODAL
    assert market.predictions("c1").status == PredictionStatus.RESOLVED

    perf = market.agent_performance("triage")
    assert perf.resolution_count == 2
    assert perf.average_accuracy == pytest.approx((1.0 + 0.2 / 3) / 2)

    reasons = [t.reason for t in ledger.transactions_for("triage")]
    assert "prediction_inter_agent:c1" in reasons
    assert "prediction_user_modal:c1" in reasons


def test_losses_never_push_balance_below_zero() -> None:
    market, ledger, agents = _market(SpecialtyTag.TRIAGE, balance=20)
    market.initiate("c1", CaseInput(primary_complaint="Knee pain"), agents)
    ledger.debit("triage", 18, reason="spent")

    market.resolve_source("c1", ResolutionSource.FOLLOW_UP, {
        "user_satisfaction": False, "md_approval": False, "recovery_phase_transition": 90,
    })
    assert ledger.balance("triage") == 0


def test_statistics_after_resolution() -> None:
    market, _, agents = _market(SpecialtyTag.TRIAGE, SpecialtyTag.PAIN)
    market.initiate("c1", CaseInput(primary_complaint="Neck pain", pain_level=6), agents)
    market.initiate("c2", CaseInput(primary_complaint="Neck pain", pain_level=6), agents)
    market.resolve("c1", {"user_satisfaction": True})

    stats = market.statistics()
    assert stats.total_consultations == 2
    assert stats.resolved_consultations == 1
    assert stats.total_agents == 2
    assert len(stats.recent_resolutions) == 1
    assert {p.agent_id for p in stats.top_performers} == {"triage", "pain_whisperer"}

    meta = market.consultation_metadata("c1")
    assert meta["total_agents"] == 2
    assert meta["status"] == "resolved"
    assert market.consultation_metadata("missing") is None
