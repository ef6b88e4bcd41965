"""
Prediction Market — agents stake tokens on the outcomes of their own plans.

At consultation start every participating agent predicts a handful of
outcome dimensions chosen by its specialty and stakes tokens on each,
with stakes growing with the cube of confidence. When ground truth
arrives (inter-agent consensus, MD review, user feedback, follow-up) the
predictions are scored with partial credit and the net result is moved
through the token ledger.

All methods are synchronous. Callers running them from detached tasks
rely on there being no suspension point between reading and writing the
stored state.
"""
from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from orthoiq.agent.specialists import SpecialistAgent
from orthoiq.config import settings
from orthoiq.models.schemas import (
    AgentPerformanceRecord,
    AgentPrediction,
    AgentScore,
    CaseInput,
    DimensionPerformance,
    DimensionScore,
    DimensionType,
    InitiationSummary,
    MarketStats,
    PredictionDimension,
    PredictionSet,
    PredictionStatus,
    Resolution,
    ResolutionHistoryEntry,
    ResolutionPayload,
    ResolutionSource,
    SpecialtyTag,
    TopPerformer,
)
from orthoiq.services.ledger import TokenLedger
from orthoiq.storage.base import MarketRepository
from orthoiq.storage.memory import InMemoryMarketRepository
from orthoiq.tools.case_metrics import case_summary, round_half_up

logger = logging.getLogger(__name__)

# Highest priority first
RESOLUTION_PRIORITY = [
    ResolutionSource.FOLLOW_UP,
    ResolutionSource.USER_MODAL,
    ResolutionSource.MD_REVIEW,
    ResolutionSource.INTER_AGENT,
]

ABSENT_DIMENSION_ACCURACY = 0.5

# (max days off, accuracy) brackets for timeline predictions
TIMELINE_BRACKETS: List[Tuple[float, float]] = [(0, 1.0), (3, 0.8), (7, 0.6), (14, 0.4)]
TIMELINE_FLOOR = 0.2

_TRUE_WORDS = {"true", "yes", "y", "1", "approved", "satisfied"}
_FALSE_WORDS = {"false", "no", "n", "0", "rejected", "unsatisfied"}


# ──────────────────────────────────────────────
# Dimension generation and staking
# ──────────────────────────────────────────────

def _dim(name: str, type_: DimensionType, value, confidence: float, rationale: str,
         value_range: Optional[Tuple[float, float]] = None) -> PredictionDimension:
    return PredictionDimension(
        name=name,
        type=type_,
        value=value,
        value_range=value_range,
        confidence=confidence,
        stake_percentage=round_half_up(confidence * 100),
        rationale=rationale,
    )


def generate_dimensions(specialty: SpecialtyTag, case: CaseInput) -> List[PredictionDimension]:
    """The outcome dimensions an agent of the given specialty predicts, unstaked."""
    dims = [_dim("user_satisfaction", DimensionType.BINARY, True, 0.7,
                 "Based on case complexity and typical outcomes")]

    if specialty == SpecialtyTag.PAIN:
        day7 = max(0, case.pain_level - 3) if case.pain_level else 4
        dims += [
            _dim("pain_reduction_day7", DimensionType.RANGE, day7, 0.75,
                 "Pain trajectory prediction based on intervention", (0, 10)),
            _dim("pain_reduction_percentage", DimensionType.RANGE, 40, 0.7,
                 "Expected pain reduction at 2 weeks", (0, 100)),
        ]
    elif specialty == SpecialtyTag.MOVEMENT:
        dims += [
            _dim("mobility_improvement", DimensionType.RANGE, 60, 0.65,
                 "Movement pattern correction success rate", (0, 100)),
            _dim("rom_restoration_day14", DimensionType.RANGE, 80, 0.7,
                 "Range of motion restoration percentage", (0, 100)),
        ]
    elif specialty == SpecialtyTag.STRENGTH:
        dims += [
            _dim("functional_restoration", DimensionType.RANGE, 70, 0.75,
                 "Return to functional activities", (0, 100)),
            _dim("return_to_activity_timeline", DimensionType.TIMELINE, 21, 0.65,
                 "Expected days until activity return"),
        ]
    elif specialty == SpecialtyTag.MIND:
        dims += [
            _dim("adherence_rate", DimensionType.RANGE, 75, 0.7,
                 "Treatment adherence prediction", (0, 100)),
            _dim("psychological_improvement", DimensionType.RANGE, 65, 0.6,
                 "Fear-avoidance and anxiety reduction", (0, 100)),
        ]
    elif specialty == SpecialtyTag.TRIAGE:
        dims += [
            _dim("md_approval", DimensionType.BINARY, True, 0.8,
                 "Clinical assessment quality prediction"),
            _dim("recovery_phase_transition", DimensionType.TIMELINE, 14, 0.7,
                 "Days until the next recovery phase"),
        ]
    return dims


def calculate_stake(confidence: float, balance: int) -> int:
    """
    ``min(round_half_up(base·c³), floor(fraction·balance), cap)``.

    The balance cap is applied after rounding, so an agent holding 13
    tokens stakes at most 2 even at full confidence.
    """
    raw = settings.stake_base * confidence ** 3
    balance_cap = math.floor(settings.stake_balance_fraction * max(balance, 0))
    return min(round_half_up(raw), balance_cap, settings.stake_cap)


# ──────────────────────────────────────────────
# Scoring
# ──────────────────────────────────────────────

def _as_bool(v: Any) -> Optional[bool]:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return bool(v)
    if isinstance(v, str):
        word = v.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def _as_number(v: Any) -> Optional[float]:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            return None
    return None


def range_accuracy(predicted: float, actual: float, value_range: Optional[Tuple[float, float]]) -> float:
    lo, hi = value_range if value_range else (0, 100)
    span = (hi - lo) or 1
    return max(0.0, 1 - 2 * abs(predicted - actual) / span)


def timeline_accuracy(predicted: float, actual: float) -> float:
    error = abs(predicted - actual)
    for max_error, accuracy in TIMELINE_BRACKETS:
        if error <= max_error:
            return accuracy
    return TIMELINE_FLOOR


def score_dimension(dim: PredictionDimension, outcomes: Dict[str, Any], source: ResolutionSource) -> DimensionScore:
    """
    Score one prediction against observed outcomes.

    A dimension missing from the outcomes (or carrying a value of the wrong
    kind) scores a neutral 0.5 with ``partial_credit`` set.
    """
    raw = outcomes.get(dim.name)
    if dim.type == DimensionType.BINARY:
        actual = _as_bool(raw)
    else:
        actual = _as_number(raw)

    if actual is None:
        return DimensionScore(
            dimension=dim.name,
            type=dim.type,
            predicted=dim.value,
            actual=None,
            accuracy=ABSENT_DIMENSION_ACCURACY,
            confidence=dim.confidence,
            stake=dim.stake,
            partial_credit=True,
            resolution_source=source,
        )

    if dim.type == DimensionType.BINARY:
        accuracy = 1.0 if bool(dim.value) == actual else 0.0
    elif dim.type == DimensionType.RANGE:
        accuracy = range_accuracy(float(dim.value), actual, dim.value_range)
    else:
        accuracy = timeline_accuracy(float(dim.value), actual)

    return DimensionScore(
        dimension=dim.name,
        type=dim.type,
        predicted=dim.value,
        actual=actual,
        accuracy=accuracy,
        confidence=dim.confidence,
        stake=dim.stake,
        resolution_source=source,
    )


def score_agent(prediction: AgentPrediction, outcomes: Dict[str, Any], source: ResolutionSource) -> AgentScore:
    scores = [score_dimension(d, outcomes, source) for d in prediction.dimensions]
    accuracy = sum(s.accuracy for s in scores) / len(scores) if scores else 0.0
    stake = prediction.total_stake
    won = round_half_up(stake * accuracy * 2)
    lost = round_half_up(stake * (1 - accuracy))
    return AgentScore(
        agent_id=prediction.agent_id,
        agent_name=prediction.agent_name,
        dimension_scores=scores,
        total_staked=stake,
        accuracy=accuracy,
        tokens_won=won,
        tokens_lost=lost,
        net_change=won - lost,
    )


def select_source(payload: Union[ResolutionPayload, Dict[str, Any]]) -> Tuple[ResolutionSource, Dict[str, Any]]:
    """
    Pick the highest-priority source present in the payload.

    A plain mapping that names no source is taken as inter-agent outcomes.
    """
    if isinstance(payload, dict):
        named = {s.value for s in ResolutionSource}
        if not any(k in named for k in payload):
            return ResolutionSource.INTER_AGENT, dict(payload)
        payload = ResolutionPayload.model_validate(payload)

    for source in RESOLUTION_PRIORITY:
        outcomes = getattr(payload, source.value)
        if outcomes is not None:
            return source, outcomes
    return ResolutionSource.INTER_AGENT, {}


class PredictionMarket:
    """
    Usage:
        market = PredictionMarket(ledger)
        market.initiate(consultation_id, case, agents)
        market.resolve_source(consultation_id, ResolutionSource.USER_MODAL, {"user_satisfaction": True})
    """

    def __init__(self, ledger: TokenLedger, repository: Optional[MarketRepository] = None):
        self.ledger = ledger
        self.repository: MarketRepository = repository or InMemoryMarketRepository()

    # ──────────────────────────────────────────────
    # Initiation
    # ──────────────────────────────────────────────

    def initiate(
        self,
        consultation_id: str,
        case_input: CaseInput,
        agents: Iterable[SpecialistAgent],
    ) -> InitiationSummary:
        """
        Collect staked predictions from every agent not already in the set.

        Calling this again for the same consultation merges: agents that
        already predicted are skipped, so each agent appears once.
        """
        predictions = self.repository.get_predictions(consultation_id)
        if predictions is None:
            predictions = PredictionSet(consultation_id=consultation_id, case_summary=case_summary(case_input))

        existing = predictions.agent_ids()
        for agent in agents:
            if agent.agent_id in existing:
                logger.debug("Skipping duplicate prediction for agent %s", agent.agent_id)
                continue
            predictions.agent_predictions.append(self._collect(agent, case_input, consultation_id))
            existing.add(agent.agent_id)

        self.repository.save_predictions(predictions)

        specialist_count = sum(1 for p in predictions.agent_predictions if p.specialty != SpecialtyTag.TRIAGE)
        logger.info(
            f"Collected {len(predictions.agent_predictions)} agent predictions for {consultation_id} "
            f"({specialist_count} specialists)"
        )
        return InitiationSummary(
            consultation_id=consultation_id,
            total_predictions=len(predictions.agent_predictions),
            total_staked=predictions.total_stake,
            specialist_count=specialist_count,
            recommend_md_review=specialist_count >= settings.md_review_specialist_threshold,
            timestamp=predictions.created_at,
        )

    def _collect(self, agent: SpecialistAgent, case_input: CaseInput, consultation_id: str) -> AgentPrediction:
        balance = self.ledger.balance(agent.agent_id)
        dims = generate_dimensions(agent.specialty, case_input)
        for d in dims:
            d.stake = calculate_stake(d.confidence, balance)
        return AgentPrediction(
            prediction_id=str(uuid.uuid4()),
            agent_id=agent.agent_id,
            agent_name=agent.name,
            specialty=agent.specialty,
            consultation_id=consultation_id,
            dimensions=dims,
            total_stake=sum(d.stake for d in dims),
        )

    # ──────────────────────────────────────────────
    # Resolution
    # ──────────────────────────────────────────────

    def resolve(
        self, consultation_id: str, payload: Union[ResolutionPayload, Dict[str, Any]]
    ) -> Optional[Resolution]:
        """
        Score every agent against the highest-priority outcomes in the
        payload, settle tokens and update performance.

        Every call settles again and replaces the stored resolution, so a
        consultation resolved twice pays out twice. Returns None when the
        consultation has no predictions.
        """
        predictions = self.repository.get_predictions(consultation_id)
        if predictions is None:
            logger.warning("No predictions found for consultation %s", consultation_id)
            return None

        source, outcomes = select_source(payload)
        logger.info("Resolving predictions for %s from %s", consultation_id, source.value)

        results: List[AgentScore] = []
        for prediction in predictions.agent_predictions:
            result = score_agent(prediction, outcomes, source)
            self._settle(result, consultation_id, source)
            self._update_performance(result)
            results.append(result)

        resolution = Resolution(
            consultation_id=consultation_id,
            source=source,
            outcomes=outcomes,
            agent_results=results,
        )
        self.repository.save_resolution(resolution)
        predictions.status = PredictionStatus.RESOLVED
        self.repository.save_predictions(predictions)

        self.repository.append_history(ResolutionHistoryEntry(
            consultation_id=consultation_id,
            source=source,
            timestamp=resolution.timestamp,
            total_agents=len(results),
            average_accuracy=sum(r.accuracy for r in results) / len(results) if results else 0.0,
        ))
        logger.info(f"Predictions resolved for {consultation_id}: {len(results)} agents scored")
        return resolution

    def resolve_source(
        self, consultation_id: str, source: ResolutionSource, outcomes: Dict[str, Any]
    ) -> Optional[Resolution]:
        return self.resolve(consultation_id, ResolutionPayload(**{source.value: outcomes}))

    def _settle(self, result: AgentScore, consultation_id: str, source: ResolutionSource) -> None:
        reason = f"prediction_{source.value}:{consultation_id}"
        if result.net_change > 0:
            self.ledger.credit(result.agent_id, result.net_change, reason=reason)
            logger.info("Agent %s won %d tokens from predictions", result.agent_id, result.net_change)
        elif result.net_change < 0:
            self.ledger.debit(result.agent_id, -result.net_change, reason=reason)
            logger.info("Agent %s lost %d tokens from predictions", result.agent_id, -result.net_change)

    def _update_performance(self, result: AgentScore) -> None:
        perf = self.repository.get_performance(result.agent_id) or AgentPerformanceRecord(agent_id=result.agent_id)
        perf.total_predictions += len(result.dimension_scores)
        perf.total_staked += result.total_staked
        perf.total_won += result.tokens_won
        perf.total_lost += result.tokens_lost
        perf.resolution_count += 1
        perf.average_accuracy += (result.accuracy - perf.average_accuracy) / perf.resolution_count

        for score in result.dimension_scores:
            dim = perf.dimension_accuracy.setdefault(score.dimension, DimensionPerformance())
            dim.count += 1
            dim.total_accuracy += score.accuracy
            dim.average_accuracy = dim.total_accuracy / dim.count

        self.repository.save_performance(perf)

    # ──────────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────────

    def predictions(self, consultation_id: str) -> Optional[PredictionSet]:
        return self.repository.get_predictions(consultation_id)

    def resolution(self, consultation_id: str) -> Optional[Resolution]:
        return self.repository.get_resolution(consultation_id)

    def agent_performance(self, agent_id: str) -> Optional[AgentPerformanceRecord]:
        return self.repository.get_performance(agent_id)

    def consultation_metadata(self, consultation_id: str) -> Optional[dict]:
        predictions = self.repository.get_predictions(consultation_id)
        if predictions is None:
            return None
        specialist_count = sum(1 for p in predictions.agent_predictions if p.specialty != SpecialtyTag.TRIAGE)
        return {
            "consultation_id": consultation_id,
            "total_agents": len(predictions.agent_predictions),
            "participating_agents": [
                {"agent_id": p.agent_id, "agent_name": p.agent_name, "specialty": p.specialty.value}
                for p in predictions.agent_predictions
            ],
            "recommend_md_review": specialist_count >= settings.md_review_specialist_threshold,
            "status": predictions.status.value,
            "created_at": predictions.created_at.isoformat(),
        }

    def top_performers(self, limit: int = 5) -> List[TopPerformer]:
        ranked = sorted(self.repository.all_performance(), key=lambda p: p.average_accuracy, reverse=True)
        return [
            TopPerformer(
                agent_id=p.agent_id,
                average_accuracy=round_half_up(p.average_accuracy * 100),
                total_predictions=p.total_predictions,
                net_tokens=p.total_won - p.total_lost,
            )
            for p in ranked[:limit]
        ]

    def statistics(self) -> MarketStats:
        perf = self.repository.all_performance()
        return MarketStats(
            total_consultations=self.repository.count_predictions(),
            resolved_consultations=self.repository.count_resolutions(),
            total_agents=len(perf),
            total_predictions=sum(p.total_predictions for p in perf),
            total_staked=sum(p.total_staked for p in perf),
            average_market_accuracy=sum(p.average_accuracy for p in perf) / len(perf) if perf else 0.0,
            top_performers=self.top_performers(5),
            recent_resolutions=self.repository.history(10),
        )
