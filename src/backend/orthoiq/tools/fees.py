"""
Consultation fee accrual.

Each participating agent is credited ``round(base_fee × complexity ×
performance)`` tokens when a consultation starts. Complexity comes from the
case (see :func:`complexity_multiplier`); performance rewards agents with a
good success rate and is neutral for agents without history.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from orthoiq.agent.specialists import SpecialistAgent
from orthoiq.config import settings
from orthoiq.models.schemas import CaseInput
from orthoiq.services.ledger import TokenLedger
from orthoiq.services.registry import AgentMetrics, SpecialistRegistry
from orthoiq.tools.case_metrics import complexity_multiplier, round_half_up

logger = logging.getLogger(__name__)


def performance_multiplier(metrics: Optional[AgentMetrics]) -> float:
    if metrics is None or metrics.consultations == 0:
        return 1.0
    return 0.8 + 0.4 * metrics.success_rate


def consultation_fee(case: CaseInput, metrics: Optional[AgentMetrics] = None, base_fee: Optional[int] = None) -> int:
    base = settings.base_consultation_fee if base_fee is None else base_fee
    return round_half_up(base * complexity_multiplier(case) * performance_multiplier(metrics))


def accrue_fees(
    consultation_id: str,
    case: CaseInput,
    agents: Iterable[SpecialistAgent],
    ledger: TokenLedger,
    registry: Optional[SpecialistRegistry] = None,
) -> Dict[str, int]:
    """Credit every agent its fee; returns agent_id → fee."""
    fees: Dict[str, int] = {}
    for agent in agents:
        metrics = registry.metrics(agent.specialty) if registry else None
        fee = consultation_fee(case, metrics)
        if fee > 0:
            ledger.credit(agent.agent_id, fee, reason=f"consultation_fee:{consultation_id}")
        fees[agent.agent_id] = fee
    logger.info("Accrued consultation fees for %s: %s", consultation_id, fees)
    return fees
