"""
REST API for the prediction market: predictions, resolution and statistics.
"""
from __future__ import annotations

import logging
from enum import Enum

from fastapi import APIRouter, Depends, HTTPException

from orthoiq.agent.orchestrator import ConsultationOrchestrator
from orthoiq.api.dependencies import get_orchestrator
from orthoiq.models.schemas import (
    AgentPerformanceRecord,
    MarketStats,
    OutcomeSubmission,
    PredictionSet,
    Resolution,
    ResolutionSource,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class ExternalSource(str, Enum):
    """Ground-truth sources that arrive over HTTP."""
    MD_REVIEW = "md-review"
    USER_MODAL = "user-modal"
    FOLLOW_UP = "follow-up"


_SOURCE_MAP = {
    ExternalSource.MD_REVIEW: ResolutionSource.MD_REVIEW,
    ExternalSource.USER_MODAL: ResolutionSource.USER_MODAL,
    ExternalSource.FOLLOW_UP: ResolutionSource.FOLLOW_UP,
}


@router.get("/market/statistics", response_model=MarketStats)
async def market_statistics(orchestrator: ConsultationOrchestrator = Depends(get_orchestrator)):
    return orchestrator.market.statistics()


@router.get("/agents/{agent_id}", response_model=AgentPerformanceRecord)
async def agent_performance(agent_id: str, orchestrator: ConsultationOrchestrator = Depends(get_orchestrator)):
    record = orchestrator.market.agent_performance(agent_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No prediction history for agent {agent_id}")
    return record


@router.get("/{consultation_id}", response_model=PredictionSet)
async def get_predictions(consultation_id: str, orchestrator: ConsultationOrchestrator = Depends(get_orchestrator)):
    predictions = orchestrator.market.predictions(consultation_id)
    if predictions is None:
        raise HTTPException(status_code=404, detail=f"No predictions for consultation {consultation_id}")
    return predictions


@router.get("/{consultation_id}/resolution", response_model=Resolution)
async def get_resolution(consultation_id: str, orchestrator: ConsultationOrchestrator = Depends(get_orchestrator)):
    resolution = orchestrator.market.resolution(consultation_id)
    if resolution is None:
        raise HTTPException(status_code=404, detail=f"Consultation {consultation_id} has not been resolved")
    return resolution


@router.post("/{consultation_id}/resolve/{source}", response_model=Resolution)
async def resolve_predictions(
    consultation_id: str,
    source: ExternalSource,
    submission: OutcomeSubmission,
    orchestrator: ConsultationOrchestrator = Depends(get_orchestrator),
):
    """
    Settle a consultation's predictions against externally observed outcomes.

    Each call settles again, so tokens move on every submission.
    """
    resolution = orchestrator.market.resolve_source(consultation_id, _SOURCE_MAP[source], submission.outcomes)
    if resolution is None:
        raise HTTPException(status_code=404, detail=f"No predictions for consultation {consultation_id}")
    logger.info("Resolved %s from %s", consultation_id, source.value)
    return resolution
