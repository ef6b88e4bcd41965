"""
REST API for running consultations and retrieving their state.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from orthoiq.agent.errors import ConsultationTimedOut, NoSpecialistsAvailable, NoSuccessfulResponses
from orthoiq.agent.orchestrator import ConsultationOrchestrator
from orthoiq.api.dependencies import get_orchestrator
from orthoiq.models.schemas import CaseInput, Consultation, ConsultationRequest, ConsultationResult, ScopeCheck
from orthoiq.tools.scope import check_scope

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=ConsultationResult)
async def run_consultation(
    request: ConsultationRequest,
    orchestrator: ConsultationOrchestrator = Depends(get_orchestrator),
):
    """
    Run a consultation and return the synthesized result.

    Cases outside musculoskeletal scope are turned away with 422 before any
    specialist is called. In fast mode the response returns once the quorum
    is met; the remaining specialists keep filling in the stored consultation.
    """
    scope = check_scope(request.case_input)
    if not scope.pass_to_agent:
        raise HTTPException(status_code=422, detail=scope.model_dump(mode="json"))

    try:
        return await orchestrator.run(request.case_input, request.specialists, request.options)
    except NoSpecialistsAvailable as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NoSuccessfulResponses as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ConsultationTimedOut as e:
        raise HTTPException(status_code=504, detail=str(e))


@router.post("/scope", response_model=ScopeCheck)
async def screen_case(case_input: CaseInput):
    """Scope screening only; no specialist is called."""
    return check_scope(case_input)


@router.get("/", response_model=List[str])
async def list_consultations(orchestrator: ConsultationOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_consultations()


@router.get("/statistics")
async def coordination_statistics(orchestrator: ConsultationOrchestrator = Depends(get_orchestrator)):
    return orchestrator.coordination_statistics()


@router.get("/{consultation_id}", response_model=Consultation)
async def get_consultation(
    consultation_id: str,
    orchestrator: ConsultationOrchestrator = Depends(get_orchestrator),
):
    """Current state of a consultation, including late fast-mode responses."""
    consultation = orchestrator.get(consultation_id)
    if consultation is None:
        raise HTTPException(status_code=404, detail=f"Consultation {consultation_id} not found")
    return consultation
