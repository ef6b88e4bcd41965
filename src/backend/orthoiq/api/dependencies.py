"""Request-scoped access to the shared orchestrator."""
from fastapi import Request

from orthoiq.agent.orchestrator import ConsultationOrchestrator


def get_orchestrator(request: Request) -> ConsultationOrchestrator:
    return request.app.state.orchestrator
