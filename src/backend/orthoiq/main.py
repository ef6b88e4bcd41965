"""
OrthoIQ Specialist Panel — FastAPI Backend
"""
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orthoiq.agent.orchestrator import ConsultationOrchestrator
from orthoiq.agent.specialists import build_default_agents
from orthoiq.api import consultations, health, ledger, predictions
from orthoiq.config import settings
from orthoiq.services.ledger import InMemoryTokenLedger
from orthoiq.services.registry import SpecialistRegistry

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def build_orchestrator() -> ConsultationOrchestrator:
    """Wire the five LLM-backed specialists to an in-memory ledger."""
    registry = SpecialistRegistry()
    agents = build_default_agents()
    for agent in agents:
        registry.register(agent)
    token_ledger = InMemoryTokenLedger(
        initial_balances={a.agent_id: settings.initial_token_balance for a in agents}
    )
    return ConsultationOrchestrator(registry, token_ledger)


def create_app(orchestrator: Optional[ConsultationOrchestrator] = None) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Multi-specialist recovery consultations with an outcome prediction market",
        version="0.1.0",
    )
    app.state.orchestrator = orchestrator or build_orchestrator()

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    app.include_router(health.router, tags=["health"])
    app.include_router(consultations.router, prefix="/api/consultations", tags=["consultations"])
    app.include_router(predictions.router, prefix="/api/predictions", tags=["predictions"])
    app.include_router(ledger.router, prefix="/api/ledger", tags=["ledger"])

    @app.on_event("startup")
    async def startup():
        """Log configuration (secrets masked)."""
        def _mask(val: str) -> str:
            if not val:
                return "(empty)"
            if len(val) <= 8:
                return "***"
            return val[:4] + "..." + val[-4:]

        logger.info("=== OrthoIQ Specialist Panel Starting ===")
        logger.info(f"  llm_base_url       : {settings.llm_base_url or '(empty)'}")
        logger.info(f"  llm_model_id       : {settings.llm_model_id}")
        logger.info(f"  llm_api_key        : {_mask(settings.llm_api_key)}")
        logger.info(f"  default_mode       : {settings.default_mode}")
        logger.info(f"  specialist_timeout : {settings.specialist_timeout_seconds}s")
        logger.info(f"  deadline           : {settings.consultation_deadline_seconds}s")
        logger.info(f"  scope_validation   : {settings.enable_scope_validation}")
        logger.info(f"  cors_origins       : {settings.cors_origins}")
        logger.info(f"  specialists        : {list(app.state.orchestrator.registry.summary())}")

        if not settings.llm_base_url:
            logger.warning("LLM_BASE_URL is empty -- specialist calls go to http://localhost:8000/v1")

    @app.on_event("shutdown")
    async def shutdown():
        await app.state.orchestrator.shutdown()

    return app


app = create_app()
