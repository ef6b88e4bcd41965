"""Health check endpoints."""
import logging

from fastapi import APIRouter

from orthoiq.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.app_name}


@router.get("/api/health/config")
async def config_check():
    """Diagnostic endpoint: shows whether critical env vars are configured (no secrets)."""
    return {
        "llm_base_url_set": bool(settings.llm_base_url),
        "llm_api_key_set": bool(settings.llm_api_key),
        "llm_model_id": settings.llm_model_id,
        "default_mode": settings.default_mode,
        "specialist_timeout_seconds": settings.specialist_timeout_seconds,
        "consultation_deadline_seconds": settings.consultation_deadline_seconds,
        "enable_scope_validation": settings.enable_scope_validation,
    }


@router.get("/api/health/model")
async def model_readiness():
    """Check if the specialist LLM endpoint is accepting requests."""
    from orthoiq.services.llm import LLMService

    service = LLMService()
    ready = await service.check_readiness()
    return {
        "ready": ready,
        "model_id": settings.llm_model_id,
        "base_url_set": bool(settings.llm_base_url),
    }
