"""
Application configuration via environment variables.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    # App
    app_name: str = "OrthoIQ Specialist Panel"
    debug: bool = True
    log_level: str = "INFO"

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Specialist LLM (OpenAI-compatible endpoint)
    llm_model_id: str = "claude-sonnet"
    llm_api_key: str = ""
    llm_base_url: str = ""
    llm_max_tokens: int = 2500
    llm_temperature: float = 0.3

    # Consultation
    default_mode: str = "normal"  # "normal" or "fast"
    default_min_responses: int = 2
    specialist_timeout_seconds: float = 50.0
    consultation_deadline_seconds: float = 90.0
    max_active_consultations_per_agent: int = 50
    enable_scope_validation: bool = True
    routing_min_core_score: float = 0.5  # complaint plus one more core fact
    routing_high_confidence: float = 0.7
    routing_medium_limit: int = 3

    # Token economics
    initial_token_balance: int = 100
    base_consultation_fee: int = 2
    stake_base: float = 5.0
    stake_balance_fraction: float = 0.2
    stake_cap: int = 50
    md_review_specialist_threshold: int = 4

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
