"""Application settings loaded from environment variables."""

from functools import lru_cache
from typing import Optional

from fastapi import Request
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "RFP Insight"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database (SQLite for local development; Postgres / SQL Server in deployment)
    DATABASE_URL: str = "sqlite:///./rfp_insight.db"
    AUTO_CREATE_TABLES: bool = False  # Alembic owns the schema outside of dev

    # Internal Token (HS256)
    AUTH_ENABLED: bool = True
    SECRET_KEY: str = "change-me-in-production"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 720  # 12 hours
    ALGORITHM: str = "HS256"

    # Claude AI
    ANTHROPIC_API_KEY: Optional[str] = None
    CLAUDE_MODEL: str = "claude-sonnet-4-5-20250929"
    CLAUDE_MAX_TOKENS: int = 8000
    CLAUDE_TIMEOUT_SECONDS: float = 120.0

    # Structured extraction
    EXTRACTION_MAX_INPUT_CHARS: int = 240_000
    EXTRACTION_TEMPERATURE: float = 0.3

    # Question generation
    QUESTIONS_DEFAULT_COUNT: int = 8
    QUESTIONS_MAX_COUNT: int = 20
    QUESTIONS_TEMPERATURE: float = 0.7
    QUESTIONS_MAX_TOKENS: int = 6000

    # Consolidation readiness thresholds (percent / ratio / confidence)
    READINESS_CONSOLIDATION_MIN_COMPLETION: float = 60.0
    READINESS_MARKET_MIN_COMPLETION: float = 50.0
    READINESS_MARKET_MIN_CONFIDENCE: float = 0.6
    READINESS_PERSONA_MIN_COMPLETION: float = 50.0
    READINESS_PERSONA_MIN_CONFIDENCE: float = 0.6
    READINESS_PROPOSAL_MIN_COMPLETION: float = 70.0
    READINESS_PROPOSAL_MIN_COVERAGE: float = 0.75
    READINESS_PROPOSAL_MIN_CONFIDENCE: float = 0.7

    # Queue (ingestion dispatch)
    QUEUE_MAX_ATTEMPTS: int = 3

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_app_settings(request: Request) -> Settings:
    """Dependency returning the settings the running application was built with."""
    return request.app.state.settings
