"""Processor configuration settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ProcessorSettings(BaseSettings):
    """Settings for the processor service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite:///./rfp_insight.db"

    # Queue/Worker
    QUEUE_MAX_CONCURRENCY: int = 4  # Parallel job limit
    QUEUE_MAX_ATTEMPTS: int = 3  # Default retry limit
    QUEUE_POLL_INTERVAL: int = 5  # Seconds between queue checks when idle
    QUEUE_RETRY_BASE_DELAY: int = 30  # Base delay for exponential backoff (seconds)
    QUEUE_MAINTENANCE_INTERVAL: int = 60  # Seconds between maintenance runs
    QUEUE_STUCK_JOB_MINUTES: int = 30
    QUEUE_STUCK_ANALYSIS_MINUTES: int = 15

    # Claude AI
    ANTHROPIC_API_KEY: Optional[str] = None
    CLAUDE_MODEL: str = "claude-sonnet-4-5-20250929"
    CLAUDE_MAX_TOKENS: int = 8000
    CLAUDE_TIMEOUT_SECONDS: float = 120.0

    # Structured extraction
    EXTRACTION_MAX_INPUT_CHARS: int = 240_000
    EXTRACTION_TEMPERATURE: float = 0.3

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"


@lru_cache
def get_settings() -> ProcessorSettings:
    """Get cached settings instance."""
    return ProcessorSettings()
