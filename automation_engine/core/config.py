"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application Settings
    APP_ENV: Literal["development", "staging", "production", "test"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # Scheduler
    ENABLE_SCHEDULER: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"  # Default timezone for cron triggers without one
    SYSTEM_EVENTS_ENABLED: bool = True  # daily_summary / weekly_review / monthly_report

    # Execution history
    EXECUTION_RETENTION_HOURS: int = 24
    EXECUTION_CLEANUP_CRON: str = "15 * * * *"  # Hourly, quarter past

    # Concurrency
    MAX_CONCURRENT_EXECUTIONS: int = 10  # Per fan-out (users of a cron fire, workflows of an event)
    ACTION_CONCURRENCY_LIMIT: int = 20  # In-flight action handler calls across all executions

    # Outbound webhook actions
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0

    # Trigger manager
    EVENT_HISTORY_LIMIT: int = 1000

    # Inbound webhook secrets for the bundled presets
    STRIPE_WEBHOOK_SECRET: SecretStr = SecretStr("")
    GITHUB_WEBHOOK_SECRET: SecretStr = SecretStr("")

    @field_validator("SCHEDULER_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that SCHEDULER_TIMEZONE is a known IANA zone."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"SCHEDULER_TIMEZONE is not a valid IANA timezone: {v}") from e
        return v

    @field_validator("MAX_CONCURRENT_EXECUTIONS", "ACTION_CONCURRENCY_LIMIT")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Concurrency limits must allow at least one task."""
        if v < 1:
            raise ValueError("Concurrency limits must be >= 1")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def stripe_webhook_secret(self) -> str | None:
        """Stripe webhook secret, or ``None`` when unset."""
        return self.STRIPE_WEBHOOK_SECRET.get_secret_value() or None

    @property
    def github_webhook_secret(self) -> str | None:
        """GitHub webhook secret, or ``None`` when unset."""
        return self.GITHUB_WEBHOOK_SECRET.get_secret_value() or None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance with validated configuration.
    """
    return Settings()
