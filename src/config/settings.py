"""Engine settings using Pydantic Settings.

Centralized configuration for the form engine: reconciliation tolerances,
numeric bounds, and the retry policy used when talking to the persistence
collaborator.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


DEFAULT_SCHEMA_DIR = Path(__file__).parent.parent / "forms" / "schemas"


class ResilienceSettings(BaseSettings):
    """Retry policy for persistence calls."""

    model_config = SettingsConfigDict(
        env_prefix="FORMS_RETRY_",
        extra="ignore",
    )

    max_attempts: int = Field(default=3, ge=1, description="Attempts including the first call")
    base_delay: float = Field(default=0.3, ge=0.0, description="Initial delay in seconds")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff multiplier")
    max_delay: float = Field(default=5.0, ge=0.0, description="Max delay between retries")
    jitter: float = Field(default=0.1, ge=0.0, le=1.0, description="Jitter as a fraction of delay")


class EngineSettings(BaseSettings):
    """Form engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="FORMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", description="Environment name")

    # Reconciliation
    subtotal_tolerance: float = Field(
        default=0.01,
        ge=0.0,
        description="Allowed difference between a category subtotal and its manual override",
    )
    cross_check_tolerance: float = Field(
        default=1.00,
        ge=0.0,
        description="Allowed difference for net worth / liquidity cross-checks",
    )

    # Numeric bounds
    currency_min: float = Field(default=0.0, description="Smallest accepted currency amount")
    currency_max: float = Field(
        default=999_999_999_999.99,
        description="Largest accepted currency amount",
    )

    accredited_net_worth_threshold: float = Field(
        default=1_000_000.0,
        description="Net worth strictly above this marks an accredited investor",
    )

    schema_dir: Path = Field(
        default=DEFAULT_SCHEMA_DIR,
        description="Directory holding the declarative form schemas",
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "EngineSettings":
        if self.currency_min > self.currency_max:
            raise ValueError("currency_min must not exceed currency_max")
        return self

    @property
    def resilience(self) -> ResilienceSettings:
        return ResilienceSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")


@lru_cache
def get_settings() -> EngineSettings:
    """
    Get cached engine settings instance.

    Returns:
        EngineSettings: Cached settings loaded from environment.
    """
    settings = EngineSettings()
    logger.debug(
        "Engine settings loaded",
        extra={
            "environment": settings.environment,
            "subtotal_tolerance": settings.subtotal_tolerance,
            "cross_check_tolerance": settings.cross_check_tolerance,
        },
    )
    return settings
