"""Environment-based configuration using pydantic-settings.

Provides type-safe, validated configuration from environment variables
with sensible defaults. Supports .env files and nested configuration.

Example:
    >>> from toolgate.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.pool.max_workers
    16
    >>> settings.admission.strategy
    'sliding'

    # Or with environment variables:
    # TOOLGATE_POOL_MAX_WORKERS=64
    # TOOLGATE_ADMISSION_MAX_CALLS=500
    # TOOLGATE_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, NonNegativeFloat, PositiveFloat, PositiveInt, computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchSettings(BaseSettings):
    """Dispatcher defaults."""

    model_config = SettingsConfigDict(env_prefix="TOOLGATE_DISPATCH_", extra="ignore")

    default_deadline: PositiveFloat = Field(default=30.0, description="Deadline (seconds) when a request omits one")
    max_deadline: PositiveFloat = Field(default=300.0, description="Upper clamp for requested deadlines")
    default_caller_id: str = Field(default="anonymous", min_length=1)

    @model_validator(mode="after")
    def _check_deadlines(self) -> Self:
        if self.default_deadline > self.max_deadline:
            raise ValueError("default_deadline must not exceed max_deadline")
        return self


class PoolSettings(BaseSettings):
    """Execution worker pool configuration."""

    model_config = SettingsConfigDict(env_prefix="TOOLGATE_POOL_", extra="ignore")

    max_workers: PositiveInt = Field(default=16, description="Max handlers executing at once")
    admission_wait: NonNegativeFloat = Field(default=0.05, description="Max seconds to wait for a free worker")
    cancel_grace: NonNegativeFloat = Field(default=0.1, description="Seconds a cancelled handler gets to stop")
    thread_name_prefix: str = "toolgate-worker-"


class AdmissionSettings(BaseSettings):
    """Per-caller concurrency and rate limits."""

    model_config = SettingsConfigDict(env_prefix="TOOLGATE_ADMISSION_", extra="ignore")

    max_concurrent_per_caller: PositiveInt = Field(default=8)
    global_max_concurrent: PositiveInt | None = Field(default=None, description="Optional ceiling across callers")
    max_calls: PositiveInt = Field(default=100, description="Max admissions per window per caller")
    window_seconds: PositiveFloat = Field(default=60.0)
    strategy: Literal["sliding", "token_bucket"] = "sliding"


class IdempotencySettings(BaseSettings):
    """In-memory idempotency store defaults."""

    model_config = SettingsConfigDict(env_prefix="TOOLGATE_IDEMPOTENCY_", extra="ignore")

    ttl: PositiveFloat = Field(default=3600.0, description="Seconds a stored result stays replayable")
    max_entries: PositiveInt = Field(default=10_000)


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="TOOLGATE_LOG_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class ToolgateSettings(BaseSettings):
    """Root settings.

    Loads configuration from environment variables with TOOLGATE_ prefix.
    Supports nested configuration and .env files.

    Example environment variables:
        TOOLGATE_DISPATCH_DEFAULT_DEADLINE=10
        TOOLGATE_POOL_MAX_WORKERS=32
        TOOLGATE_ADMISSION_STRATEGY=token_bucket
        TOOLGATE_LOG_FORMAT=json
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    environment: Literal["development", "staging", "production"] = "development"

    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    admission: AdmissionSettings = Field(default_factory=AdmissionSettings)
    idempotency: IdempotencySettings = Field(default_factory=IdempotencySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_env(cls, v: str) -> str:
        return v.lower() if isinstance(v, str) else v

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> ToolgateSettings:
    """Get the global settings instance (cached)."""
    return ToolgateSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache so the next get_settings() re-reads the environment."""
    get_settings.cache_clear()
