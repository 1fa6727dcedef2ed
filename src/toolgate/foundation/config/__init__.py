"""Configuration management using pydantic-settings."""

from .settings import (
    AdmissionSettings,
    DispatchSettings,
    IdempotencySettings,
    LoggingSettings,
    PoolSettings,
    ToolgateSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "AdmissionSettings",
    "DispatchSettings",
    "IdempotencySettings",
    "LoggingSettings",
    "PoolSettings",
    "ToolgateSettings",
    "clear_settings_cache",
    "get_settings",
]
