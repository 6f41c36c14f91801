"""
Configuration settings for the cadence scheduling core.

Uses Pydantic Settings for environment variable management with .env file
support. Every variable is prefixed with CADENCE_ (e.g. CADENCE_SLOW_MS).

Invalid values never abort startup: they are replaced with the field
default and a warning is logged.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cadence.core.errors import ConfigurationError
from cadence.core.models import ConfidenceLevel

STORE_BACKENDS = ("memory", "json", "sql")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(
        default="WARNING",
        description="Minimum loguru level for the CLI sink",
    )

    # ========================================
    # Flow Detection
    # ========================================
    fast_threshold_ms: float = Field(
        default=3000.0,
        description="Responses faster than this count as fast",
    )
    slow_threshold_ms: float = Field(
        default=8000.0,
        description="Responses slower than this count as slow",
    )
    flow_hysteresis_seconds: float = Field(
        default=10.0,
        description="Minimum dwell time between committed flow state changes",
    )

    # ========================================
    # Scheduling
    # ========================================
    fast_guess_ms: float = Field(
        default=1500.0,
        description="Correct answers faster than this (no hints) are rated EASY",
    )
    slow_ms: float = Field(
        default=8000.0,
        description="Correct answers slower than this are rated one step lower",
    )
    leech_threshold: int = Field(
        default=8,
        description="Lapses at which an item is flagged as a leech",
    )
    maximum_interval_days: int = Field(
        default=365,
        description="Upper bound on any scheduled interval",
    )
    request_retention: float = Field(
        default=0.9,
        description="Target recall probability at the due date",
    )

    # ========================================
    # Persistence
    # ========================================
    store_backend: str = Field(
        default="memory",
        description="Checkpoint store: memory, json or sql",
    )
    store_path: Path = Field(
        default=Path.home() / ".cadence" / "store",
        description="Directory for the json store",
    )
    database_url: str = Field(
        default=f"sqlite:///{Path.home() / '.cadence' / 'cadence.db'}",
        description="SQLAlchemy URL for the sql store",
    )
    confidence_save_interval_s: float = Field(
        default=30.0,
        description="Write-behind interval for confidence profiles",
    )
    temporal_save_interval_s: float = Field(
        default=60.0,
        description="Write-behind interval for circadian profile and cognitive load",
    )
    goals_save_interval_s: float = Field(
        default=120.0,
        description="Write-behind interval for goal snapshots",
    )

    @field_validator(
        "fast_threshold_ms",
        "slow_threshold_ms",
        "flow_hysteresis_seconds",
        "fast_guess_ms",
        "slow_ms",
        "leech_threshold",
        "maximum_interval_days",
        "confidence_save_interval_s",
        "temporal_save_interval_s",
        "goals_save_interval_s",
    )
    @classmethod
    def _positive(cls, v: Any, info: ValidationInfo) -> Any:
        if v <= 0:
            return _default_for(info.field_name, v)
        return v

    @field_validator("request_retention")
    @classmethod
    def _retention(cls, v: float, info: ValidationInfo) -> float:
        if not 0 < v < 1:
            return _default_for(info.field_name, v)
        return v

    @field_validator("store_backend")
    @classmethod
    def _backend(cls, v: str, info: ValidationInfo) -> str:
        v = v.lower()
        if v not in STORE_BACKENDS:
            return _default_for(info.field_name, v)
        return v

    @field_validator("log_level")
    @classmethod
    def _level(cls, v: str) -> str:
        return v.upper()


def _default_for(field_name: str, bad_value: Any) -> Any:
    default = Settings.model_fields[field_name].default
    error = ConfigurationError(f"invalid {field_name}={bad_value!r}")
    logger.warning(f"{error}; using default {default!r}")
    return default


def coerce_level(level: Any) -> ConfidenceLevel:
    """Resolve a confidence level name, falling back to 'uncertain'."""
    try:
        return ConfidenceLevel(level)
    except ValueError:
        logger.warning(f"{ConfigurationError(f'unknown confidence level {level!r}')}; using 'uncertain'")
        return ConfidenceLevel.UNCERTAIN


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
