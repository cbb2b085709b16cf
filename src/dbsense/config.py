"""
Configuration management for DBSense.

Settings are loaded from environment variables (``DBSENSE_`` prefix) and
cached process-wide. All thresholds used by the registry and analyzers
come from here so they can be tuned per deployment without code changes.

Usage:
    from dbsense.config import get_settings

    settings = get_settings()
    registry = ConnectionRegistry(idle_timeout_seconds=settings.idle_timeout_seconds)

Environment variables:
    DBSENSE_IDLE_TIMEOUT_SECONDS     Idle connections older than this are reaped (300)
    DBSENSE_QUERY_TIMEOUT_MS         Default per-connection timeout (30000)
    DBSENSE_POOL_SIZE                Default connection pool size (10)
    DBSENSE_SCHEMA_SAMPLE_SIZE       Documents sampled per collection (10)
    DBSENSE_KEY_SCAN_LIMIT           Keys scanned for key-value schemas (1000)
    DBSENSE_SLOW_QUERY_THRESHOLD_MS  Default slow query threshold (1000)
    DBSENSE_HIGH_COST_THRESHOLD      Plan cost flagged as expensive (1000)
    DBSENSE_SAMPLE_LIMIT             Default rows returned by sample_data (10)
    DBSENSE_LOG_LEVEL                CLI log level (WARNING)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dbsense.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "DBSENSE_"


class Settings(BaseModel):
    """Process-wide DBSense settings. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    idle_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Idle duration after which cleanup disconnects a connection",
    )
    query_timeout_ms: int = Field(
        default=30000,
        gt=0,
        description="Default timeout applied to connections that do not set one",
    )
    pool_size: int = Field(
        default=10,
        gt=0,
        description="Default connection pool size",
    )
    schema_sample_size: int = Field(
        default=10,
        gt=0,
        description="Documents sampled per collection when inferring document schemas",
    )
    key_scan_limit: int = Field(
        default=1000,
        gt=0,
        description="Maximum keys inspected when grouping key-value schemas",
    )
    slow_query_threshold_ms: float = Field(
        default=1000.0,
        ge=0,
        description="Default threshold for detect_slow_queries",
    )
    high_cost_threshold: float = Field(
        default=1000.0,
        ge=0,
        description="Plan operation cost above which optimize_query flags the node",
    )
    sample_limit: int = Field(
        default=10,
        gt=0,
        description="Default number of rows returned by sample_data",
    )
    log_level: str = Field(
        default="WARNING",
        description="Log level used by the CLI",
    )


def _env_number(name: str, default: float, kind: type = float) -> float:
    """Parse a numeric environment variable, raising on malformed input."""
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be a number, got {raw!r}",
            config_key=ENV_PREFIX + name,
        ) from exc


def load_settings_from_env() -> Settings:
    """
    Load settings from ``DBSENSE_*`` environment variables.

    Missing variables fall back to defaults; malformed ones raise
    ConfigurationError rather than being silently ignored.
    """
    log_level = os.environ.get(ENV_PREFIX + "LOG_LEVEL", "WARNING").upper()
    if log_level not in logging.getLevelNamesMapping():
        raise ConfigurationError(
            f"Unknown log level {log_level!r}", config_key=ENV_PREFIX + "LOG_LEVEL"
        )

    try:
        settings = Settings(
            idle_timeout_seconds=_env_number("IDLE_TIMEOUT_SECONDS", 300.0),
            query_timeout_ms=_env_number("QUERY_TIMEOUT_MS", 30000, int),
            pool_size=_env_number("POOL_SIZE", 10, int),
            schema_sample_size=_env_number("SCHEMA_SAMPLE_SIZE", 10, int),
            key_scan_limit=_env_number("KEY_SCAN_LIMIT", 1000, int),
            slow_query_threshold_ms=_env_number("SLOW_QUERY_THRESHOLD_MS", 1000.0),
            high_cost_threshold=_env_number("HIGH_COST_THRESHOLD", 1000.0),
            sample_limit=_env_number("SAMPLE_LIMIT", 10, int),
            log_level=log_level,
        )
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid DBSense settings: {exc}") from exc
    logger.debug("Loaded settings: %s", settings.model_dump())
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached process-wide settings."""
    return load_settings_from_env()


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() reloads the environment."""
    get_settings.cache_clear()
