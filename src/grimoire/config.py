"""
Runtime settings for the grimoire reference-data service.

Values come from the environment (optionally seeded from a .env file) and are
validated once at startup. Durations are seconds, and may be given either as
plain numbers or as short strings such as "500ms", "30m", "12h" or "7d".
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError

logger = logging.getLogger("grimoire")

DURATION_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")
DURATION_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Environment variable -> Settings field
ENV_FIELDS = {
    "OPEN5E_API_URL": "api_url",
    "OPEN5E_TIMEOUT": "request_timeout",
    "OPEN5E_RATE_LIMIT": "rate_limit_requests",
    "OPEN5E_RATE_WINDOW": "rate_limit_window",
    "OPEN5E_MAX_RETRIES": "max_retries",
    "OPEN5E_RETRY_INITIAL_DELAY": "retry_initial_delay",
    "OPEN5E_RETRY_MAX_DELAY": "retry_max_delay",
    "OPEN5E_CORE_TTL": "core_ttl",
    "OPEN5E_BULK_TTL": "bulk_ttl",
    "OPEN5E_DEFAULT_TTL": "default_ttl",
    "OPEN5E_WARMUP_INTERVAL": "warmup_interval",
    "OPEN5E_CLEANUP_INTERVAL": "cleanup_interval",
    "OPEN5E_WARMUP_LIMIT": "warmup_limit",
    "GRIMOIRE_DATA_DIR": "data_dir",
    "GRIMOIRE_DATABASE_PATH": "database_path",
    "GRIMOIRE_CACHE_PATH": "cache_path",
    "GRIMOIRE_HOST": "host",
    "GRIMOIRE_PORT": "port",
    "GRIMOIRE_LOG_LEVEL": "log_level",
}


def parse_duration(value: Union[int, float, str]) -> float:
    """Convert a duration (seconds or "12h"-style string) to seconds."""
    if isinstance(value, bool):
        raise ValueError("duration must be a number or a duration string")
    if isinstance(value, (int, float)):
        return float(value)
    match = DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * DURATION_UNITS[unit or "s"]


class Settings(BaseModel):
    """Settings for the Open5e client, cache, scheduler and storage."""

    # Upstream API
    api_url: str = Field(
        default="https://api.open5e.com/v1",
        description="Base URL of the Open5e API"
    )
    request_timeout: float = Field(default=30.0, gt=0.0, description="Per-request timeout in seconds")

    # Rate limiting
    rate_limit_requests: int = Field(default=100, ge=1, description="Requests allowed per window")
    rate_limit_window: float = Field(default=60.0, gt=0.0, description="Rate-limit window in seconds")

    # Retry policy
    max_retries: int = Field(default=3, ge=1, description="Total attempts per request")
    retry_initial_delay: float = Field(default=1.0, ge=0.0, description="First backoff delay in seconds")
    retry_max_delay: float = Field(default=10.0, ge=0.0, description="Backoff delay cap in seconds")

    # Cache TTLs
    core_ttl: float = Field(default=7 * 86400.0, gt=0.0, description="TTL for core categories")
    bulk_ttl: float = Field(default=86400.0, gt=0.0, description="TTL for bulk categories")
    default_ttl: float = Field(default=86400.0, gt=0.0, description="TTL for on-demand lookups")

    # Scheduling
    warmup_interval: float = Field(default=12 * 3600.0, gt=0.0, description="Seconds between warmups")
    cleanup_interval: float = Field(default=3600.0, gt=0.0, description="Seconds between expiry sweeps")
    warmup_limit: int = Field(default=20, ge=1, le=100, description="Size of the capped warmup key")

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Directory holding the SQLite files")
    database_path: Path | None = Field(default=None, description="Reference store database file")
    cache_path: Path | None = Field(default=None, description="Cache database file")

    # Serving
    host: str = Field(default="127.0.0.1", description="HTTP bind address")
    port: int = Field(default=3000, ge=1, le=65535, description="HTTP port")
    log_level: str = Field(default="INFO", description="Root log level for entry points")

    @field_validator(
        "request_timeout",
        "rate_limit_window",
        "retry_initial_delay",
        "retry_max_delay",
        "core_ttl",
        "bulk_ttl",
        "default_ttl",
        "warmup_interval",
        "cleanup_interval",
        mode="before",
    )
    @classmethod
    def validate_duration(cls, v: Any) -> float:
        """Accept seconds or duration strings like '12h'."""
        return parse_duration(v)

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"api_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def resolve_paths(self) -> "Settings":
        if self.retry_initial_delay > self.retry_max_delay:
            raise ValueError("retry_initial_delay must not exceed retry_max_delay")
        if self.database_path is None:
            self.database_path = self.data_dir / "game.db"
        if self.cache_path is None:
            self.cache_path = self.data_dir / "open5e-cache.db"
        return self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, dotenv: bool = True) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            dotenv: Whether to load a .env file into os.environ first

        Raises:
            ConfigurationError: If any value is invalid
        """
        if environ is None:
            if dotenv and not load_dotenv():
                logger.debug("No .env file found, using process environment only")
            environ = dict(os.environ)

        values = {
            field: environ[var]
            for var, field in ENV_FIELDS.items()
            if environ.get(var, "") != ""
        }

        try:
            return cls(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(
                f"Invalid configuration: {problems}",
                details={"errors": e.errors(include_url=False)},
            ) from e


__all__ = [
    "Settings",
    "parse_duration",
]
