"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_TRUSTED_HEADER_NAMES: tuple[str, ...] = ("X-Forwarded-For",)


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment."""

    return RateLimitSettings()


def _build_redis_settings() -> "RedisSettings":
    """Build counter store connection settings from environment."""

    return RedisSettings()


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()


class RateLimitSettings(BaseSettings):
    """Per-window request thresholds and key namespacing.

    A window whose limit is zero or negative is not checked at all.
    """

    enabled: bool = Field(
        True,
        description="Enable the rate limiting middleware",
    )
    hourly_request_limit: int = Field(
        6000,
        description="Maximum requests per client per hour (<= 0 disables)",
    )
    minute_request_limit: int = Field(
        200,
        description="Maximum requests per client per minute (<= 0 disables)",
    )
    second_request_limit: int = Field(
        20,
        description="Maximum requests per client per second (<= 0 disables)",
    )
    prefix: str = Field(
        "rate_limits:",
        description="Namespace prepended to every counter store key",
    )
    trusted_header_names: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TRUSTED_HEADER_NAMES),
        description="Proxy headers inspected for the client IP, in priority order",
    )
    include_headers: bool = Field(
        False,
        description="Attach X-Rate-Limit-Limit/X-Rate-Limit-Remaining to responses",
    )
    store_backend: Literal["redis", "memory"] = Field(
        "redis",
        description="Counter store implementation (memory is per-process only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Redis connection configuration for the counter store."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    socket_timeout: float = Field(
        1.0,
        description="Seconds to wait on a Redis command before failing",
    )
    socket_connect_timeout: float = Field(
        1.0,
        description="Seconds to wait when opening a Redis connection",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where log records are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file at this size (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting has the wrong type.
    """

    app_env: str = APP_ENV
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
