"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

The limiter itself never reads the environment. Settings are resolved once
into an immutable ``LimiterConfig`` which is handed to ``RateLimiter``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
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


FailMode = Literal["open", "closed"]


class LimiterConfig(BaseModel):
    """Immutable limiter configuration.

    Two configurations are the same when all of their fields are equal; the
    limiter rebuilds its counters whenever a different value is applied.

    Attributes:
        limit: Requests allowed per window on the address dimension.
        window_seconds: Window length in seconds on the address dimension.
        capacity: Maximum number of keys tracked by the local counter.
        session_enabled: Also limit per session key.
        session_limit: Requests per window on the session dimension.
        session_window_seconds: Window on the session dimension.
        shared_mode_enabled: Consult the shared counter store.
        shared_backend_url: ``redis://`` or ``https://`` (REST) endpoint.
        shared_backend_token: REST bearer token or Redis password.
        sliding_mode: Use the sliding window algorithm on the shared store.
        analytics_enabled: Record allowed/blocked counts on the shared store.
        fail_mode: Verdict when the shared store fails ("open" admits).
        shared_timeout_seconds: Upper bound for one shared store call.
        max_pending_tasks: Cap on in-flight background analytics writes.
        key_prefix: Namespace for keys written to the shared store.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    limit: int = Field(60, gt=0)
    window_seconds: float = Field(60.0, gt=0)
    capacity: int = Field(10_000, gt=0)

    session_enabled: bool = False
    session_limit: int | None = Field(None, gt=0)
    session_window_seconds: float | None = Field(None, gt=0)

    shared_mode_enabled: bool = False
    shared_backend_url: str | None = None
    shared_backend_token: str | None = None
    sliding_mode: bool = False
    analytics_enabled: bool = False
    fail_mode: FailMode = "open"
    shared_timeout_seconds: float = Field(1.0, gt=0)
    max_pending_tasks: int = Field(100, gt=0)
    key_prefix: str = "rate_guard"

    @property
    def effective_session_limit(self) -> int:
        return self.session_limit or self.limit

    @property
    def effective_session_window_seconds(self) -> float:
        return self.session_window_seconds or self.window_seconds


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration read from the environment."""

    enabled: bool = Field(
        True,
        description="Enable rate limiting on protected routes",
    )
    limit: int = Field(
        60,
        description="Maximum number of requests allowed per window (per address)",
        ge=1,
    )
    window_seconds: float = Field(
        60.0,
        description="Rate limit window size in seconds",
        gt=0,
    )
    capacity: int = Field(
        10_000,
        description="Maximum number of identities tracked in memory",
        ge=1,
    )
    session_enabled: bool = Field(
        False,
        description="Also rate limit per session cookie",
    )
    session_limit: int | None = Field(
        None,
        description="Requests per window for the session dimension (defaults to limit)",
        ge=1,
    )
    session_window_seconds: float | None = Field(
        None,
        description="Window for the session dimension (defaults to window_seconds)",
        gt=0,
    )
    session_cookie_name: str = Field(
        "rl_session",
        description="Cookie carrying the rate limit session key",
    )
    identifier_header: str | None = Field(
        None,
        description="Header whose value replaces the client address as identifier",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on responses",
    )

    shared_enabled: bool = Field(
        False,
        description="Consult the shared counter store after the local check",
    )
    shared_url: str | None = Field(
        None,
        description="Shared store URL (redis://... or https://... REST endpoint)",
        validation_alias=AliasChoices("RATE_LIMIT_SHARED_URL", "UPSTASH_REDIS_REST_URL"),
    )
    shared_token: str | None = Field(
        None,
        description="Shared store REST token or Redis password",
        validation_alias=AliasChoices("RATE_LIMIT_SHARED_TOKEN", "UPSTASH_REDIS_REST_TOKEN"),
    )
    sliding: bool = Field(
        False,
        description="Use sliding windows on the shared store",
    )
    analytics: bool = Field(
        False,
        description="Record allowed/blocked counters on the shared store",
    )
    fail_mode: FailMode = Field(
        "open",
        description="Verdict when the shared store is unavailable",
    )
    shared_timeout_seconds: float = Field(
        1.0,
        description="Timeout for a single shared store call",
        gt=0,
    )
    max_pending_tasks: int = Field(
        100,
        description="Maximum in-flight background analytics writes",
        ge=1,
    )
    key_prefix: str = Field(
        "rate_guard",
        description="Namespace for shared store keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
        populate_by_name=True,
    )

    def to_limiter_config(self) -> LimiterConfig:
        """Resolve settings into the immutable limiter configuration."""

        return LimiterConfig(
            limit=self.limit,
            window_seconds=self.window_seconds,
            capacity=self.capacity,
            session_enabled=self.session_enabled,
            session_limit=self.session_limit,
            session_window_seconds=self.session_window_seconds,
            shared_mode_enabled=self.shared_enabled,
            shared_backend_url=self.shared_url,
            shared_backend_token=self.shared_token,
            sliding_mode=self.sliding,
            analytics_enabled=self.analytics,
            fail_mode=self.fail_mode,
            shared_timeout_seconds=self.shared_timeout_seconds,
            max_pending_tasks=self.max_pending_tasks,
            key_prefix=self.key_prefix,
        )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int | None = Field(None, description="Rotate log file at this size")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()


def _build_log_settings() -> LogSettings:
    return LogSettings()


class Settings(BaseSettings):
    """Main application settings container."""

    app_env: str = APP_ENV
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
