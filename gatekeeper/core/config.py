"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Every value is read once at process start. Rate limiter instances receive
immutable copies (see ``RateLimitConfig``) so nothing is re-read per request.
"""

from __future__ import annotations

import os
from pathlib import Path

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

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _split_paths(value: str) -> list[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


class RateLimitSettings(BaseSettings):
    """Per-scope sliding window quotas and the store fault policy.

    Defaults mirror the production deployment: 300 requests/hour per client
    address, 1000 requests/hour per authenticated fingerprint and 60
    requests/minute per client address on the health and metrics paths.
    """

    disabled: bool = Field(
        False,
        description="Global kill switch; disables both limiters when true",
    )

    ip_enabled: bool = Field(True, description="Enable the per-address limiter")
    ip_window_ms: int = Field(
        60 * 60 * 1000,
        description="Sliding window size for the per-address limiter (ms)",
        ge=1,
    )
    ip_max: int = Field(
        300,
        description="Maximum requests per window per client address",
        ge=1,
    )

    fingerprint_enabled: bool = Field(True, description="Enable the per-identity limiter")
    fingerprint_window_ms: int = Field(
        60 * 60 * 1000,
        description="Sliding window size for the per-identity limiter (ms)",
        ge=1,
    )
    fingerprint_max: int = Field(
        1000,
        description="Maximum requests per window per authenticated fingerprint",
        ge=1,
    )

    fail_open: bool = Field(
        True,
        description="Admit requests when the store keeps failing (false returns HTTP 500)",
    )
    retry_attempts: int = Field(
        3,
        description="Store attempts before the fault policy applies",
        ge=1,
    )
    retry_base_delay_ms: int = Field(
        100,
        description="Backoff base; the delay after failed attempt n is base * 2**n",
        ge=0,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers when throttling",
    )
    health_enabled: bool = Field(True, description="Enable the per-address limiter on health paths")
    health_window_ms: int = Field(
        60 * 1000,
        description="Sliding window size for health and metrics requests (ms)",
        ge=1,
    )
    health_max: int = Field(
        60,
        description="Maximum health and metrics requests per window per client address",
        ge=1,
    )
    health_paths: str = Field(
        "/health,/metrics",
        description="Comma-separated paths limited by the health quota instead of the ip quota",
    )
    exempt_paths: str = Field(
        "",
        description="Comma-separated paths no limiter applies to",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @property
    def health_paths_list(self) -> list[str]:
        return _split_paths(self.health_paths)

    @property
    def exempt_paths_list(self) -> list[str]:
        return _split_paths(self.exempt_paths)


class StoreSettings(BaseSettings):
    """Window store backend configuration."""

    backend: str = Field(
        "memory",
        description="Window store backend: memory or sql",
        pattern="^(memory|sql)$",
    )
    database_url: str = Field(
        "sqlite:///./gatekeeper.db",
        description="SQLAlchemy database URL used by the sql backend",
    )
    timeout_seconds: float = Field(
        2.0,
        description="Storage-layer timeout for a single record-and-count call",
        gt=0,
    )
    echo: bool = Field(False, description="Log emitted SQL statements")

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class CleanupSettings(BaseSettings):
    """Retention policy for the out-of-band record sweeper."""

    retention_days: int = Field(
        30,
        description="Delete records whose newest request is older than this",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="CLEANUP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate log file at this size (0 disables)")
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required on protected routes",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated key:fingerprint pairs accepted by the auth step",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


def _build_rate_limit_settings() -> RateLimitSettings:
    """Build rate limit settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return RateLimitSettings()  # type: ignore[call-arg]


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid, so a
    non-positive window or quota never reaches request handling.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
