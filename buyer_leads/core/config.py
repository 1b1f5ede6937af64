"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
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


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_auth_settings() -> "AuthSettings":
    """Build auth settings from environment.

    See _build_app_settings() for rationale about the type ignore.
    """

    return AuthSettings()  # type: ignore[call-arg]


def _build_db_settings() -> "DatabaseSettings":
    return DatabaseSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    page_size: int = Field(
        10,
        description="Default number of buyers returned per list page",
        ge=1,
        le=100,
    )
    export_max_rows: int = Field(
        1000,
        description="Maximum number of rows written to a CSV export",
        ge=1,
    )
    import_max_rows: int = Field(
        200,
        description="Maximum number of rows accepted by a single import",
        ge=1,
    )
    max_upload_size_mb: int = Field(
        2,
        description="Maximum CSV upload size in megabytes",
    )
    history_preview_limit: int = Field(
        5,
        description="Number of history entries returned alongside a buyer",
        ge=1,
    )
    conflict_tolerance_seconds: float = Field(
        1.0,
        description=(
            "Allowed skew between the caller's last-seen updatedAt and the stored "
            "value before an update is rejected as a conflict"
        ),
        ge=0,
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-user rate limiting on write endpoints",
    )
    rate_limit_create_capacity: int = Field(
        5,
        description="Buyer creations allowed per window (per user)",
        ge=1,
    )
    rate_limit_update_capacity: int = Field(
        10,
        description="Buyer updates allowed per window (per user)",
        ge=1,
    )
    rate_limit_window_ms: int = Field(
        10_000,
        description="Token bucket refill window in milliseconds",
        ge=1,
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class AuthSettings(BaseSettings):
    """Bearer token verification settings.

    Tokens are issued by the external identity provider and signed with a
    shared secret. The ``sub`` claim carries the opaque user id.
    """

    jwt_secret: str = Field(
        ...,
        description="Secret used to verify bearer token signatures",
    )
    jwt_algorithm: str = Field(
        "HS256",
        description="Signature algorithm expected on bearer tokens",
    )
    jwt_audience: str | None = Field(
        None,
        description="Expected 'aud' claim (e.g. 'authenticated'); unchecked when unset",
    )
    admin_user_ids: str | None = Field(
        None,
        description="Comma-separated list of user ids granted the admin role",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
    )


class DatabaseSettings(BaseSettings):
    """Relational store connection settings."""

    url: str = Field(
        "sqlite+pysqlite:///./buyers.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(
        False,
        description="Log every SQL statement emitted by the engine",
    )
    create_tables: bool = Field(
        True,
        description="Create missing tables on application startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="'json' or 'plain'")
    output: str = Field("stdout", description="'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if required settings are missing.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    auth: AuthSettings = Field(default_factory=_build_auth_settings)
    db: DatabaseSettings = Field(default_factory=_build_db_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
