"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Upstream and viewer settings keep the variable names the kiosk deployment
already uses (IMMICH_URL, IMMICH_API_KEY, INTERVAL, TRANSITION, IMAGE_FIT,
ALBUM_ID, DEBUG). Everything is read once at import time and treated as
immutable afterwards.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Annotated

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

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


DEFAULT_INTERVAL_SECONDS = 15
DEFAULT_ALLOWED_PREFIXES = ("albums", "asset", "assets")


def _split_csv(value: object) -> object:
    """Accept comma-separated strings for list fields."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class UpstreamSettings(BaseSettings):
    """Connection details for the photo-management API.

    The credential is held as a SecretStr so it never shows up in reprs,
    validation errors or model dumps.
    """

    url: str = Field(
        "",
        description="Base origin of the photo API, e.g. http://immich.local:2283",
    )
    api_key: SecretStr = Field(
        SecretStr(""),
        description="API key sent upstream in the x-api-key header",
    )
    api_path: str = Field(
        "/api",
        description="Path segment appended to the origin when it is missing",
    )
    allowed_prefixes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_PREFIXES),
        description="First path segments the proxy may forward (comma-separated)",
    )
    connect_timeout_seconds: float = Field(
        10.0,
        description="Timeout for establishing the upstream connection",
        gt=0,
    )
    read_timeout_seconds: float = Field(
        30.0,
        description="Maximum wait for each upstream chunk",
        gt=0,
    )
    max_connections: int = Field(
        100,
        description="Upper bound of pooled upstream connections",
        ge=1,
    )
    chunk_size: int = Field(
        64 * 1024,
        description="Read size used when relaying upstream bodies",
        ge=1024,
    )

    model_config = SettingsConfigDict(
        env_prefix="IMMICH_",
        case_sensitive=False,
    )

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("api_path")
    @classmethod
    def _normalize_api_path(cls, value: str) -> str:
        value = value.strip().strip("/")
        return f"/{value}" if value else ""

    @field_validator("allowed_prefixes", mode="before")
    @classmethod
    def _parse_prefixes(cls, value: object) -> object:
        value = _split_csv(value)
        if isinstance(value, list):
            return [str(item).strip("/") for item in value if str(item).strip("/")]
        return value

    @property
    def is_configured(self) -> bool:
        """True when both the origin and the credential are present."""
        return bool(self.url and self.api_key.get_secret_value())


class ViewerSettings(BaseSettings):
    """Slideshow options embedded into the viewer page."""

    interval: int = Field(
        DEFAULT_INTERVAL_SECONDS,
        description="Seconds each photo stays on screen",
    )
    transition: str = Field("fade", description="Slide transition style")
    image_fit: str = Field("cover", description="CSS fit mode for photos")
    album_id: str = Field(
        "",
        description="Comma-separated album ids; empty shows favorites",
    )
    debug: bool = Field(
        False,
        description="Enable verbose proxy logging and client-side debug output",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
    )

    @field_validator("interval", mode="before")
    @classmethod
    def _fallback_interval(cls, value: object) -> object:
        # Blank, non-numeric and non-positive values fall back to the default.
        try:
            interval = int(str(value).strip())
        except (TypeError, ValueError):
            return DEFAULT_INTERVAL_SECONDS
        return interval if interval > 0 else DEFAULT_INTERVAL_SECONDS

    @field_validator("album_id", "transition", "image_fit")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-client rate limiting on the proxy",
    )
    rate_limit_requests: int = Field(
        500,
        description="Maximum number of requests allowed per window (per client)",
        ge=1,
    )
    rate_limit_window_seconds: int = Field(
        15 * 60,
        description="Rate limit window size in seconds",
        ge=1,
    )
    rate_limit_max_clients: int = Field(
        10000,
        description="Maximum number of client windows tracked at once",
        ge=1,
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include RateLimit-* and Retry-After headers when throttling",
    )
    proxy_prefix: str = Field(
        "/api/proxy",
        description="Mount point of the forwarding proxy",
    )
    template_path: str | None = Field(
        None,
        description="Viewer HTML template; defaults to the bundled template",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables)",
    )
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate request correlation ids",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class ServerSettings(BaseSettings):
    """Bind address for the bundled Uvicorn runner."""

    host: str = Field("0.0.0.0", description="Interface to listen on")
    port: int = Field(3000, description="TCP port to listen on", ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
    )


def _build_upstream_settings() -> "UpstreamSettings":
    """Build upstream settings from environment.

    Pydantic Settings (v2) populates values from environment variables;
    the factory keeps nested construction lazy so env loading above applies.
    """

    return UpstreamSettings()


def _build_viewer_settings() -> "ViewerSettings":
    return ViewerSettings()


def _build_app_settings() -> "AppSettings":
    return AppSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


def _build_server_settings() -> "ServerSettings":
    return ServerSettings()


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.

    Missing upstream origin or credential is not a validation error: the
    service still starts (with a warning) and every proxied request fails
    with a 502 until the environment is corrected.
    """

    app_env: str = APP_ENV
    upstream: UpstreamSettings = Field(default_factory=_build_upstream_settings)
    viewer: ViewerSettings = Field(default_factory=_build_viewer_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    server: ServerSettings = Field(default_factory=_build_server_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
        frozen=True,
    )


def warn_on_incomplete_config(cfg: Settings) -> list[str]:
    """Log a warning for each missing required upstream setting.

    Args:
        cfg: Settings to inspect.

    Returns:
        Names of the missing environment variables.
    """

    missing: list[str] = []
    if not cfg.upstream.url:
        missing.append("IMMICH_URL")
    if not cfg.upstream.api_key.get_secret_value():
        missing.append("IMMICH_API_KEY")

    if missing:
        logger.warning(
            "config.upstream_incomplete",
            extra={
                "missing": missing,
                "effect": "proxy requests will fail with 502 until configured",
            },
        )
    if not cfg.app.rate_limit_enabled:
        logger.warning(
            "config.rate_limit_disabled",
            extra={"setting": "APP_RATE_LIMIT_ENABLED"},
        )
    return missing


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
