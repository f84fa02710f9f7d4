"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. All keys use the
``TEJUS_`` prefix (e.g. ``TEJUS_SMS_PROVIDER=msg91``).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the TEJUS reporting service.

    Environment variables are loaded from a ``.env`` file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="TEJUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # ── Report storage ─────────────────────────────────────────────────
    storage_backend: Literal["file", "redis", "memory"] = "file"
    storage_dir: str = ".tejus"
    storage_key: str = "emergency_reports_offline"
    redis_url: str = "redis://localhost:6379/0"

    # ── Delivery ───────────────────────────────────────────────────────
    max_retry_attempts: int = Field(default=3, ge=1)
    delivery_timeout_seconds: float = Field(default=30.0, gt=0)
    # Compose-view fallback cannot observe whether the user pressed send.
    fallback_marks_sent: bool = True
    sms_provider: Literal["mock", "msg91", "textlocal"] = "mock"
    sms_api_key: str = ""
    sms_sender_id: str = "TEJUSA"

    # ── Location ───────────────────────────────────────────────────────
    location_timeout_seconds: float = Field(default=10.0, gt=0)
    geolocation_url: str = ""
    default_latitude: float | None = None
    default_longitude: float | None = None

    # ── Retry sweep / retention ────────────────────────────────────────
    enable_auto_retry: bool = True
    retry_sweep_interval_seconds: float = Field(default=300.0, gt=0)
    report_retention_days: int = Field(default=30, ge=0)
    prune_interval_hours: int = Field(default=24, ge=1)

    # ── Admin API Key ──────────────────────────────────────────────────
    admin_api_key: str = ""

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
