"""Offline emergency report model.

The persisted JSON layout uses camelCase keys (``reportType``,
``contactNumber``, ``retryCount``) and ISO-8601 timestamps; Python code
may use the snake_case field names.
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import UTC, datetime
from typing import Any, Final

from pydantic import BaseModel, Field, field_validator

from tejus.models.enums import TERMINAL_STATUSES, ReportStatus, ReportType

_ID_ALPHABET: Final[str] = string.digits + string.ascii_lowercase
_ID_SUFFIX_LENGTH: Final[int] = 9


def new_report_id() -> str:
    """Return a time-based report id with a random base36 suffix.

    Format: ``emergency_<epoch millis>_<9 chars>``.
    """
    millis = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LENGTH))
    return f"emergency_{millis}_{suffix}"


class Location(BaseModel):
    """Point-in-time position fix."""

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    accuracy: float | None = Field(default=None, ge=0.0, description="Metres")


class OfflineEmergencyReport(BaseModel):
    """A single emergency notification tracked for delivery."""

    model_config = {"populate_by_name": True}

    id: str = Field(default_factory=new_report_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    location: Location | None = None
    report_type: ReportType = Field(..., alias="reportType")
    description: str | None = None
    contact_number: str = Field(..., min_length=1, alias="contactNumber")
    status: ReportStatus = ReportStatus.PENDING
    retry_count: int = Field(default=0, ge=0, alias="retryCount")

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_retryable(self, max_retry_attempts: int) -> bool:
        """Whether a retry sweep may attempt delivery of this report again."""
        return self.status == ReportStatus.PENDING and self.retry_count < max_retry_attempts

    def to_storage(self) -> dict[str, Any]:
        """Serialise to the camelCase JSON shape used by the report store."""
        return self.model_dump(mode="json", by_alias=True)
