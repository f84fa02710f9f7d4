"""TEJUS data models."""

from __future__ import annotations

from tejus.models.enums import TERMINAL_STATUSES, DeliveryOutcome, ReportStatus, ReportType
from tejus.models.report import Location, OfflineEmergencyReport, new_report_id

__all__ = [
    "DeliveryOutcome",
    "Location",
    "OfflineEmergencyReport",
    "ReportStatus",
    "ReportType",
    "TERMINAL_STATUSES",
    "new_report_id",
]
