from __future__ import annotations

from enum import StrEnum


class ReportType(StrEnum):
    __slots__ = ()

    ACCIDENT = "accident"
    MEDICAL = "medical"
    FIRE = "fire"
    GENERAL = "general"


class ReportStatus(StrEnum):
    __slots__ = ()

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    # Handed to a compose view; the user may or may not have sent it.
    UNCONFIRMED = "unconfirmed"


class DeliveryOutcome(StrEnum):
    __slots__ = ()

    SENT = "sent"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[ReportStatus] = frozenset(
    {ReportStatus.SENT, ReportStatus.FAILED, ReportStatus.UNCONFIRMED}
)
