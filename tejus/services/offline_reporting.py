"""Offline emergency report lifecycle: create, deliver, retry, prune.

A report starts ``pending`` with ``retry_count == 0``.  Each failed
delivery attempt increments ``retry_count``; reaching the retry bound
makes the report ``failed``.  A successful attempt makes it ``sent``.
Both are terminal: later attempts on the same report are no-ops.

    pending --success--------------------------> sent
    pending --failure, retry_count < max-------> pending (retry_count + 1)
    pending --failure, retry_count reaches max-> failed
    any     --prune_older_than, too old--------> removed

When the channel cannot deliver at all, the message is handed to a
compose view instead.  Whether the user then presses send is not
observable, so the report is marked ``sent`` (or ``unconfirmed`` when
``fallback_marks_sent`` is off).

Delivery failures never raise to the caller; they surface only as the
``bool`` from :meth:`OfflineReportManager.attempt_delivery` and the count
from :meth:`OfflineReportManager.retry_sweep`.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import Counter
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, AsyncIterator, Callable, Final

import structlog

from tejus.models.enums import DeliveryOutcome, ReportStatus, ReportType
from tejus.models.report import OfflineEmergencyReport
from tejus.services.location import acquire_location
from tejus.services.messaging import LoggingComposeLauncher, build_sms_uri

if TYPE_CHECKING:
    from tejus.services.location import LocationProvider
    from tejus.services.messaging import ComposeLauncher, MessagingChannel
    from tejus.services.report_store import ReportStore

logger = structlog.get_logger(__name__)

MAX_RETRY_ATTEMPTS: Final[int] = 3
DEFAULT_RETENTION_DAYS: Final[int] = 30

_TIME_FORMAT: Final[str] = "%m/%d/%Y, %I:%M:%S %p"


# ---------------------------------------------------------------------------
# Message formatting
# ---------------------------------------------------------------------------


def _to_fixed(value: float, digits: int) -> str:
    """Fixed-point text with ties rounded away from zero (``2.5`` -> ``3``)."""
    quantum = Decimal(1).scaleb(-digits)
    return format(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP), "f")


def _plain_number(value: float) -> str:
    """Shortest text for *value*: ``77`` rather than ``77.0``, ``0.00001`` rather than ``1e-05``.

    Exponent notation is kept only below ``1e-6``, written as ``1e-7``.
    """
    if value == int(value):
        return str(int(value))
    text = repr(value)
    if "e" not in text:
        return text
    mantissa, exponent = text.split("e")
    if abs(value) >= 1e-6:
        return format(Decimal(text), "f")
    return f"{mantissa}e{int(exponent):+d}"


def format_emergency_message(report: OfflineEmergencyReport) -> str:
    """Render the SMS body read by the person on the receiving end.

    Field order is fixed: banner, type, time, id, location block, map
    link, description, closing notice.
    """
    local_time = report.timestamp.astimezone().strftime(_TIME_FORMAT)

    message = "🚨 EMERGENCY ALERT - TEJUS APP 🚨\n\n"
    message += f"Report Type: {report.report_type.upper()}\n"
    message += f"Time: {local_time}\n"
    message += f"Report ID: {report.id}\n\n"

    location = report.location
    if location is not None:
        message += "📍 LOCATION:\n"
        message += f"Lat: {_to_fixed(location.latitude, 6)}\n"
        message += f"Lng: {_to_fixed(location.longitude, 6)}\n"
        if location.accuracy:
            message += f"Accuracy: ±{_to_fixed(location.accuracy, 0)}m\n"
        latitude, longitude = _plain_number(location.latitude), _plain_number(location.longitude)
        message += f"\nGoogle Maps: https://maps.google.com/?q={latitude},{longitude}\n\n"
    else:
        message += "📍 LOCATION: Unable to determine\n\n"

    if report.description:
        message += f"Description: {report.description}\n\n"

    message += "⚠️ This is an automated emergency alert sent via TEJUS Emergency Response App.\n"
    message += "Emergency data has been saved to database for emergency services coordination.\n\n"
    message += "Please respond immediately if this is a genuine emergency."
    return message


# ---------------------------------------------------------------------------
# Lifecycle manager
# ---------------------------------------------------------------------------


class OfflineReportManager:
    """Creates, delivers, retries and prunes offline emergency reports.

    Parameters
    ----------
    store:
        Persistence for the report collection.
    location_provider:
        Queried once per :meth:`create`; failures yield no location.
    channel:
        SMS channel used for delivery attempts.
    compose_launcher:
        Fallback used when *channel* reports it cannot deliver.
    max_retry_attempts:
        Failed attempts after which a report becomes ``failed``.
    location_timeout_seconds / delivery_timeout_seconds:
        Bounds on the external calls.  A delivery timeout counts as a
        failed attempt.
    fallback_marks_sent:
        Status given to reports handed to the compose view: ``sent``
        when true, ``unconfirmed`` otherwise.
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    __slots__ = (
        "_channel",
        "_clock",
        "_compose_launcher",
        "_delivery_locks",
        "_delivery_timeout",
        "_delivery_users",
        "_fallback_marks_sent",
        "_location_provider",
        "_location_timeout",
        "_max_retry_attempts",
        "_store",
    )

    def __init__(
        self,
        store: ReportStore,
        location_provider: LocationProvider,
        channel: MessagingChannel,
        compose_launcher: ComposeLauncher | None = None,
        *,
        max_retry_attempts: int = MAX_RETRY_ATTEMPTS,
        location_timeout_seconds: float = 10.0,
        delivery_timeout_seconds: float = 30.0,
        fallback_marks_sent: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be at least 1")
        self._store = store
        self._location_provider = location_provider
        self._channel = channel
        self._compose_launcher = compose_launcher or LoggingComposeLauncher()
        self._max_retry_attempts = max_retry_attempts
        self._location_timeout = location_timeout_seconds
        self._delivery_timeout = delivery_timeout_seconds
        self._fallback_marks_sent = fallback_marks_sent
        self._clock = clock or (lambda: datetime.now(UTC))
        self._delivery_locks: dict[str, asyncio.Lock] = {}
        self._delivery_users: Counter[str] = Counter()

    @property
    def max_retry_attempts(self) -> int:
        return self._max_retry_attempts

    @property
    def store(self) -> ReportStore:
        return self._store

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        report_type: ReportType | str,
        contact_number: str,
        description: str | None = None,
    ) -> OfflineEmergencyReport:
        """Persist a new ``pending`` report.  Delivery is a separate step."""
        contact = contact_number.strip()
        if not contact:
            raise ValueError("contact_number must not be empty")
        kind = ReportType(report_type)

        location = await acquire_location(self._location_provider, self._location_timeout)

        report = OfflineEmergencyReport(
            timestamp=self._clock(),
            location=location,
            report_type=kind,
            description=description or None,
            contact_number=contact,
        )
        await self._store.append(report)

        logger.info(
            "offline_report.created",
            report_id=report.id,
            report_type=kind,
            has_location=location is not None,
        )
        return report

    def format_message(self, report: OfflineEmergencyReport) -> str:
        return format_emergency_message(report)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _delivery_guard(self, report_id: str) -> AsyncIterator[None]:
        """Hold the per-report delivery lock; dropped once nobody waits on it."""
        lock = self._delivery_locks.setdefault(report_id, asyncio.Lock())
        self._delivery_users[report_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._delivery_users[report_id] -= 1
            if self._delivery_users[report_id] <= 0:
                del self._delivery_users[report_id]
                self._delivery_locks.pop(report_id, None)

    async def attempt_delivery(self, report: OfflineEmergencyReport) -> bool:
        """Try to deliver *report* once and persist the resulting state.

        Attempts on the same report id run one at a time, and each one
        works on the stored record rather than on *report*, which may be
        an outdated copy.  The resulting status and retry count are
        copied back onto *report*.  Returns whether this attempt
        succeeded; reports that are already terminal are left alone and
        yield ``False``.
        """
        async with self._delivery_guard(report.id):
            current = await self._store.get(report.id)
            if current is None:
                current = report
            try:
                return await self._deliver(current)
            finally:
                report.status = current.status
                report.retry_count = current.retry_count

    async def _deliver(self, report: OfflineEmergencyReport) -> bool:
        log = logger.bind(report_id=report.id, contact=report.contact_number)

        if not report.is_retryable(self._max_retry_attempts):
            log.info(
                "offline_report.delivery_skipped",
                status=report.status,
                retry_count=report.retry_count,
            )
            return False

        message = format_emergency_message(report)
        outcome: DeliveryOutcome | str = DeliveryOutcome.FAILED

        try:
            available = await asyncio.wait_for(self._channel.is_available(), timeout=self._delivery_timeout)
            if not available:
                await asyncio.wait_for(
                    self._compose_launcher.open(build_sms_uri(report.contact_number, message)),
                    timeout=self._delivery_timeout,
                )
                report.status = ReportStatus.SENT if self._fallback_marks_sent else ReportStatus.UNCONFIRMED
                await self._store.replace(report)
                log.info("offline_report.fallback_compose", status=report.status)
                return True

            outcome = await asyncio.wait_for(
                self._channel.send(report.contact_number, message),
                timeout=self._delivery_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("offline_report.delivery_timeout", timeout_seconds=self._delivery_timeout)
        except Exception:
            log.warning("offline_report.delivery_error", exc_info=True)

        if outcome == DeliveryOutcome.SENT:
            report.status = ReportStatus.SENT
            await self._store.replace(report)
            log.info("offline_report.sent", retry_count=report.retry_count)
            return True

        report.retry_count += 1
        if report.retry_count >= self._max_retry_attempts:
            report.status = ReportStatus.FAILED
            log.error("offline_report.failed_permanently", retry_count=report.retry_count)
        else:
            log.warning(
                "offline_report.delivery_failed",
                retry_count=report.retry_count,
                max_retry_attempts=self._max_retry_attempts,
            )
        await self._store.replace(report)
        return False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_all(self) -> list[OfflineEmergencyReport]:
        return await self._store.load_all()

    async def get(self, report_id: str) -> OfflineEmergencyReport | None:
        return await self._store.get(report_id)

    async def list_pending(self) -> list[OfflineEmergencyReport]:
        """Reports still eligible for another attempt, in creation order."""
        return [
            report
            for report in await self._store.load_all()
            if report.is_retryable(self._max_retry_attempts)
        ]

    # ------------------------------------------------------------------
    # Retry sweep
    # ------------------------------------------------------------------

    async def retry_sweep(self, cancel_event: asyncio.Event | None = None) -> int:
        """Attempt every pending report once, one after another.

        The pending set is snapshotted when the sweep starts; reports
        created meanwhile wait for the next sweep.  Setting
        *cancel_event* stops the sweep before its next report.

        Returns the number of successful attempts.
        """
        pending = await self.list_pending()
        succeeded = 0
        attempted = 0

        for report in pending:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("offline_report.sweep_cancelled", attempted=attempted, remaining=len(pending) - attempted)
                break
            attempted += 1
            if await self.attempt_delivery(report):
                succeeded += 1

        logger.info(
            "offline_report.sweep_complete",
            pending=len(pending),
            attempted=attempted,
            succeeded=succeeded,
        )
        return succeeded

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def prune_older_than(self, days: float = DEFAULT_RETENTION_DAYS) -> int:
        """Drop every report older than *days*, whatever its status.

        Irreversible.  Returns the number of reports removed.
        """
        if days < 0:
            raise ValueError("days must be non-negative")
        cutoff = self._clock() - timedelta(days=days)

        async with self._store.transaction() as reports:
            kept = [report for report in reports if report.timestamp >= cutoff]
            removed = len(reports) - len(kept)
            reports[:] = kept

        logger.info("offline_report.pruned", days=days, removed=removed, kept=len(kept))
        return removed
