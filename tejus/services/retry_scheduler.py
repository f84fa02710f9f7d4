"""Periodic retry sweep and retention pruning for offline reports.

Runs as an ``asyncio`` background task inside the API process: every
``retry_sweep_interval_seconds`` it retries pending reports, and every
``prune_interval_hours`` it drops reports older than
``report_retention_days``.  A failing iteration is logged and the loop
carries on.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from tejus.services.offline_reporting import OfflineReportManager

logger = structlog.get_logger(__name__)


class RetryScheduler:
    """Drives :meth:`OfflineReportManager.retry_sweep` on a timer.

    Parameters
    ----------
    manager:
        The report manager to sweep.
    settings:
        Application settings (``enable_auto_retry``,
        ``retry_sweep_interval_seconds``, ``report_retention_days``,
        ``prune_interval_hours``).
    """

    def __init__(self, manager: OfflineReportManager, settings: object) -> None:
        self._manager = manager
        self._settings = settings
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._running = False
        self._cancel_event = asyncio.Event()
        self._last_sweep: datetime | None = None
        self._last_prune: datetime | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_sweep(self) -> datetime | None:
        return self._last_sweep

    @property
    def last_prune(self) -> datetime | None:
        return self._last_prune

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn :meth:`start_background_scheduler` as a task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.start_background_scheduler())

    async def start_background_scheduler(self) -> None:
        """Sweep and prune until stopped.  Returns immediately when disabled."""
        if not getattr(self._settings, "enable_auto_retry", True):
            logger.info("retry_scheduler.disabled")
            return

        interval = float(getattr(self._settings, "retry_sweep_interval_seconds", 300.0))
        self._running = True
        self._cancel_event.clear()
        logger.info("retry_scheduler.started", interval_seconds=interval)

        try:
            while self._running:
                await self.run_once()
                if self._should_prune(datetime.now(UTC)):
                    await self._safe_prune()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("retry_scheduler.cancelled")
        finally:
            self._running = False
            logger.info("retry_scheduler.stopped")

    def _should_prune(self, now: datetime) -> bool:
        if self._last_prune is None:
            return True
        hours = int(getattr(self._settings, "prune_interval_hours", 24))
        return now - self._last_prune >= timedelta(hours=hours)

    async def _safe_prune(self) -> int | None:
        days = getattr(self._settings, "report_retention_days", 30)
        try:
            removed = await self._manager.prune_older_than(days)
        except Exception:
            logger.error("retry_scheduler.prune_failed", days=days, exc_info=True)
            return None
        self._last_prune = datetime.now(UTC)
        return removed

    # ------------------------------------------------------------------
    # On-demand execution
    # ------------------------------------------------------------------

    async def run_once(self) -> int:
        """Run a single sweep; returns the number of reports delivered."""
        try:
            succeeded = await self._manager.retry_sweep(cancel_event=self._cancel_event)
        except Exception:
            logger.error("retry_scheduler.sweep_failed", exc_info=True)
            return 0
        self._last_sweep = datetime.now(UTC)
        return succeeded

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop the loop; an in-flight sweep halts before its next report."""
        logger.info("retry_scheduler.stopping")
        self._running = False
        self._cancel_event.set()

        if self._task is not None:
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=10.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            self._task = None
