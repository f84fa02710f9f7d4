"""Shared fakes and fixtures for the offline reporting tests.

All tests run WITHOUT network access.
"""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime
from typing import Iterable

import pytest

from tejus.models.enums import DeliveryOutcome
from tejus.models.report import Location
from tejus.services.location import LocationPermissionError, StaticLocationProvider
from tejus.services.offline_reporting import OfflineReportManager
from tejus.services.report_store import InMemoryStorageBackend, ReportStore

FIXED_NOW = datetime(2026, 10, 18, 9, 30, tzinfo=UTC)


class FakeChannel:
    """Messaging channel with scripted outcomes.

    Each entry in *outcomes* is returned (or raised, if it is an
    exception) by successive :meth:`send` calls; once exhausted,
    *default* is used.
    """

    def __init__(
        self,
        outcomes: Iterable[DeliveryOutcome | str | BaseException] = (),
        *,
        default: DeliveryOutcome | str = DeliveryOutcome.SENT,
        available: bool = True,
    ) -> None:
        self._outcomes = deque(outcomes)
        self._default = default
        self.available = available
        self.sent: list[tuple[str, str]] = []

    async def is_available(self) -> bool:
        return self.available

    async def send(self, to: str, body: str) -> DeliveryOutcome | str:
        self.sent.append((to, body))
        outcome = self._outcomes.popleft() if self._outcomes else self._default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeLauncher:
    def __init__(self, error: BaseException | None = None) -> None:
        self.opened: list[str] = []
        self._error = error

    async def open(self, uri: str) -> None:
        self.opened.append(uri)
        if self._error is not None:
            raise self._error


class DeniedLocationProvider:
    async def get_current_location(self) -> Location | None:
        raise LocationPermissionError("denied")


class BrokenLocationProvider:
    async def get_current_location(self) -> Location | None:
        raise RuntimeError("gps chip on fire")


class Clock:
    """Mutable clock for the manager."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def bangalore() -> Location:
    return Location(latitude=12.9716, longitude=77.5946, accuracy=14.6)


@pytest.fixture
def backend() -> InMemoryStorageBackend:
    return InMemoryStorageBackend()


@pytest.fixture
def store(backend: InMemoryStorageBackend) -> ReportStore:
    return ReportStore(backend)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def manager(
    store: ReportStore,
    channel: FakeChannel,
    launcher: FakeLauncher,
    clock: Clock,
    bangalore: Location,
) -> OfflineReportManager:
    return OfflineReportManager(
        store,
        StaticLocationProvider(bangalore),
        channel,
        launcher,
        location_timeout_seconds=1.0,
        delivery_timeout_seconds=1.0,
        clock=clock,
    )
