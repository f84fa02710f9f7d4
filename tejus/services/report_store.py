"""Durable store for offline emergency reports.

The whole collection lives in a single named slot as a JSON array and is
rewritten on every mutation.  Storage failures never reach the caller:
they are logged, reads degrade to an empty collection and writes become
no-ops.

Read-modify-write cycles are serialised behind one :class:`asyncio.Lock`
per store so that concurrent tasks in the same process cannot lose
each other's updates.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Final, Protocol, runtime_checkable

import orjson
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tejus.models.report import OfflineEmergencyReport

if TYPE_CHECKING:
    from config.settings import Settings

logger = structlog.get_logger(__name__)

DEFAULT_STORAGE_KEY: Final[str] = "emergency_reports_offline"


# ---------------------------------------------------------------------------
# Storage backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class StorageBackend(Protocol):
    """Async key -> bytes slot storage."""

    async def get_item(self, key: str) -> bytes | None: ...

    async def set_item(self, key: str, value: bytes) -> None: ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryStorageBackend:
    """Process-local slots.  Nothing survives a restart."""

    __slots__ = ("_data",)

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get_item(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set_item(self, key: str, value: bytes) -> None:
        self._data[key] = value


# ---------------------------------------------------------------------------
# File backend
# ---------------------------------------------------------------------------


class FileStorageBackend:
    """One JSON file per slot under *directory*.

    Writes go to a temporary file in the same directory and are moved
    into place with :func:`os.replace`, so readers only ever see a
    complete slot.  Blocking file I/O runs in a worker thread.
    """

    __slots__ = ("_directory",)

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    async def get_item(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read_sync, self.path_for(key))

    async def set_item(self, key: str, value: bytes) -> None:
        await asyncio.to_thread(self._write_sync, self.path_for(key), value)

    @staticmethod
    def _read_sync(path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    @staticmethod
    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
        reraise=True,
    )
    def _write_sync(path: Path, value: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisStorageBackend:
    """Slots stored as plain Redis string keys via ``redis.asyncio``."""

    __slots__ = ("_pool", "_redis")

    def __init__(self, url: str = "redis://localhost:6379/0", *, max_connections: int = 5) -> None:
        import redis.asyncio as aioredis

        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)

    async def get_item(self, key: str) -> bytes | None:
        return await self._redis.get(key)

    async def set_item(self, key: str, value: bytes) -> None:
        await self._redis.set(key, value)

    async def ping(self) -> bool:
        """Return *True* if the Redis server is reachable."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()


def build_storage_backend(settings: Settings) -> StorageBackend:
    """Create the backend selected by ``settings.storage_backend``."""
    if settings.storage_backend == "redis":
        return RedisStorageBackend(url=settings.redis_url)
    if settings.storage_backend == "memory":
        return InMemoryStorageBackend()
    return FileStorageBackend(settings.storage_dir)


# ---------------------------------------------------------------------------
# ReportStore  --  public API
# ---------------------------------------------------------------------------


class ReportStore:
    """Ordered, id-addressable collection of reports in one storage slot.

    Parameters
    ----------
    backend:
        Where the slot lives.
    key:
        Slot name.  Defaults to ``"emergency_reports_offline"``.
    """

    __slots__ = ("_backend", "_key", "_lock")

    def __init__(self, backend: StorageBackend, *, key: str = DEFAULT_STORAGE_KEY) -> None:
        self._backend = backend
        self._key = key
        self._lock = asyncio.Lock()

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    # -- Unlocked helpers ------------------------------------------------------

    async def _read(self) -> list[OfflineEmergencyReport]:
        try:
            raw = await self._backend.get_item(self._key)
        except Exception:
            logger.warning("report_store.read_failed", key=self._key, exc_info=True)
            return []

        if not raw:
            return []

        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("report_store.corrupt_slot", key=self._key, size=len(raw))
            return []

        if not isinstance(data, list):
            logger.warning("report_store.unexpected_shape", key=self._key, type=type(data).__name__)
            return []

        reports: list[OfflineEmergencyReport] = []
        for index, item in enumerate(data):
            try:
                reports.append(OfflineEmergencyReport.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "report_store.corrupt_record_skipped",
                    key=self._key,
                    index=index,
                    errors=exc.error_count(),
                )
        return reports

    async def _write(self, reports: list[OfflineEmergencyReport]) -> bool:
        try:
            payload = orjson.dumps([report.to_storage() for report in reports])
            await self._backend.set_item(self._key, payload)
        except Exception:
            logger.error("report_store.write_failed", key=self._key, count=len(reports), exc_info=True)
            return False
        return True

    # -- Public API ------------------------------------------------------------

    async def is_readable(self) -> bool:
        """Whether the backend currently answers reads for the slot."""
        try:
            await self._backend.get_item(self._key)
        except Exception:
            return False
        return True

    async def load_all(self) -> list[OfflineEmergencyReport]:
        """Return every stored report in storage order (empty on any failure)."""
        async with self._lock:
            return await self._read()

    async def save_all(self, reports: list[OfflineEmergencyReport]) -> None:
        """Overwrite the slot with *reports*."""
        async with self._lock:
            await self._write(list(reports))

    async def get(self, report_id: str) -> OfflineEmergencyReport | None:
        for report in await self.load_all():
            if report.id == report_id:
                return report
        return None

    async def append(self, report: OfflineEmergencyReport) -> None:
        async with self.transaction() as reports:
            reports.append(report)

    async def replace(self, report: OfflineEmergencyReport) -> bool:
        """Substitute the stored entry sharing *report*'s id.

        Returns ``False`` and leaves the slot untouched when no entry
        matches.
        """
        async with self._lock:
            reports = await self._read()
            for index, existing in enumerate(reports):
                if existing.id == report.id:
                    reports[index] = report
                    await self._write(reports)
                    return True

        logger.warning("report_store.replace_unmatched", report_id=report.id)
        return False

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[list[OfflineEmergencyReport]]:
        """Hold the store lock across a load, in-place mutation, and save.

        The yielded list is written back when the block exits normally;
        if the block raises, nothing is written.
        """
        async with self._lock:
            reports = await self._read()
            yield reports
            await self._write(reports)
