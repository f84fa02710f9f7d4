"""TEJUS service layer -- report store, location, messaging, lifecycle, scheduling."""

from __future__ import annotations

from tejus.services.location import (
    HttpGeolocationProvider,
    LocationPermissionError,
    LocationProvider,
    StaticLocationProvider,
    acquire_location,
)
from tejus.services.messaging import (
    ComposeLauncher,
    HttpSMSChannel,
    LoggingComposeLauncher,
    MessagingChannel,
    MockSMSChannel,
    build_sms_uri,
)
from tejus.services.offline_reporting import (
    MAX_RETRY_ATTEMPTS,
    OfflineReportManager,
    format_emergency_message,
)
from tejus.services.report_store import (
    FileStorageBackend,
    InMemoryStorageBackend,
    RedisStorageBackend,
    ReportStore,
    StorageBackend,
)
from tejus.services.retry_scheduler import RetryScheduler

__all__ = [
    "ComposeLauncher",
    "FileStorageBackend",
    "HttpGeolocationProvider",
    "HttpSMSChannel",
    "InMemoryStorageBackend",
    "LocationPermissionError",
    "LocationProvider",
    "LoggingComposeLauncher",
    "MAX_RETRY_ATTEMPTS",
    "MessagingChannel",
    "MockSMSChannel",
    "OfflineReportManager",
    "RedisStorageBackend",
    "ReportStore",
    "RetryScheduler",
    "StaticLocationProvider",
    "StorageBackend",
    "acquire_location",
    "build_sms_uri",
    "format_emergency_message",
]
