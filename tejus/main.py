"""TEJUS FastAPI application entry point.

Creates the app, wires the offline report manager to its storage,
location and SMS collaborators, and runs the background retry sweep for
the lifetime of the process.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import Settings, settings
from tejus.api.router import api_router

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging(active: Settings) -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if active.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(active.log_level),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the report services on startup and tear them down on exit.

    Services already placed on ``app.state`` (e.g. by tests) are kept.
    """
    from tejus.services.location import build_location_provider
    from tejus.services.messaging import LoggingComposeLauncher, build_messaging_channel
    from tejus.services.offline_reporting import OfflineReportManager
    from tejus.services.report_store import ReportStore, build_storage_backend
    from tejus.services.retry_scheduler import RetryScheduler

    active: Settings = getattr(app.state, "settings", None) or settings
    app.state.settings = active
    _configure_logging(active)
    logger.info("app.startup", env=active.env, storage=active.storage_backend, sms_provider=active.sms_provider)

    app.state.start_time = time.time()

    # -- 1. Report manager ------------------------------------------------
    manager = getattr(app.state, "reports", None)
    owned: list[object] = []
    if manager is None:
        backend = build_storage_backend(active)
        location_provider = build_location_provider(active)
        channel = build_messaging_channel(active)
        owned.extend([backend, location_provider, channel])

        manager = OfflineReportManager(
            ReportStore(backend, key=active.storage_key),
            location_provider,
            channel,
            LoggingComposeLauncher(),
            max_retry_attempts=active.max_retry_attempts,
            location_timeout_seconds=active.location_timeout_seconds,
            delivery_timeout_seconds=active.delivery_timeout_seconds,
            fallback_marks_sent=active.fallback_marks_sent,
        )
        app.state.reports = manager
        app.state.messaging = channel
        logger.info("app.reports_initialised", max_retry_attempts=active.max_retry_attempts)

    # -- 2. Background retry sweep -----------------------------------------
    scheduler = RetryScheduler(manager, active)
    app.state.retry_scheduler = scheduler
    if active.enable_auto_retry:
        scheduler.start()
        logger.info("app.retry_scheduler_started")

    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")
    await scheduler.stop()
    for resource in owned:
        close = getattr(resource, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception:
            logger.warning("app.resource_close_failed", resource=type(resource).__name__, exc_info=True)
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TEJUS Emergency Reporting API",
    description=(
        "Offline-first emergency reporting: reports are stored locally, "
        "sent by SMS, and retried until delivered or given up."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Admin-API-Key"],
)

app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "TEJUS Emergency Reporting API",
        "version": app.version,
        "docs": "/docs",
        "health": "/api/v1/health",
        "endpoints": {
            "reports": "/api/v1/reports",
            "pending": "/api/v1/reports/pending",
            "retry": "/api/v1/reports/retry",
        },
    }


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("tejus.main:app", host=settings.api_host, port=settings.api_port)
