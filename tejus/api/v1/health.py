"""Health check endpoints.

Liveness says the process is up; readiness says reports can be stored
and delivered.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.  Does *not* check downstream dependencies."""
    start_time: float = getattr(request.app.state, "start_time", time.time())
    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(time.time() - start_time, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe covering report storage, SMS channel and retry loop.

    An unavailable SMS channel only degrades readiness: reports still
    go out through the compose fallback.
    """
    checks: dict[str, str] = {}
    all_ok = True

    manager = getattr(request.app.state, "reports", None)
    if manager is None:
        checks["reports"] = "not_initialised"
        all_ok = False
    elif await manager.store.is_readable():
        checks["storage"] = "ok"
    else:
        checks["storage"] = "unreadable"
        all_ok = False

    channel = getattr(request.app.state, "messaging", None)
    if channel is not None:
        try:
            checks["sms_channel"] = "ok" if await channel.is_available() else "fallback_only"
        except Exception as exc:
            checks["sms_channel"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["sms_channel"] = "not_configured"

    scheduler = getattr(request.app.state, "retry_scheduler", None)
    checks["retry_scheduler"] = "running" if scheduler is not None and scheduler.is_running else "idle"

    status = "ready" if all_ok else "degraded"
    logger.info("health.readiness_check", status=status, checks=checks)
    return ReadinessResponse(status=status, checks=checks)
