"""Offline emergency report endpoints.

The mobile client files a report here, asks for immediate delivery, and
can later trigger retry sweeps for reports that could not be sent.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from tejus.middleware.auth import require_admin_api_key
from tejus.models.enums import ReportType
from tejus.models.report import OfflineEmergencyReport
from tejus.services.messaging import build_sms_uri
from tejus.services.offline_reporting import DEFAULT_RETENTION_DAYS, OfflineReportManager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/reports", tags=["offline-reports"])

_FALLBACK_NUMBERS: list[dict[str, str]] = [
    {"name": "Ambulance", "number": "108"},
    {"name": "Police", "number": "100"},
    {"name": "Fire Service", "number": "101"},
    {"name": "Universal Emergency", "number": "112"},
]


class CreateReportRequest(BaseModel):
    model_config = {"populate_by_name": True}

    report_type: ReportType = Field(..., alias="reportType")
    contact_number: str = Field(..., min_length=1, max_length=32, alias="contactNumber")
    description: str | None = Field(default=None, max_length=2000)
    send_now: bool = Field(default=True, alias="sendNow")


def _manager(request: Request) -> OfflineReportManager:
    manager = getattr(request.app.state, "reports", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Offline reporting service not available")
    return manager


def _serialise(report: OfflineEmergencyReport) -> dict[str, Any]:
    return report.to_storage()


async def _require_report(manager: OfflineReportManager, report_id: str) -> OfflineEmergencyReport:
    report = await manager.get(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report {report_id!r} not found")
    return report


@router.post("", status_code=201)
async def create_report(body: CreateReportRequest, request: Request) -> Any:
    """File a report and, unless ``sendNow`` is false, try to deliver it.

    If the service is down the caller still gets the numbers to dial.
    """
    manager = getattr(request.app.state, "reports", None)
    if manager is None:
        return ORJSONResponse(
            status_code=503,
            content={
                "emergency_numbers": _FALLBACK_NUMBERS,
                "message": "Reporting is unavailable. Call 108 or 112 directly.",
            },
        )

    try:
        report = await manager.create(body.report_type, body.contact_number, body.description)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None

    delivered = False
    if body.send_now:
        delivered = await manager.attempt_delivery(report)

    return {"report": _serialise(report), "delivered": delivered}


@router.get("")
async def list_reports(request: Request) -> dict:
    reports = await _manager(request).list_all()
    return {"count": len(reports), "reports": [_serialise(r) for r in reports]}


@router.get("/pending")
async def list_pending_reports(request: Request) -> dict:
    """Reports that a retry sweep would attempt."""
    reports = await _manager(request).list_pending()
    return {"count": len(reports), "reports": [_serialise(r) for r in reports]}


@router.post("/retry")
async def retry_pending_reports(request: Request) -> dict:
    succeeded = await _manager(request).retry_sweep()
    return {"succeeded": succeeded}


@router.delete("", dependencies=[Depends(require_admin_api_key)])
async def prune_reports(
    request: Request,
    older_than_days: int = Query(default=DEFAULT_RETENTION_DAYS, ge=0),
) -> dict:
    """Irreversibly drop reports older than ``older_than_days``."""
    removed = await _manager(request).prune_older_than(older_than_days)
    return {"removed": removed, "older_than_days": older_than_days}


@router.get("/{report_id}")
async def get_report(report_id: str, request: Request) -> dict:
    report = await _require_report(_manager(request), report_id)
    return _serialise(report)


@router.get("/{report_id}/message")
async def get_report_message(report_id: str, request: Request) -> dict:
    """The SMS text for a report and an ``sms:`` link to send it by hand."""
    manager = _manager(request)
    report = await _require_report(manager, report_id)
    message = manager.format_message(report)
    return {
        "report_id": report.id,
        "message": message,
        "sms_uri": build_sms_uri(report.contact_number, message),
    }


@router.post("/{report_id}/send")
async def send_report(report_id: str, request: Request) -> dict:
    manager = _manager(request)
    report = await _require_report(manager, report_id)
    delivered = await manager.attempt_delivery(report)
    return {"report": _serialise(report), "delivered": delivered}
