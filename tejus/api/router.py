"""Main API router combining all v1 route modules under ``/api/v1``."""

from __future__ import annotations

from fastapi import APIRouter

from tejus.api.v1 import health, reports

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(reports.router)
api_router.include_router(health.router)
