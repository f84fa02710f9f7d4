"""Operator key check for destructive report endpoints.

Pruning discards reports irreversibly, so ``DELETE /api/v1/reports``
requires the ``X-Admin-API-Key`` header to match ``TEJUS_ADMIN_API_KEY``.
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from config.settings import Settings, settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


def _active_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or settings


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """Reject the request unless it carries the configured operator key.

    With no key configured, development lets the request through and
    production answers 503.
    """
    active = _active_settings(request)
    configured_key = active.admin_api_key
    client_ip = request.client.host if request.client else "unknown"

    if not configured_key:
        if active.is_production:
            logger.error("auth.admin_key_not_configured_production", path=request.url.path)
            raise HTTPException(status_code=503, detail="Operator authentication is not configured.")
        logger.warning("auth.admin_key_not_configured", path=request.url.path)
        return ""

    if not api_key:
        logger.warning("auth.missing_api_key", path=request.url.path, client_ip=client_ip)
        raise HTTPException(
            status_code=401,
            detail="Missing X-Admin-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not hmac.compare_digest(api_key.encode(), configured_key.encode()):
        logger.warning("auth.invalid_api_key", path=request.url.path, client_ip=client_ip)
        raise HTTPException(status_code=403, detail="Invalid API key.")

    return api_key
