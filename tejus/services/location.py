"""Best-effort location acquisition for new reports.

A report is never held back for want of a position fix: permission
denial, provider errors and timeouts all collapse to ``None`` and the
report is created without a location.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import ValidationError

from tejus.models.report import Location

if TYPE_CHECKING:
    from config.settings import Settings

logger = structlog.get_logger(__name__)


class LocationPermissionError(RuntimeError):
    """The user (or platform) refused access to the device position."""


@runtime_checkable
class LocationProvider(Protocol):
    """Supplies the current position, or ``None`` when none is available."""

    async def get_current_location(self) -> Location | None: ...


class StaticLocationProvider:
    """Always answers with the same fix (or always ``None``)."""

    __slots__ = ("_location",)

    def __init__(self, location: Location | None = None) -> None:
        self._location = location

    async def get_current_location(self) -> Location | None:
        return self._location


class HttpGeolocationProvider:
    """Coarse position from an IP-geolocation endpoint.

    The endpoint must answer a ``GET`` with a JSON object carrying
    ``lat``/``lon`` (or ``latitude``/``longitude``) and, optionally,
    ``accuracy`` in metres.  A ``403`` is treated as a permission
    refusal.
    """

    __slots__ = ("_client", "_url")

    def __init__(self, url: str, *, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def get_current_location(self) -> Location | None:
        response = await self._client.get(self._url)
        if response.status_code == 403:
            raise LocationPermissionError("geolocation endpoint refused the request")
        response.raise_for_status()
        return _parse_fix(response.json())

    async def close(self) -> None:
        await self._client.aclose()


def _parse_fix(payload: Any) -> Location | None:
    if not isinstance(payload, dict):
        return None
    latitude = payload.get("latitude", payload.get("lat"))
    longitude = payload.get("longitude", payload.get("lon"))
    if latitude is None or longitude is None:
        return None
    try:
        return Location(latitude=latitude, longitude=longitude, accuracy=payload.get("accuracy"))
    except ValidationError:
        logger.warning("location.invalid_fix", latitude=latitude, longitude=longitude)
        return None


async def acquire_location(provider: LocationProvider, timeout_seconds: float) -> Location | None:
    """Ask *provider* once for a fix; never raises."""
    try:
        return await asyncio.wait_for(provider.get_current_location(), timeout=timeout_seconds)
    except LocationPermissionError:
        logger.info("location.permission_denied")
    except asyncio.TimeoutError:
        logger.warning("location.timeout", timeout_seconds=timeout_seconds)
    except Exception:
        logger.warning("location.provider_failed", exc_info=True)
    return None


def build_location_provider(settings: Settings) -> LocationProvider:
    """Pick a provider from settings: HTTP lookup, fixed default, or none."""
    if settings.geolocation_url:
        return HttpGeolocationProvider(settings.geolocation_url, timeout=settings.location_timeout_seconds)
    if settings.default_latitude is not None and settings.default_longitude is not None:
        return StaticLocationProvider(
            Location(latitude=settings.default_latitude, longitude=settings.default_longitude)
        )
    return StaticLocationProvider(None)
