"""SMS delivery channels for emergency reports.

A :class:`MessagingChannel` answers two questions: can it deliver right
now (a capability probe that does not depend on any particular message),
and did one delivery attempt go through.  When the channel cannot
deliver at all, the report manager falls back to a
:class:`ComposeLauncher`, which hands the message to the user's own
messaging app as an ``sms:`` URI.

Gateways:
    * ``mock``      -- logs the message and reports success.
    * ``msg91``     -- MSG91 flow API.
    * ``textlocal`` -- Textlocal send API.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable
from urllib.parse import quote
from uuid import uuid4

import httpx
import structlog

from tejus.models.enums import DeliveryOutcome

if TYPE_CHECKING:
    from config.settings import Settings

logger = structlog.get_logger(__name__)

_SUCCESS_STATUSES: Final[frozenset[str]] = frozenset({"success", "sent", "submitted", "queued"})


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class MessagingChannel(Protocol):
    """One-shot message delivery to a phone number."""

    async def is_available(self) -> bool: ...

    async def send(self, to: str, body: str) -> DeliveryOutcome: ...


@runtime_checkable
class ComposeLauncher(Protocol):
    """Opens a pre-filled compose view; cannot report whether it was sent."""

    async def open(self, uri: str) -> None: ...


def build_sms_uri(to: str, body: str) -> str:
    """``sms:`` URI with the body percent-encoded."""
    return f"sms:{to}?body={quote(body, safe='')}"


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class MockSMSChannel:
    """Mock SMS channel for local development and testing."""

    __slots__ = ()

    async def is_available(self) -> bool:
        return True

    async def send(self, to: str, body: str) -> DeliveryOutcome:
        logger.info(
            "mock_sms.sent",
            to=to,
            message_id=f"mock_{uuid4().hex[:12]}",
            message_preview=body[:80],
            length=len(body),
        )
        return DeliveryOutcome.SENT


class HttpSMSChannel:
    """SMS gateway over HTTP (MSG91 or Textlocal).

    A single :meth:`send` is exactly one gateway request; retrying is the
    report manager's job.  Transport and HTTP status errors propagate.
    """

    _MSG91_URL: Final[str] = "https://api.msg91.com/api/v5/flow/"
    _TEXTLOCAL_URL: Final[str] = "https://api.textlocal.in/send/"

    __slots__ = ("_api_key", "_client", "_provider", "_sender_id")

    def __init__(
        self,
        provider: str,
        api_key: str,
        *,
        sender_id: str = "TEJUSA",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        if provider not in ("msg91", "textlocal"):
            raise ValueError(f"Unknown SMS provider {provider!r}. Supported: msg91, textlocal.")
        self._provider = provider
        self._api_key = api_key
        self._sender_id = sender_id
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def provider(self) -> str:
        return self._provider

    async def is_available(self) -> bool:
        return bool(self._api_key)

    async def send(self, to: str, body: str) -> DeliveryOutcome:
        log = logger.bind(provider=self._provider, to=to)
        if self._provider == "msg91":
            result = await self._send_msg91(to, body)
        else:
            result = await self._send_textlocal(to, body)

        status = str(result.get("type", result.get("status", ""))).lower()
        if status in _SUCCESS_STATUSES:
            log.info("sms.sent", provider_id=result.get("message_id", result.get("request_id", "")))
            return DeliveryOutcome.SENT

        log.warning("sms.rejected", status=status, response=result)
        return DeliveryOutcome.FAILED

    async def _send_msg91(self, to: str, body: str) -> dict[str, Any]:
        headers = {"authkey": self._api_key, "Content-Type": "application/json"}
        payload = {
            "sender": self._sender_id,
            "recipients": [{"mobiles": to.lstrip("+"), "message": body}],
        }
        response = await self._client.post(self._MSG91_URL, json=payload, headers=headers)
        response.raise_for_status()
        return response.json()

    async def _send_textlocal(self, to: str, body: str) -> dict[str, Any]:
        payload = {
            "apikey": self._api_key,
            "numbers": to.lstrip("+"),
            "message": body,
            "sender": self._sender_id,
        }
        response = await self._client.post(self._TEXTLOCAL_URL, data=payload)
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        await self._client.aclose()


class LoggingComposeLauncher:
    """Compose fallback for headless deployments: records the URI in the log."""

    __slots__ = ()

    async def open(self, uri: str) -> None:
        logger.info("compose.opened", uri_preview=uri[:80])


def build_messaging_channel(settings: Settings) -> MessagingChannel:
    """Create the channel selected by ``settings.sms_provider``."""
    if settings.sms_provider == "mock":
        return MockSMSChannel()
    return HttpSMSChannel(
        settings.sms_provider,
        settings.sms_api_key,
        sender_id=settings.sms_sender_id,
        timeout=settings.delivery_timeout_seconds,
    )
