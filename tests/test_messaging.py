"""Tests for SMS channels and the compose-view URI.

HTTP gateways are exercised through ``httpx.MockTransport``.
"""

from __future__ import annotations

from urllib.parse import parse_qs, unquote, urlparse

import httpx
import orjson
import pytest

from config.settings import Settings
from tejus.models.enums import DeliveryOutcome
from tejus.services.messaging import (
    ComposeLauncher,
    HttpSMSChannel,
    LoggingComposeLauncher,
    MessagingChannel,
    MockSMSChannel,
    build_messaging_channel,
    build_sms_uri,
)


def _channel(provider: str, handler, api_key: str = "secret") -> HttpSMSChannel:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpSMSChannel(provider, api_key, client=client)


class TestBuildSmsUri:
    def test_body_is_percent_encoded(self) -> None:
        uri = build_sms_uri("108", "🚨 HELP\nLat: 1.0 & more")
        assert uri.startswith("sms:108?body=")
        assert "\n" not in uri and " " not in uri and "&" not in uri.split("?body=", 1)[1]
        assert unquote(uri.split("?body=", 1)[1]) == "🚨 HELP\nLat: 1.0 & more"

    def test_round_trips_through_query_parsing(self) -> None:
        uri = build_sms_uri("+919876543210", "a=b c")
        assert parse_qs(urlparse(uri).query)["body"] == ["a=b c"]


class TestMockSMSChannel:
    async def test_always_sends(self) -> None:
        channel = MockSMSChannel()
        assert isinstance(channel, MessagingChannel)
        assert await channel.is_available() is True
        assert await channel.send("108", "hello") == DeliveryOutcome.SENT


class TestLoggingComposeLauncher:
    async def test_open_does_not_raise(self) -> None:
        launcher = LoggingComposeLauncher()
        assert isinstance(launcher, ComposeLauncher)
        await launcher.open("sms:108?body=x")


class TestHttpSMSChannel:
    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown SMS provider"):
            HttpSMSChannel("carrier-pigeon", "key")

    async def test_unavailable_without_api_key(self) -> None:
        channel = _channel("msg91", lambda request: httpx.Response(200, json={}), api_key="")
        assert await channel.is_available() is False

    async def test_msg91_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"type": "success", "request_id": "r-1"})

        channel = _channel("msg91", handler)
        assert await channel.send("+91108", "body text") == DeliveryOutcome.SENT
        assert seen[0].headers["authkey"] == "secret"
        payload = orjson.loads(seen[0].content)
        assert payload["recipients"] == [{"mobiles": "91108", "message": "body text"}]

    async def test_textlocal_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "success"})

        channel = _channel("textlocal", handler)
        assert await channel.send("108", "hello") == DeliveryOutcome.SENT
        form = parse_qs(seen[0].content.decode())
        assert form["numbers"] == ["108"]
        assert form["message"] == ["hello"]

    async def test_gateway_rejection_is_failed(self) -> None:
        channel = _channel("textlocal", lambda request: httpx.Response(200, json={"status": "failure"}))
        assert await channel.send("108", "hello") == DeliveryOutcome.FAILED

    async def test_http_error_propagates(self) -> None:
        channel = _channel("msg91", lambda request: httpx.Response(502))
        with pytest.raises(httpx.HTTPStatusError):
            await channel.send("108", "hello")


class TestBuildMessagingChannel:
    def test_mock_by_default(self) -> None:
        assert isinstance(build_messaging_channel(Settings(_env_file=None)), MockSMSChannel)

    def test_http_provider(self) -> None:
        channel = build_messaging_channel(Settings(_env_file=None, sms_provider="msg91", sms_api_key="k"))
        assert isinstance(channel, HttpSMSChannel)
        assert channel.provider == "msg91"
