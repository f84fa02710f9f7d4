"""Tests for the offline report and health endpoints.

The app is assembled without its lifespan so the report manager can be
injected with in-memory storage and a scripted SMS channel.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from config.settings import Settings
from tejus.api.router import api_router
from tejus.models.enums import DeliveryOutcome
from tejus.services.offline_reporting import OfflineReportManager

from conftest import FakeChannel

ADMIN_KEY = "operator-secret"


def _app(manager: OfflineReportManager | None = None, channel: FakeChannel | None = None, **settings: object) -> FastAPI:
    app = FastAPI(version="0.1.0")
    app.include_router(api_router)
    app.state.settings = Settings(_env_file=None, **settings)
    if manager is not None:
        app.state.reports = manager
    if channel is not None:
        app.state.messaging = channel
    return app


@pytest.fixture
def client(manager: OfflineReportManager, channel: FakeChannel) -> TestClient:
    return TestClient(_app(manager, channel, admin_api_key=ADMIN_KEY))


def _create(client: TestClient, **overrides: object) -> dict:
    payload = {"reportType": "medical", "contactNumber": "108", "description": "chest pain", "sendNow": False}
    payload.update(overrides)
    response = client.post("/api/v1/reports", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestCreateReport:
    def test_create_and_deliver(self, client: TestClient, channel: FakeChannel) -> None:
        data = _create(client, sendNow=True)
        assert data["delivered"] is True
        assert data["report"]["status"] == "sent"
        assert data["report"]["reportType"] == "medical"
        assert data["report"]["location"]["latitude"] == 12.9716
        assert len(channel.sent) == 1

    def test_create_without_sending(self, client: TestClient, channel: FakeChannel) -> None:
        data = _create(client)
        assert data["delivered"] is False
        assert data["report"]["status"] == "pending"
        assert data["report"]["retryCount"] == 0
        assert channel.sent == []

    def test_failed_delivery_stays_pending(self, manager: OfflineReportManager, channel: FakeChannel) -> None:
        channel._default = DeliveryOutcome.FAILED
        client = TestClient(_app(manager, channel))
        data = _create(client, sendNow=True)
        assert data["delivered"] is False
        assert data["report"]["retryCount"] == 1
        assert data["report"]["status"] == "pending"

    def test_blank_contact_rejected(self, client: TestClient) -> None:
        response = client.post("/api/v1/reports", json={"reportType": "fire", "contactNumber": "   "})
        assert response.status_code == 422

    def test_unknown_type_rejected(self, client: TestClient) -> None:
        response = client.post("/api/v1/reports", json={"reportType": "flood", "contactNumber": "112"})
        assert response.status_code == 422

    def test_service_down_still_returns_numbers(self) -> None:
        client = TestClient(_app())
        response = client.post("/api/v1/reports", json={"reportType": "medical", "contactNumber": "108"})
        assert response.status_code == 503
        numbers = {entry["number"] for entry in response.json()["emergency_numbers"]}
        assert {"108", "112"} <= numbers


class TestReadReports:
    def test_list_and_get(self, client: TestClient) -> None:
        first = _create(client)["report"]
        _create(client, reportType="fire", contactNumber="101")

        listing = client.get("/api/v1/reports").json()
        assert listing["count"] == 2
        assert [r["contactNumber"] for r in listing["reports"]] == ["108", "101"]

        response = client.get(f"/api/v1/reports/{first['id']}")
        assert response.status_code == 200
        assert response.json() == first

    def test_unknown_report_is_404(self, client: TestClient) -> None:
        assert client.get("/api/v1/reports/emergency_0_missing").status_code == 404
        assert client.post("/api/v1/reports/emergency_0_missing/send").status_code == 404

    def test_pending_listing(self, client: TestClient) -> None:
        _create(client)
        _create(client, sendNow=True)
        pending = client.get("/api/v1/reports/pending").json()
        assert pending["count"] == 1

    def test_message_and_sms_link(self, client: TestClient) -> None:
        report = _create(client)["report"]
        data = client.get(f"/api/v1/reports/{report['id']}/message").json()
        assert data["report_id"] == report["id"]
        assert data["message"].startswith("🚨 EMERGENCY ALERT - TEJUS APP 🚨")
        assert "Description: chest pain" in data["message"]
        assert data["sms_uri"].startswith("sms:108?body=")

    def test_no_manager_is_503(self) -> None:
        client = TestClient(_app())
        assert client.get("/api/v1/reports").status_code == 503


class TestDelivery:
    def test_send_single_report(self, client: TestClient) -> None:
        report = _create(client)["report"]
        data = client.post(f"/api/v1/reports/{report['id']}/send").json()
        assert data["delivered"] is True
        assert data["report"]["status"] == "sent"

        again = client.post(f"/api/v1/reports/{report['id']}/send").json()
        assert again["delivered"] is False, "a sent report should not be delivered twice"

    def test_retry_sweep(self, client: TestClient, channel: FakeChannel) -> None:
        for _ in range(3):
            _create(client)
        assert client.post("/api/v1/reports/retry").json() == {"succeeded": 3}
        assert len(channel.sent) == 3
        assert client.get("/api/v1/reports/pending").json()["count"] == 0


class TestPrune:
    def test_requires_admin_key(self, client: TestClient) -> None:
        assert client.delete("/api/v1/reports").status_code == 401
        assert client.delete("/api/v1/reports", headers={"X-Admin-API-Key": "wrong"}).status_code == 403

    def test_prune_with_key(self, client: TestClient) -> None:
        _create(client)
        response = client.delete(
            "/api/v1/reports",
            params={"older_than_days": 0},
            headers={"X-Admin-API-Key": ADMIN_KEY},
        )
        assert response.status_code == 200
        assert response.json() == {"removed": 0, "older_than_days": 0}, "a report created now is not older than now"

    def test_negative_days_rejected(self, client: TestClient) -> None:
        response = client.delete(
            "/api/v1/reports",
            params={"older_than_days": -1},
            headers={"X-Admin-API-Key": ADMIN_KEY},
        )
        assert response.status_code == 422

    def test_production_without_key_is_503(self, manager: OfflineReportManager) -> None:
        client = TestClient(_app(manager, env="production"))
        assert client.delete("/api/v1/reports").status_code == 503

    def test_development_without_key_is_allowed(self, manager: OfflineReportManager) -> None:
        client = TestClient(_app(manager))
        assert client.delete("/api/v1/reports").status_code == 200


class TestHealth:
    def test_liveness(self, client: TestClient) -> None:
        data = client.get("/api/v1/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"

    def test_ready(self, client: TestClient) -> None:
        data = client.get("/api/v1/health/ready").json()
        assert data["status"] == "ready"
        assert data["checks"]["storage"] == "ok"
        assert data["checks"]["sms_channel"] == "ok"
        assert data["checks"]["retry_scheduler"] == "idle"

    def test_channel_down_is_fallback_only(self, manager: OfflineReportManager) -> None:
        client = TestClient(_app(manager, FakeChannel(available=False)))
        data = client.get("/api/v1/health/ready").json()
        assert data["status"] == "ready"
        assert data["checks"]["sms_channel"] == "fallback_only"

    def test_not_ready_without_manager(self) -> None:
        data = TestClient(_app()).get("/api/v1/health/ready").json()
        assert data["status"] == "degraded"
        assert data["checks"]["reports"] == "not_initialised"
