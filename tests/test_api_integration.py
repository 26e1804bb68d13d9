"""Integration tests for the FastAPI backend.

Uses TestClient against an in-memory SQLite store, so no real services are needed.
"""

import time
from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from warroom.diagnosis.query_doctor import QueryDiagnosis

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client(mock_settings: Any) -> Generator[TestClient]:  # noqa: ARG001
    """TestClient with the store and dashboard session built by the app lifespan."""
    from warroom.api.main import app

    with TestClient(app) as tc:
        yield tc


@pytest.fixture
def unconfigured_client(mock_settings: Any) -> Generator[TestClient]:
    """TestClient running with no incident store configured."""
    mock_settings.store_db_path = ""
    from warroom.api.main import app

    with TestClient(app) as tc:
        yield tc


def _wait_for_state(client: TestClient, state: str, timeout: float = 2.0) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while True:
        snap: dict[str, Any] = client.get("/dashboard").json()
        if snap["state"] == state or time.monotonic() > deadline:
            return snap
        time.sleep(0.01)


# ---------------------------------------------------------------------------
# POST /chat and GET /dashboard
# ---------------------------------------------------------------------------


class TestChatEndpoint:
    @pytest.mark.integration
    def test_report_opens_incident(self, client: TestClient) -> None:
        resp = client.post("/chat", json={"message": "Payment API is down with 500 errors"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["incidentId"]
        assert body["analysis"]["suggestedActions"] == ["rollback", "restart"]

        snap = client.get("/dashboard").json()
        assert snap["state"] == "ALERT"
        assert snap["incident"]["id"] == body["incidentId"]
        assert [w["componentName"] for w in snap["analysis"]["widgets"]][:2] == ["IncidentTimeline", "ServiceHealth"]

    @pytest.mark.integration
    def test_blank_message_rejected(self, client: TestClient) -> None:
        resp = client.post("/chat", json={"message": "  "})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Missing message"}

    @pytest.mark.integration
    def test_missing_field_is_422(self, client: TestClient) -> None:
        assert client.post("/chat", json={}).status_code == 422

    @pytest.mark.integration
    def test_dashboard_starts_healthy(self, client: TestClient) -> None:
        snap = client.get("/dashboard").json()
        assert snap["state"] == "HEALTHY"
        assert snap["store"] == "sqlite"
        assert snap["mounted"] is True


# ---------------------------------------------------------------------------
# POST /actions
# ---------------------------------------------------------------------------


class TestActionsEndpoint:
    @pytest.mark.integration
    def test_rollback_drives_recovery(self, client: TestClient) -> None:
        client.post("/chat", json={"message": "checkout 500 error"})

        resp = client.post("/actions", json={"action": "rollback"})

        assert resp.status_code == 200
        assert resp.json()["message"] == "Rollback successful. Service recovering."
        snap = _wait_for_state(client, "HEALTHY")
        assert snap["state"] == "HEALTHY"
        assert any(e["message"] == "Executed remediation: rollback" for e in snap["timeline"])

    @pytest.mark.integration
    def test_rollback_with_nothing_active(self, client: TestClient) -> None:
        body = client.post("/actions", json={"action": "rollback"}).json()
        assert body["success"] is False
        assert body["message"] == "No active incidents to rollback."

    @pytest.mark.integration
    def test_acknowledged_action(self, client: TestClient) -> None:
        body = client.post("/actions", json={"action": "scale_up"}).json()
        assert body["success"] is True


# ---------------------------------------------------------------------------
# POST /incident/remediate
# ---------------------------------------------------------------------------


class TestRemediateEndpoint:
    @pytest.mark.integration
    def test_clear_logs(self, client: TestClient) -> None:
        client.post("/demo/payment-incident")

        first = client.post("/incident/remediate", json={"action": "clear_logs"})
        second = client.post("/incident/remediate", json={"action": "clear_logs"})

        assert first.status_code == 200
        assert first.json() == {"success": True, "message": "All error logs purged.", "purgedCount": 2}
        assert second.json()["purgedCount"] == 0

    @pytest.mark.integration
    def test_resolve_specific(self, client: TestClient) -> None:
        incident_id = client.post("/chat", json={"message": "checkout 500 error"}).json()["incidentId"]
        client.post("/chat", json={"message": "login is failing"})

        body = client.post("/incident/remediate", json={"action": "resolve", "incidentId": incident_id}).json()

        assert body["resolvedCount"] == 1
        assert body["message"] == "Resolved 1 active incidents."

    @pytest.mark.integration
    def test_missing_action(self, client: TestClient) -> None:
        resp = client.post("/incident/remediate", json={})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Missing action"}

    @pytest.mark.integration
    def test_invalid_action(self, client: TestClient) -> None:
        resp = client.post("/incident/remediate", json={"action": "explode"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid action"

    @pytest.mark.integration
    def test_unconfigured_store(self, unconfigured_client: TestClient) -> None:
        resp = unconfigured_client.post("/incident/remediate", json={"action": "clear_logs"})
        assert resp.status_code == 503
        assert resp.json()["success"] is False


# ---------------------------------------------------------------------------
# POST /services/disconnect
# ---------------------------------------------------------------------------


class TestDisconnectEndpoint:
    @pytest.mark.integration
    def test_disconnect_then_not_found(self, client: TestClient) -> None:
        client.post("/chat", json={"message": "checkout 500 error"})
        client.post("/chat", json={"message": "stripe checkout failing"})
        service_id = client.get("/services").json()[0]["id"]

        first = client.post("/services/disconnect", json={"serviceId": service_id})
        assert first.status_code == 200
        assert first.json()["message"] == 'Service "payment-service" disconnected successfully'
        assert client.get("/incidents").json() == []
        assert client.get("/services").json() == []

        second = client.post("/services/disconnect", json={"serviceId": service_id})
        assert second.status_code == 404
        assert second.json() == {"success": False, "error": "Service not found"}

    @pytest.mark.integration
    def test_missing_service_id(self, client: TestClient) -> None:
        resp = client.post("/services/disconnect", json={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing serviceId"

    @pytest.mark.integration
    def test_displayed_incident_removed_returns_healthy(self, client: TestClient) -> None:
        client.post("/chat", json={"message": "checkout 500 error"})
        service_id = client.get("/services").json()[0]["id"]
        client.post("/services/disconnect", json={"serviceId": service_id})
        assert _wait_for_state(client, "HEALTHY")["state"] == "HEALTHY"


# ---------------------------------------------------------------------------
# POST /external-db/analyze-query
# ---------------------------------------------------------------------------


class TestAnalyzeQueryEndpoint:
    @pytest.mark.integration
    def test_missing_key_diagnosis(self, client: TestClient) -> None:
        resp = client.post("/external-db/analyze-query", json={"query": "SELECT * FROM users"})
        assert resp.status_code == 200
        diagnosis = resp.json()["diagnosis"]
        assert diagnosis["problem"] == "Missing API Key"
        assert diagnosis["sqlCommand"] == "-- No Action"

    @pytest.mark.integration
    def test_missing_query(self, client: TestClient) -> None:
        resp = client.post("/external-db/analyze-query", json={"schema": "users(id)"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing query"

    @pytest.mark.integration
    def test_schema_forwarded(self, client: TestClient) -> None:
        diagnosis = QueryDiagnosis(problem="p", solution="s", sql_command="c", estimated_improvement="9%")
        with patch("warroom.api.main.analyze_slow_query", new_callable=AsyncMock, return_value=diagnosis) as doctor:
            resp = client.post("/external-db/analyze-query", json={"query": "SELECT 1", "schema": "t(a)"})

        doctor.assert_awaited_once_with("SELECT 1", "t(a)")
        assert resp.json()["diagnosis"]["estimatedImprovement"] == "9%"


# ---------------------------------------------------------------------------
# Demo triggers, Slack, listings
# ---------------------------------------------------------------------------


class TestDemoAndListings:
    @pytest.mark.integration
    def test_payment_incident(self, client: TestClient) -> None:
        body = client.post("/demo/payment-incident").json()
        assert body["success"] is True

        incidents = client.get("/incidents").json()
        assert incidents[0]["id"] == body["incidentId"]
        assert incidents[0]["service_name"] == "payment-service"
        assert client.get("/dashboard").json()["state"] == "ALERT"

    @pytest.mark.integration
    def test_traffic_spike(self, client: TestClient) -> None:
        body = client.post("/demo/traffic-spike").json()
        assert body["message"] == "Traffic load test initiated."
        snap = client.get("/dashboard").json()
        assert snap["analysis"]["type"] == "traffic_spike"

    @pytest.mark.integration
    def test_slack_post(self, client: TestClient) -> None:
        resp = client.post("/slack/post", json={"channel": "#sec-ops", "text": "🛡️ SECURITY ALERT"})
        assert resp.json()["message"] == "✅ Posted to Slack #sec-ops"

    @pytest.mark.integration
    def test_demo_unconfigured(self, unconfigured_client: TestClient) -> None:
        body = unconfigured_client.post("/demo/payment-incident").json()
        assert body["success"] is False


# ---------------------------------------------------------------------------
# GET /health and /metrics
# ---------------------------------------------------------------------------


class TestHealthEndpoint:
    @pytest.mark.integration
    def test_store_up_ai_missing(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["store"] == "sqlite"
        assert {c["name"]: c["status"] for c in body["components"]} == {"store": "healthy", "ai": "unconfigured"}

    @pytest.mark.integration
    def test_all_healthy(self, client: TestClient, mock_settings: Any) -> None:
        mock_settings.openai_api_key = "sk-test"
        assert client.get("/health").json()["status"] == "healthy"

    @pytest.mark.integration
    def test_unconfigured_store(self, unconfigured_client: TestClient) -> None:
        body = unconfigured_client.get("/health").json()
        assert body["store"] == "inert"
        assert body["components"][0]["status"] == "unconfigured"


class TestMetricsEndpoint:
    @pytest.mark.integration
    def test_exposition(self, client: TestClient) -> None:
        client.get("/dashboard")
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "warroom_requests_total" in resp.text
        assert 'endpoint="/dashboard"' in resp.text
