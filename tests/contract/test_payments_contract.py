"""Contract tests for the /api/payments endpoints.

Tests verify:
- POST /payments/create prices a request and returns the breakdown and
  WhatsApp message
- GET /payments/status/{payment_id} reports the session or 404
- POST /payments/breakdown and GET /payments/config
- POST /payments/simulate/{payment_id} resolves sandbox sessions through the
  webhook pipeline and is refused in production
"""

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
)

from parts_api.main import app
from parts_shared.config import get_settings


# === Test Fixtures ===


@pytest.fixture
def client(dynamodb_tables: Any) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def request_id(client: TestClient, intake_data: dict[str, Any]) -> str:
    return client.post("/api/requests", json=intake_data).json()["data"]["request_id"]


@pytest.fixture
def payment(client: TestClient, request_id: str) -> dict[str, Any]:
    response = client.post(
        "/api/payments/create",
        json={"order_id": request_id, "parts_cost": 100, "freight_cost": 50},
    )
    assert response.status_code == HTTP_201_CREATED
    return response.json()["data"]


# === Create ===


class TestCreatePayment:
    def test_returns_link_breakdown_and_message(self, client, request_id):
        response = client.post(
            "/api/payments/create",
            json={"order_id": request_id, "parts_cost": 100, "freight_cost": 50},
        )

        assert response.status_code == HTTP_201_CREATED
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["payment_id"].startswith("pay_")
        assert data["payment_url"].endswith("?sandbox=true")
        assert data["expires_at"]
        assert data["breakdown"] == {
            "parts_cost": 100.0,
            "freight_cost": 50.0,
            "total_cost": 150.0,
            "currency": "SAR",
        }
        assert "Total: 150.00 SAR" in data["whatsapp_message"]
        assert data["payment_url"] in data["whatsapp_message"]
        assert data["whatsapp_link"].startswith("https://wa.me/966551234567?text=")

    def test_request_becomes_available(self, client, request_id, payment):
        data = client.get(f"/api/requests/{request_id}").json()["data"]

        assert data["status"] == "Available"
        assert data["payment_id"] == payment["payment_id"]
        assert data["payment_link"] == payment["payment_url"]
        assert data["price"] == 150.0

    def test_unknown_request_returns_404(self, client):
        response = client.post(
            "/api/payments/create",
            json={"order_id": "REQ-missing", "parts_cost": 100, "freight_cost": 50},
        )

        assert response.status_code == HTTP_404_NOT_FOUND
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "ERR_REQ_001"

    def test_already_priced_returns_409(self, client, request_id, payment):
        response = client.post(
            "/api/payments/create",
            json={"order_id": request_id, "parts_cost": 100, "freight_cost": 50},
        )

        assert response.status_code == HTTP_409_CONFLICT

    def test_zero_total_returns_400(self, client, request_id):
        response = client.post(
            "/api/payments/create",
            json={"order_id": request_id, "parts_cost": 0, "freight_cost": 0},
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_PAY_003"

    def test_missing_costs_return_400(self, client, request_id):
        response = client.post("/api/payments/create", json={"order_id": request_id})

        assert response.status_code == HTTP_400_BAD_REQUEST
        locs = [d["loc"] for d in response.json()["details"]]
        assert ["body", "parts_cost"] in locs
        assert ["body", "freight_cost"] in locs


# === Status ===


class TestPaymentStatus:
    def test_pending_session(self, client, payment):
        response = client.get(f"/api/payments/status/{payment['payment_id']}")

        assert response.status_code == HTTP_200_OK
        data = response.json()["data"]
        assert data["status"] == "pending"
        assert data["amount"] == 150.0
        assert data["currency"] == "SAR"

    def test_unknown_payment_returns_404(self, client):
        response = client.get("/api/payments/status/pay_unknown")

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "ERR_PAY_001"


class TestBreakdownAndConfig:
    def test_breakdown(self, client):
        response = client.post(
            "/api/payments/breakdown", json={"parts_cost": 100.5, "freight_cost": 49.5}
        )

        assert response.json()["data"]["total_cost"] == 150.0

    def test_config(self, client):
        data = client.get("/api/payments/config").json()["data"]

        assert data["mode"] == "sandbox"
        assert data["currency"] == "SAR"


# === Simulation ===


class TestSimulatePayment:
    def test_completed_outcome_marks_request_paid(self, client, request_id, payment):
        response = client.post(
            f"/api/payments/simulate/{payment['payment_id']}",
            json={"outcome": "completed"},
        )

        assert response.status_code == HTTP_200_OK
        data = response.json()["data"]
        assert data["outcome"] == "completed"
        assert data["webhook"]["processing_result"] == "success"

        stored = client.get(f"/api/requests/{request_id}").json()["data"]
        assert stored["status"] == "Paid"
        assert stored["payment_status"] == "Paid"
        status = client.get(f"/api/payments/status/{payment['payment_id']}").json()["data"]
        assert status["status"] == "completed"

    def test_failed_outcome_marks_payment_failed(self, client, request_id, payment):
        client.post(
            f"/api/payments/simulate/{payment['payment_id']}",
            json={"outcome": "failed"},
        )

        stored = client.get(f"/api/requests/{request_id}").json()["data"]
        assert stored["status"] == "Available"
        assert stored["payment_status"] == "Failed"

    def test_pending_outcome_sends_no_webhook(self, client, request_id, payment):
        response = client.post(
            f"/api/payments/simulate/{payment['payment_id']}",
            json={"outcome": "pending"},
        )

        data = response.json()["data"]
        assert data["webhook"] is None
        assert client.get(f"/api/requests/{request_id}").json()["data"]["status"] == "Available"

    def test_unknown_payment_returns_404(self, client):
        response = client.post("/api/payments/simulate/pay_unknown", json={"outcome": "completed"})

        assert response.status_code == HTTP_404_NOT_FOUND

    def test_refused_in_production(self, monkeypatch, client, payment):
        monkeypatch.setenv("ENVIRONMENT", "prod")
        get_settings.cache_clear()

        response = client.post(
            f"/api/payments/simulate/{payment['payment_id']}",
            json={"outcome": "completed"},
        )

        assert response.status_code == HTTP_403_FORBIDDEN
        assert response.json()["error_code"] == "ERR_PAY_006"
