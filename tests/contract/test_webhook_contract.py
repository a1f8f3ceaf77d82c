"""Contract tests for POST /api/payments/webhook.

Tests verify:
- Signed sandbox deliveries are processed and acknowledged with 200
- Redelivered events are acknowledged as duplicates without side effects
- Invalid signatures and malformed bodies are rejected with 400
- Unhandled event types are acknowledged and skipped

Test categories:
- Signature verification
- Idempotency
- Payload handling
"""

import json
from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.status import HTTP_200_OK, HTTP_400_BAD_REQUEST, HTTP_503_SERVICE_UNAVAILABLE

from conftest import TEST_WEBHOOK_SECRET
from parts_api.dependencies import get_payment_gateway
from parts_api.main import app
from parts_shared.models import SessionStatus
from parts_shared.services.gateway import GatewayUnavailableError, compute_signature

WEBHOOK_URL = "/api/payments/webhook"


# === Test Fixtures ===


@pytest.fixture
def client(dynamodb_tables: Any) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def priced(client: TestClient, intake_data: dict[str, Any]) -> dict[str, Any]:
    """A request in Available with an open sandbox session."""
    request_id = client.post("/api/requests", json=intake_data).json()["data"]["request_id"]
    return client.post(
        f"/api/requests/{request_id}/availability",
        json={"parts_cost": 100, "freight_cost": 50},
    ).json()["data"]


def _delivery(payment_id: str, outcome: SessionStatus) -> tuple[bytes, str]:
    delivery = get_payment_gateway().build_webhook(payment_id, outcome)
    assert delivery is not None
    return delivery


def _post(client: TestClient, body: bytes, signature: str | None) -> Any:
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["X-Webhook-Signature"] = signature
    return client.post(WEBHOOK_URL, content=body, headers=headers)


# === Signature Verification ===


class TestSignatureVerification:
    def test_valid_signature_is_processed(self, client, priced):
        body, signature = _delivery(priced["payment_id"], SessionStatus.COMPLETED)

        response = _post(client, body, signature)

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["received"] is True
        assert data["processing_result"] == "success"
        assert data["event_type"] == "payment.completed"
        assert data["event_id"] == f"payment.completed:{priced['payment_id']}"

        stored = client.get(f"/api/requests/{priced['request_id']}").json()["data"]
        assert stored["status"] == "Paid"

    def test_invalid_signature_returns_400_without_changes(self, client, priced):
        body, _ = _delivery(priced["payment_id"], SessionStatus.COMPLETED)

        response = _post(client, body, "0" * 64)

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_PAY_004"
        stored = client.get(f"/api/requests/{priced['request_id']}").json()["data"]
        assert stored["status"] == "Available"
        assert stored["version"] == priced["version"]

    def test_missing_signature_returns_400(self, client, priced):
        body, _ = _delivery(priced["payment_id"], SessionStatus.COMPLETED)

        response = _post(client, body, None)

        assert response.status_code == HTTP_400_BAD_REQUEST

    def test_tampered_body_returns_400(self, client, priced):
        body, signature = _delivery(priced["payment_id"], SessionStatus.COMPLETED)
        tampered = body.replace(b"150", b"1")

        response = _post(client, tampered, signature)

        assert response.status_code == HTTP_400_BAD_REQUEST


# === Idempotency ===


class TestIdempotency:
    def test_redelivery_is_acknowledged_as_duplicate(self, client, priced):
        body, signature = _delivery(priced["payment_id"], SessionStatus.COMPLETED)
        _post(client, body, signature)
        version = client.get(f"/api/requests/{priced['request_id']}").json()["data"]["version"]

        response = _post(client, body, signature)

        assert response.status_code == HTTP_200_OK
        assert response.json()["processing_result"] == "duplicate"
        stored = client.get(f"/api/requests/{priced['request_id']}").json()["data"]
        assert stored["version"] == version

    def test_failed_event_marks_payment_failed(self, client, priced):
        body, signature = _delivery(priced["payment_id"], SessionStatus.FAILED)

        response = _post(client, body, signature)

        assert response.json()["processing_result"] == "success"
        stored = client.get(f"/api/requests/{priced['request_id']}").json()["data"]
        assert stored["status"] == "Available"
        assert stored["payment_status"] == "Failed"


# === Payload Handling ===


class TestPayloadHandling:
    def test_malformed_json_returns_400(self, client):
        body = b"{not json"

        response = _post(client, body, compute_signature(body, TEST_WEBHOOK_SECRET))

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_PAY_005"

    def test_missing_fields_return_400(self, client):
        body = json.dumps({"event": "payment.completed"}).encode()

        response = _post(client, body, compute_signature(body, TEST_WEBHOOK_SECRET))

        assert response.status_code == HTTP_400_BAD_REQUEST

    def test_unhandled_event_is_skipped(self, client, priced):
        body = json.dumps(
            {
                "event": "payment.refunded",
                "payment_id": priced["payment_id"],
                "order_id": priced["request_id"],
                "status": "refunded",
                "amount": 150,
                "currency": "SAR",
            }
        ).encode()

        response = _post(client, body, compute_signature(body, TEST_WEBHOOK_SECRET))

        assert response.status_code == HTTP_200_OK
        assert response.json()["processing_result"] == "skipped"
        stored = client.get(f"/api/requests/{priced['request_id']}").json()["data"]
        assert stored["status"] == "Available"

    def test_unknown_request_is_skipped(self, client):
        body = json.dumps(
            {
                "event": "payment.completed",
                "payment_id": "pay_orphan",
                "order_id": "REQ-missing",
                "status": "completed",
                "amount": 150,
                "currency": "SAR",
            }
        ).encode()

        response = _post(client, body, compute_signature(body, TEST_WEBHOOK_SECRET))

        assert response.status_code == HTTP_200_OK
        assert response.json()["processing_result"] == "skipped"


# === Gateway Outages ===


class TestGatewayOutage:
    def test_unreachable_gateway_returns_503_and_redelivery_succeeds(self, client, priced):
        body, signature = _delivery(priced["payment_id"], SessionStatus.COMPLETED)

        with patch.object(
            get_payment_gateway(),
            "parse_event",
            side_effect=GatewayUnavailableError("lookup timed out"),
        ):
            response = _post(client, body, signature)

        assert response.status_code == HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["processing_result"] == "retry"
        stored = client.get(f"/api/requests/{priced['request_id']}").json()["data"]
        assert stored["status"] == "Available"

        retried = _post(client, body, signature)

        assert retried.status_code == HTTP_200_OK
        assert retried.json()["processing_result"] == "success"
