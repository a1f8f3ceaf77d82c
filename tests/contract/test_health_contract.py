"""Contract tests for the liveness and health endpoints."""

from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.status import HTTP_200_OK

from parts_api.main import app


@pytest.fixture
def client(dynamodb_tables: Any):
    with TestClient(app) as test_client:
        yield test_client


def test_ping(client: TestClient) -> None:
    response = client.get("/api/ping")

    assert response.status_code == HTTP_200_OK
    body = response.json()
    assert body["status"] == "ok"
    assert body["service"] == "partsdesk-api"


def test_health_reports_runtime_modes(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == HTTP_200_OK
    body = response.json()
    assert body["status"] == "healthy"
    assert body["environment"] == "test"
    assert body["payment_gateway"] == "sandbox"
    assert body["notifications"] == "log"
    assert "X-Correlation-ID" in response.headers
