"""Pytest configuration and fixtures for spare-parts desk tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto
- Sandbox gateway, notification and workflow wiring
- Sample intake data
"""

import os
from collections.abc import Generator
from decimal import Decimal
from typing import Any

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-partsdesk")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PAYMENT_PROVIDER", "sandbox")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_partsdesk_test_secret")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from parts_api.dependencies import reset_services  # noqa: E402
from parts_shared.models import RequestCreate  # noqa: E402
from parts_shared.services.dynamodb import DynamoDBService  # noqa: E402
from parts_shared.services.notifications import (  # noqa: E402
    NotificationDispatcher,
    NotificationSender,
)
from parts_shared.services.request_store import DynamoRequestStore  # noqa: E402
from parts_shared.services.sandbox_gateway import SandboxGateway  # noqa: E402
from parts_shared.services.webhook_handler import WebhookHandler  # noqa: E402
from parts_shared.services.workflow import WorkflowService  # noqa: E402

TEST_WEBHOOK_SECRET = os.environ["PAYMENT_WEBHOOK_SECRET"]
TABLE_PREFIX = os.environ["DYNAMODB_TABLE_PREFIX"]


class RecordingSender(NotificationSender):
    """Captures messages instead of delivering them."""

    channel = "test"

    def __init__(self, deliver: bool = True) -> None:
        self.deliver = deliver
        self.sent: list[tuple[str, str]] = []

    def send(self, phone_number: str, message: str) -> bool:
        self.sent.append((phone_number, message))
        return self.deliver


# === Service Singletons ===


@pytest.fixture(autouse=True)
def reset_service_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test.

    Tests using mock_aws get fresh boto3 resources inside the mock context
    and a fresh sandbox session registry.
    """
    reset_services()
    yield
    reset_services()


# === DynamoDB Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[Any, None, None]:
    """Create the requests and webhook-events tables in a moto context."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        client.create_table(
            TableName=f"{TABLE_PREFIX}-requests",
            KeySchema=[{"AttributeName": "request_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "request_id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        client.create_table(
            TableName=f"{TABLE_PREFIX}-webhook-events",
            KeySchema=[{"AttributeName": "event_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "event_id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        yield client


@pytest.fixture
def db(dynamodb_tables: Any) -> DynamoDBService:
    return DynamoDBService(TABLE_PREFIX)


@pytest.fixture
def store(db: DynamoDBService) -> DynamoRequestStore:
    return DynamoRequestStore(db=db)


# === Workflow Fixtures ===


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def sandbox() -> SandboxGateway:
    return SandboxGateway(webhook_secret=TEST_WEBHOOK_SECRET)


@pytest.fixture
def workflow(
    store: DynamoRequestStore,
    sandbox: SandboxGateway,
    sender: RecordingSender,
) -> WorkflowService:
    return WorkflowService(store=store, gateway=sandbox, dispatcher=NotificationDispatcher(sender))


@pytest.fixture
def webhook_handler(workflow: WorkflowService, db: DynamoDBService) -> WebhookHandler:
    return WebhookHandler(workflow=workflow, db=db)


# === Sample Data Fixtures ===


@pytest.fixture
def intake_data() -> dict[str, Any]:
    """Public intake form body."""
    return {
        "customer_name": "Ahmed Al-Rashid",
        "phone_number": "+966551234567",
        "email": "ahmed@example.com",
        "vehicle_estamra": "ABC123",
        "vin_number": "KMHXX00XXXX000001",
        "part_name": "Front brake pads for Hyundai Sonata 2022",
    }


@pytest.fixture
def pending_request(store: DynamoRequestStore, intake_data: dict[str, Any]) -> Any:
    """A stored request in Pending."""
    return store.create(RequestCreate(**intake_data))


@pytest.fixture
def available_request(workflow: WorkflowService, pending_request: Any) -> Any:
    """A request priced at 100 + 50 with an open sandbox session."""
    return workflow.mark_available(pending_request.request_id, Decimal("100"), Decimal("50"))
