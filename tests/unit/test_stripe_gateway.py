"""Unit tests for StripeGateway.

Tests verify the gateway logic without making actual Stripe API calls.
The StripeClient is replaced by a MagicMock.

Test categories:
- Minor unit conversion
- Checkout session creation
- Session status mapping
- Webhook signature verification
- Event normalization
"""

import hashlib
import hmac
import json
import time
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
import stripe

from parts_shared.models import GatewayMode, PaymentOrder, SessionStatus
from parts_shared.services.gateway import GatewayUnavailableError, WebhookPayloadError
from parts_shared.services.stripe_gateway import (
    StripeGateway,
    from_minor_units,
    to_minor_units,
)

# === Test Configuration ===

TEST_SECRET_KEY = "sk_test_abc123xyz"
TEST_WEBHOOK_SECRET = "whsec_test_secret123"
TEST_REQUEST_ID = "REQ-1755947420692-k3j9x0"


# === Helper Functions ===


def _create_stripe_signature(payload: bytes, secret: str) -> str:
    """Stripe header format: t={timestamp},v1={hmac_sha256(t.payload)}."""
    timestamp = str(int(time.time()))
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
    signature = hmac.new(
        secret.encode("utf-8"),
        signed_payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def _checkout_session(**overrides: Any) -> SimpleNamespace:
    data = {
        "id": "cs_test_abc123",
        "url": "https://checkout.stripe.com/c/pay/cs_test_abc123",
        "payment_status": "unpaid",
        "status": "open",
        "amount_total": 15000,
        "currency": "sar",
        "payment_intent": "pi_3ABC123",
        "expires_at": int((datetime.now(UTC) + timedelta(hours=24)).timestamp()),
        "metadata": {"order_id": TEST_REQUEST_ID},
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def _event(event_type: str, obj: dict[str, Any], event_id: str = "evt_1ABC") -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": obj},
        }
    ).encode()


def _order(**overrides: Any) -> PaymentOrder:
    data = {
        "order_id": TEST_REQUEST_ID,
        "parts_cost": Decimal("100"),
        "freight_cost": Decimal("50"),
        "customer_name": "Ahmed Al-Rashid",
        "customer_email": "ahmed@example.com",
        "customer_phone": "+966551234567",
        "description": "Front brake pads",
    }
    data.update(overrides)
    return PaymentOrder(**data)


# === Test Fixtures ===


@pytest.fixture
def mock_stripe_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def gateway(mock_stripe_client: MagicMock) -> StripeGateway:
    return StripeGateway(
        secret_key=TEST_SECRET_KEY,
        webhook_secret=TEST_WEBHOOK_SECRET,
        publishable_key="pk_test_abc",
        base_url="https://parts.example.com",
        client=mock_stripe_client,
    )


class TestMinorUnits:
    def test_round_trip_of_whole_amount(self):
        assert to_minor_units(Decimal("150")) == 15000
        assert from_minor_units(15000) == Decimal("150")

    def test_fractional_amount_rounds_half_up(self):
        assert to_minor_units(Decimal("10.005")) == 1001

    def test_missing_amount_is_zero(self):
        assert from_minor_units(None) == Decimal("0")


class TestCreatePayment:
    def test_creates_checkout_session_with_cents(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.create.return_value = _checkout_session()

        result = gateway.create_payment(_order())

        assert result.success is True
        assert result.payment_id == "cs_test_abc123"
        assert result.payment_url == "https://checkout.stripe.com/c/pay/cs_test_abc123"
        assert result.amount == Decimal("150")

        params = mock_stripe_client.checkout.sessions.create.call_args.kwargs["params"]
        line_item = params["line_items"][0]
        assert line_item["price_data"]["unit_amount"] == 15000
        assert line_item["price_data"]["currency"] == "sar"
        assert params["customer_email"] == "ahmed@example.com"
        assert params["metadata"]["order_id"] == TEST_REQUEST_ID
        assert params["metadata"]["parts_cost"] == "100"
        assert params["success_url"].startswith("https://parts.example.com/payment/success")

    def test_passes_idempotency_key(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.create.return_value = _checkout_session()

        gateway.create_payment(_order(idempotency_key=f"{TEST_REQUEST_ID}-v1"))

        options = mock_stripe_client.checkout.sessions.create.call_args.kwargs["options"]
        assert options == {"idempotency_key": f"checkout_{TEST_REQUEST_ID}-v1"}

    def test_zero_amount_never_calls_stripe(self, gateway, mock_stripe_client):
        result = gateway.create_payment(
            _order(parts_cost=Decimal("0"), freight_cost=Decimal("0"))
        )

        assert result.success is False
        mock_stripe_client.checkout.sessions.create.assert_not_called()

    def test_stripe_error_maps_to_friendly_message(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.create.side_effect = stripe.InvalidRequestError(
            "Amount must be at least 50 cents", param="amount", code="amount_too_small"
        )

        result = gateway.create_payment(_order())

        assert result.success is False
        assert result.error == "The payment amount is below the minimum allowed."

    def test_unknown_stripe_error_uses_default_message(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.create.side_effect = stripe.APIConnectionError(
            "Network down"
        )

        result = gateway.create_payment(_order())

        assert result.success is False
        assert result.error == "Payment link could not be created. Please try again."


class TestPaymentStatus:
    @pytest.mark.parametrize(
        ("payment_status", "status", "expected"),
        [
            ("paid", "complete", SessionStatus.COMPLETED),
            ("no_payment_required", "complete", SessionStatus.COMPLETED),
            ("unpaid", "expired", SessionStatus.EXPIRED),
            ("unpaid", "open", SessionStatus.PENDING),
        ],
    )
    def test_maps_checkout_session_status(
        self, gateway, mock_stripe_client, payment_status, status, expected
    ):
        mock_stripe_client.checkout.sessions.retrieve.return_value = _checkout_session(
            payment_status=payment_status, status=status
        )

        session = gateway.get_payment_status("cs_test_abc123")

        assert session.status == expected
        assert session.amount == Decimal("150")
        assert session.currency == "SAR"
        assert session.order_id == TEST_REQUEST_ID

    def test_open_session_past_expiry_reports_expired(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.retrieve.return_value = _checkout_session(
            expires_at=int((datetime.now(UTC) - timedelta(minutes=5)).timestamp())
        )

        assert gateway.get_payment_status("cs_test_abc123").status == SessionStatus.EXPIRED

    def test_paid_session_past_expiry_stays_completed(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.retrieve.return_value = _checkout_session(
            payment_status="paid",
            status="complete",
            expires_at=int((datetime.now(UTC) - timedelta(minutes=5)).timestamp()),
        )

        session = gateway.get_payment_status("cs_test_abc123")

        assert session.status == SessionStatus.COMPLETED
        assert session.transaction_id == "pi_3ABC123"

    def test_unknown_session_returns_none(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.retrieve.side_effect = stripe.InvalidRequestError(
            "No such checkout.session", param="id"
        )

        assert gateway.get_payment_status("cs_missing") is None


class TestSignatureVerification:
    def test_valid_signature(self, gateway):
        payload = _event("checkout.session.completed", {})

        assert gateway.verify_webhook_signature(
            payload, _create_stripe_signature(payload, TEST_WEBHOOK_SECRET)
        )

    def test_wrong_secret(self, gateway):
        payload = _event("checkout.session.completed", {})

        assert not gateway.verify_webhook_signature(
            payload, _create_stripe_signature(payload, "whsec_wrong")
        )

    def test_garbage_header(self, gateway):
        assert not gateway.verify_webhook_signature(b"{}", "not-a-stripe-header")


class TestParseEvent:
    def test_completed_paid_session(self, gateway):
        payload = _event(
            "checkout.session.completed",
            {
                "id": "cs_test_abc123",
                "payment_status": "paid",
                "amount_total": 15000,
                "currency": "sar",
                "payment_intent": "pi_3ABC123",
                "metadata": {"order_id": TEST_REQUEST_ID},
                "customer_details": {"email": "ahmed@example.com"},
            },
        )

        event = gateway.parse_event(payload)

        assert event.event == "payment.completed"
        assert event.event_id == "evt_1ABC"
        assert event.dedupe_key == "evt_1ABC"
        assert event.payment_id == "cs_test_abc123"
        assert event.amount == Decimal("150")
        assert event.currency == "SAR"
        assert event.transaction_id == "pi_3ABC123"
        assert event.customer_email == "ahmed@example.com"

    def test_completed_but_unpaid_is_ignored(self, gateway):
        payload = _event(
            "checkout.session.completed",
            {"id": "cs_1", "payment_status": "unpaid", "metadata": {"order_id": TEST_REQUEST_ID}},
        )

        assert gateway.parse_event(payload) is None

    def test_expired_session(self, gateway):
        payload = _event(
            "checkout.session.expired",
            {"id": "cs_1", "amount_total": 15000, "metadata": {"order_id": TEST_REQUEST_ID}},
        )

        event = gateway.parse_event(payload)

        assert event.event == "payment.expired"
        assert event.transaction_id is None

    def test_payment_failed_looks_up_session(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.list.return_value = SimpleNamespace(
            data=[_checkout_session(id="cs_for_pi")]
        )
        payload = _event(
            "payment_intent.payment_failed",
            {"id": "pi_failed", "amount": 15000, "currency": "sar"},
        )

        event = gateway.parse_event(payload)

        assert event.event == "payment.failed"
        assert event.payment_id == "cs_for_pi"
        assert event.order_id == TEST_REQUEST_ID
        mock_stripe_client.checkout.sessions.list.assert_called_once_with(
            params={"payment_intent": "pi_failed", "limit": 1}
        )

    def test_failed_intent_lookup_error_is_retryable(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.list.side_effect = stripe.APIConnectionError(
            "Network down"
        )
        payload = _event(
            "payment_intent.payment_failed",
            {"id": "pi_failed", "amount": 15000, "currency": "sar"},
        )

        with pytest.raises(GatewayUnavailableError, match="pi_failed"):
            gateway.parse_event(payload)

    def test_failed_intent_lookup_error_defers_delivery(self, gateway, mock_stripe_client):
        mock_stripe_client.checkout.sessions.list.side_effect = stripe.APIConnectionError(
            "Network down"
        )
        payload = _event(
            "payment_intent.payment_failed",
            {"id": "pi_failed", "amount": 15000, "currency": "sar"},
        )
        handlers = MagicMock()

        result = gateway.process_webhook(
            payload, _create_stripe_signature(payload, TEST_WEBHOOK_SECRET), handlers
        )

        assert result.success is False
        assert result.processing_result == "retry"
        handlers.on_payment_failed.assert_not_called()

    def test_missing_order_id_is_invalid_payload(self, gateway):
        payload = _event(
            "checkout.session.completed",
            {"id": "cs_1", "payment_status": "paid", "metadata": {}},
        )

        with pytest.raises(WebhookPayloadError):
            gateway.parse_event(payload)

    def test_unhandled_type_returns_none(self, gateway):
        assert gateway.parse_event(_event("charge.refunded", {"id": "ch_1"})) is None

    def test_malformed_envelope(self, gateway):
        with pytest.raises(WebhookPayloadError):
            gateway.parse_event(b'{"type": "checkout.session.completed"}')


class TestPublicConfig:
    def test_exposes_publishable_key(self, gateway):
        config = gateway.public_config()

        assert config.mode == GatewayMode.STRIPE
        assert config.publishable_key == "pk_test_abc"
        assert config.currency == "SAR"
