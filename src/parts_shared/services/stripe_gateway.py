"""Stripe Checkout gateway.

Uses the v8+ StripeClient. Amounts cross into Stripe as minor units and come
back as decimal currency units; nothing outside this module sees cents.
Stripe errors are logged and returned as failed results, never raised.
"""

import json
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from stripe import StripeClient

from parts_shared.models import (
    GatewayConfig,
    GatewayMode,
    PaymentOrder,
    PaymentResult,
    PaymentSession,
    SessionStatus,
    WebhookEventType,
    WebhookPayload,
    get_user_friendly_stripe_message,
)
from parts_shared.services.gateway import (
    SESSION_TTL_HOURS,
    GatewayUnavailableError,
    PaymentGateway,
    WebhookPayloadError,
)
from parts_shared.utils.logging import get_logger, log_payment_operation

logger = get_logger(__name__)

STRIPE_TIMEOUT_SECONDS = 20
CENTS = Decimal(100)


def to_minor_units(amount: Decimal) -> int:
    """150.5 -> 15050."""
    return int((amount * CENTS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None) -> Decimal:
    """15050 -> Decimal("150.50")."""
    return (Decimal(amount or 0) / CENTS).quantize(Decimal("0.01"))


def _timestamp(value: int | None) -> datetime | None:
    return datetime.fromtimestamp(value, tz=UTC) if value else None


class StripeGateway(PaymentGateway):
    """Checkout Sessions backed gateway.

    Usage:
        gateway = StripeGateway(secret_key="sk_test_...", webhook_secret="whsec_...")
        result = gateway.create_payment(order)
    """

    mode = GatewayMode.STRIPE

    def __init__(
        self,
        *,
        secret_key: str,
        webhook_secret: str | None = None,
        publishable_key: str | None = None,
        base_url: str = "http://localhost:8080",
        currency: str = "SAR",
        skip_signature_verification: bool = False,
        client: StripeClient | None = None,
    ) -> None:
        super().__init__(
            currency=currency,
            webhook_secret=webhook_secret,
            skip_signature_verification=skip_signature_verification,
        )
        self._publishable_key = publishable_key
        self._base_url = base_url.rstrip("/")
        self._client = client or StripeClient(
            secret_key,
            http_client=stripe.RequestsClient(timeout=STRIPE_TIMEOUT_SECONDS),
            max_network_retries=0,
        )

    def create_payment(self, order: PaymentOrder) -> PaymentResult:
        amount = order.amount
        if amount <= 0:
            return PaymentResult(success=False, error="Payment amount must be greater than zero")

        amount_cents = to_minor_units(amount)
        expires_at = datetime.now(UTC) + timedelta(hours=SESSION_TTL_HOURS)
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": order.currency.lower(),
                        "unit_amount": amount_cents,
                        "product_data": {
                            "name": f"Spare Part: {order.description or order.order_id}",
                            "description": (
                                f"Parts Cost: {order.parts_cost} {order.currency}, "
                                f"Freight: {order.freight_cost} {order.currency}"
                            ),
                        },
                    },
                    "quantity": 1,
                }
            ],
            "success_url": f"{self._base_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self._base_url}/payment/cancel?session_id={{CHECKOUT_SESSION_ID}}",
            "customer_email": order.customer_email,
            "metadata": {
                "order_id": order.order_id,
                "customer_name": order.customer_name,
                "customer_phone": order.customer_phone or "",
                "parts_cost": str(order.parts_cost),
                "freight_cost": str(order.freight_cost),
                "description": order.description,
            },
            "expires_at": int(expires_at.timestamp()),
        }
        options: dict[str, Any] = {}
        if order.idempotency_key:
            options["idempotency_key"] = f"checkout_{order.idempotency_key}"

        try:
            session = self._client.checkout.sessions.create(params=params, options=options)
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            log_payment_operation(
                logger, "create_payment", order_id=order.order_id, amount=amount,
                error=f"{e} (code: {error_code})",
            )
            return PaymentResult(success=False, error=get_user_friendly_stripe_message(error_code))

        log_payment_operation(
            logger, "create_payment", payment_id=session.id, order_id=order.order_id,
            amount=amount, currency=order.currency, amount_cents=amount_cents,
        )
        return PaymentResult(
            success=True,
            payment_id=session.id,
            payment_url=session.url,
            expires_at=_timestamp(session.expires_at) or expires_at,
            checkout_session_id=session.id,
            amount=amount,
            currency=order.currency,
        )

    def get_payment_status(self, payment_id: str) -> PaymentSession | None:
        try:
            session = self._client.checkout.sessions.retrieve(payment_id)
        except stripe.InvalidRequestError as e:
            logger.info("Stripe session %s not found: %s", payment_id, e)
            return None
        except stripe.StripeError as e:
            log_payment_operation(logger, "get_payment_status", payment_id=payment_id, error=str(e))
            return None

        return self._to_session(session)

    def _to_session(self, session: Any) -> PaymentSession:
        """Map a Stripe Checkout Session onto the canonical session."""
        expires_at = _timestamp(session.expires_at)
        failure_reason = None

        if session.payment_status in ("paid", "no_payment_required"):
            status = SessionStatus.COMPLETED
        elif session.status == "expired":
            status = SessionStatus.EXPIRED
        elif session.payment_status == "unpaid":
            status = SessionStatus.PENDING
        else:
            status = SessionStatus.FAILED
            failure_reason = "Payment failed"

        if status == SessionStatus.PENDING and expires_at and expires_at <= datetime.now(UTC):
            status = SessionStatus.EXPIRED

        metadata = session.metadata or {}
        return PaymentSession(
            payment_id=session.id,
            status=status,
            amount=from_minor_units(session.amount_total),
            currency=(session.currency or self.currency).upper(),
            order_id=metadata.get("order_id"),
            checkout_session_id=session.id,
            payment_url=session.url,
            expires_at=expires_at,
            transaction_id=session.payment_intent if status == SessionStatus.COMPLETED else None,
            failure_reason=failure_reason,
        )

    def verify_webhook_signature(self, payload: bytes | str, signature: str | None) -> bool:
        if not self._webhook_secret or not signature:
            return False
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        try:
            stripe.WebhookSignature.verify_header(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid Stripe webhook signature: %s", e)
            return False
        return True

    def parse_event(self, payload: bytes) -> WebhookPayload | None:
        try:
            event = json.loads(payload)
            event_id = event["id"]
            event_type = event["type"]
            obj = event["data"]["object"]
        except (ValueError, KeyError, TypeError) as e:
            raise WebhookPayloadError(f"Invalid Stripe event body: {e}") from e

        if event_type == "checkout.session.completed":
            if obj.get("payment_status") != "paid":
                logger.warning(
                    "checkout.session.completed with payment_status=%s, skipping",
                    obj.get("payment_status"),
                )
                return None
            return self._session_event(event, obj, WebhookEventType.PAYMENT_COMPLETED)

        if event_type == "checkout.session.expired":
            return self._session_event(event, obj, WebhookEventType.PAYMENT_EXPIRED)

        if event_type == "payment_intent.payment_failed":
            return self._payment_failed_event(event, obj)

        logger.info("Unhandled Stripe event type %s (%s)", event_type, event_id)
        return None

    def _session_event(
        self,
        event: dict[str, Any],
        session: dict[str, Any],
        event_type: WebhookEventType,
    ) -> WebhookPayload:
        metadata = session.get("metadata") or {}
        order_id = metadata.get("order_id")
        if not order_id:
            raise WebhookPayloadError("Missing order_id in session metadata")

        completed = event_type == WebhookEventType.PAYMENT_COMPLETED
        customer = session.get("customer_details") or {}
        return WebhookPayload(
            event=event_type.value,
            event_id=event["id"],
            payment_id=session["id"],
            order_id=order_id,
            status="completed" if completed else "expired",
            amount=from_minor_units(session.get("amount_total")),
            currency=(session.get("currency") or self.currency).upper(),
            transaction_id=session.get("payment_intent") if completed else None,
            paid_at=_timestamp(event.get("created")) if completed else None,
            customer_email=customer.get("email") or session.get("customer_email"),
        )

    def _payment_failed_event(
        self, event: dict[str, Any], intent: dict[str, Any]
    ) -> WebhookPayload | None:
        try:
            sessions = self._client.checkout.sessions.list(
                params={"payment_intent": intent["id"], "limit": 1}
            )
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            log_payment_operation(
                logger, "resolve_failed_intent", payment_id=intent.get("id"),
                error=f"{e} (code: {error_code})",
            )
            raise GatewayUnavailableError(
                f"Could not look up checkout session for {intent.get('id')} (code: {error_code})"
            ) from e

        if not sessions.data:
            logger.warning("No checkout session for failed PaymentIntent %s", intent.get("id"))
            return None

        session = sessions.data[0]
        metadata = session.metadata or {}
        order_id = metadata.get("order_id")
        if not order_id:
            raise WebhookPayloadError("Missing order_id in session metadata")

        return WebhookPayload(
            event=WebhookEventType.PAYMENT_FAILED.value,
            event_id=event["id"],
            payment_id=session.id,
            order_id=order_id,
            status="failed",
            amount=from_minor_units(intent.get("amount")),
            currency=(intent.get("currency") or self.currency).upper(),
            transaction_id=intent.get("id"),
        )

    def public_config(self) -> GatewayConfig:
        return GatewayConfig(
            mode=self.mode,
            publishable_key=self._publishable_key,
            currency=self.currency,
        )
