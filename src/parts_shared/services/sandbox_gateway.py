"""Sandbox payment gateway.

Runs entirely in-process. Sessions live in a registry so status lookups
reflect webhook resolution, and simulated outcomes are derived from a hash
of the payment ID so the same session always resolves the same way.

The same class serves as the labeled "mock" gateway when Stripe is
selected but no API key is configured.
"""

import hashlib
import hmac
import json
import secrets
import threading
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from pydantic import ValidationError

from parts_shared.models import (
    GatewayMode,
    PaymentOrder,
    PaymentResult,
    PaymentSession,
    SessionStatus,
    WebhookPayload,
)
from parts_shared.services.gateway import (
    SESSION_TTL_HOURS,
    PaymentGateway,
    WebhookPayloadError,
    compute_signature,
)
from parts_shared.utils.logging import get_logger, log_payment_operation

logger = get_logger(__name__)

SANDBOX_CHECKOUT_URL = "https://sandbox-api.payment-gateway.com"


def _hash_bucket(value: str) -> int:
    """0-99 bucket from the first byte of md5(value)."""
    return int(hashlib.md5(value.encode()).hexdigest()[:2], 16) % 100


def simulate_outcome(payment_id: str) -> SessionStatus:
    """Deterministic simulated result for a payment ID.

    60% completed, 20% pending, 15% failed, 5% expired.
    """
    bucket = _hash_bucket(payment_id)
    if bucket < 60:
        return SessionStatus.COMPLETED
    if bucket < 80:
        return SessionStatus.PENDING
    if bucket < 95:
        return SessionStatus.FAILED
    return SessionStatus.EXPIRED


class SandboxGateway(PaymentGateway):
    """Deterministic gateway for development and tests."""

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:8080",
        currency: str = "SAR",
        webhook_secret: str | None = None,
        failure_rate: Decimal = Decimal("0"),
        mode: GatewayMode = GatewayMode.SANDBOX,
        skip_signature_verification: bool = False,
    ) -> None:
        """Initialize the sandbox.

        Args:
            base_url: Public URL of this deployment (used by mock checkout links)
            currency: Session currency
            webhook_secret: HMAC secret for webhook signatures
            failure_rate: Share of session creations that fail (0-1)
            mode: SANDBOX, or MOCK when standing in for an unconfigured Stripe
            skip_signature_verification: TEST ONLY, see PaymentGateway
        """
        super().__init__(
            currency=currency,
            webhook_secret=webhook_secret,
            skip_signature_verification=skip_signature_verification,
        )
        self.mode = mode
        self._base_url = base_url.rstrip("/")
        self._failure_rate = failure_rate
        self._sessions: dict[str, PaymentSession] = {}
        self._customer_emails: dict[str, str] = {}
        self._idempotency: dict[str, str] = {}
        self._lock = threading.Lock()

    def _new_payment_id(self) -> str:
        if self.mode == GatewayMode.MOCK:
            return f"cs_mock_{secrets.token_hex(12)}"
        return f"pay_{secrets.token_hex(16)}"

    def _checkout_url(self, payment_id: str) -> str:
        if self.mode == GatewayMode.MOCK:
            return f"{self._base_url}/payment/stripe-checkout?session_id={payment_id}&mock=true"
        return f"{SANDBOX_CHECKOUT_URL}/payment/{payment_id}?sandbox=true"

    def _simulated_creation_failure(self, payment_id: str) -> bool:
        if self._failure_rate <= 0:
            return False
        return _hash_bucket(f"create:{payment_id}") < self._failure_rate * 100

    def create_payment(self, order: PaymentOrder) -> PaymentResult:
        amount = order.amount
        if amount <= 0:
            log_payment_operation(
                logger, "create_payment", order_id=order.order_id, amount=amount,
                error="non-positive amount",
            )
            return PaymentResult(success=False, error="Payment amount must be greater than zero")

        with self._lock:
            if order.idempotency_key and order.idempotency_key in self._idempotency:
                existing = self._sessions[self._idempotency[order.idempotency_key]]
                return self._result_for(existing)

            payment_id = self._new_payment_id()
            if self._simulated_creation_failure(payment_id):
                log_payment_operation(
                    logger, "create_payment", order_id=order.order_id,
                    error="simulated creation failure",
                )
                return PaymentResult(
                    success=False, error="Sandbox: Simulated payment creation failure"
                )

            session = PaymentSession(
                payment_id=payment_id,
                status=SessionStatus.PENDING,
                amount=amount,
                currency=order.currency,
                order_id=order.order_id,
                checkout_session_id=payment_id,
                payment_url=self._checkout_url(payment_id),
                expires_at=datetime.now(UTC) + timedelta(hours=SESSION_TTL_HOURS),
            )
            self._sessions[payment_id] = session
            self._customer_emails[payment_id] = order.customer_email
            if order.idempotency_key:
                self._idempotency[order.idempotency_key] = payment_id

        log_payment_operation(
            logger, "create_payment", payment_id=payment_id, order_id=order.order_id,
            amount=amount, currency=order.currency, status=session.status.value,
            mode=self.mode.value,
        )
        return self._result_for(session)

    @staticmethod
    def _result_for(session: PaymentSession) -> PaymentResult:
        return PaymentResult(
            success=True,
            payment_id=session.payment_id,
            payment_url=session.payment_url,
            expires_at=session.expires_at,
            checkout_session_id=session.checkout_session_id,
            amount=session.amount,
            currency=session.currency,
        )

    def get_payment_status(self, payment_id: str) -> PaymentSession | None:
        with self._lock:
            session = self._sessions.get(payment_id)
            if session is None:
                return None
            if (
                session.status == SessionStatus.PENDING
                and session.expires_at is not None
                and session.expires_at <= datetime.now(UTC)
            ):
                session = session.model_copy(update={"status": SessionStatus.EXPIRED})
                self._sessions[payment_id] = session
            return session

    def verify_webhook_signature(self, payload: bytes | str, signature: str | None) -> bool:
        if not self._webhook_secret or not signature:
            return False
        expected = compute_signature(payload, self._webhook_secret)
        return hmac.compare_digest(expected.encode(), signature.strip().lower().encode())

    def parse_event(self, payload: bytes) -> WebhookPayload | None:
        try:
            return WebhookPayload.model_validate(json.loads(payload))
        except (ValueError, ValidationError) as e:
            raise WebhookPayloadError(f"Invalid sandbox webhook body: {e}") from e

    def record_event(self, event: WebhookPayload) -> None:
        status = {
            "payment.completed": SessionStatus.COMPLETED,
            "payment.failed": SessionStatus.FAILED,
            "payment.expired": SessionStatus.EXPIRED,
        }.get(event.event)
        with self._lock:
            session = self._sessions.get(event.payment_id)
            # Resolved sessions are never reopened or re-resolved
            if session is None or status is None or session.is_resolved:
                return
            self._sessions[event.payment_id] = session.model_copy(
                update={
                    "status": status,
                    "transaction_id": event.transaction_id,
                    "paid_at": event.paid_at,
                    "failure_reason": (
                        "Insufficient funds" if status == SessionStatus.FAILED else None
                    ),
                }
            )

    def build_webhook(
        self,
        payment_id: str,
        outcome: SessionStatus | None = None,
    ) -> tuple[bytes, str] | None:
        """Build a signed webhook delivery resolving a sandbox session.

        Args:
            payment_id: Session to resolve
            outcome: Forced outcome; defaults to simulate_outcome(payment_id)

        Returns:
            (raw_body, signature), or None when the outcome is still pending

        Raises:
            KeyError: If the session is unknown
            RuntimeError: If no webhook secret is configured
        """
        if not self._webhook_secret:
            raise RuntimeError("Sandbox webhook secret is not configured")

        with self._lock:
            session = self._sessions[payment_id]
            email = self._customer_emails.get(payment_id)

        outcome = outcome or simulate_outcome(payment_id)
        if outcome == SessionStatus.PENDING:
            return None

        now = datetime.now(UTC)
        payload = WebhookPayload(
            event=f"payment.{outcome.value}",
            payment_id=payment_id,
            order_id=session.order_id or "",
            status=outcome.value,
            amount=session.amount,
            currency=session.currency,
            transaction_id=(
                f"txn_{secrets.token_hex(8)}" if outcome == SessionStatus.COMPLETED else None
            ),
            paid_at=now if outcome == SessionStatus.COMPLETED else None,
            customer_email=email,
        )
        body = payload.model_dump_json(exclude_none=True).encode()
        return body, compute_signature(body, self._webhook_secret)
