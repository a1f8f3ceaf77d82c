"""Payment gateway contract shared by the sandbox and Stripe adapters.

Every adapter speaks decimal currency units and the canonical session and
event vocabulary (SessionStatus, WebhookPayload). Native formats stay inside
the adapter.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Protocol

from parts_shared.models import (
    GatewayConfig,
    GatewayMode,
    PaymentBreakdown,
    PaymentOrder,
    PaymentResult,
    PaymentSession,
    WebhookEventType,
    WebhookPayload,
    WebhookResult,
)
from parts_shared.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)

SESSION_TTL_HOURS = 24


class WebhookPayloadError(ValueError):
    """Raised when a verified webhook body cannot be understood."""


class GatewayUnavailableError(Exception):
    """Raised when the gateway is unreachable while normalizing an event; safe to retry."""


class WebhookHandlers(Protocol):
    """Receiver of canonical payment events.

    Each method returns (processing_result, message) where processing_result
    is one of success, duplicate, skipped or error.
    """

    def on_payment_completed(self, payload: WebhookPayload) -> tuple[str, str | None]: ...

    def on_payment_failed(self, payload: WebhookPayload) -> tuple[str, str | None]: ...

    def on_payment_expired(self, payload: WebhookPayload) -> tuple[str, str | None]: ...


def _as_bytes(payload: bytes | str) -> bytes:
    return payload.encode() if isinstance(payload, str) else payload


def compute_signature(payload: bytes | str, secret: str) -> str:
    """HMAC-SHA256 of the raw payload, hex encoded."""
    return hmac.new(secret.encode(), _as_bytes(payload), hashlib.sha256).hexdigest()


def compute_payload_hash(payload: bytes | str) -> str:
    """SHA-256 of the raw payload for the webhook audit log."""
    return hashlib.sha256(_as_bytes(payload)).hexdigest()


class PaymentGateway(ABC):
    """Abstract payment gateway.

    Subclasses implement session creation, status lookup, signature checks
    and native event parsing. process_webhook() is shared: it verifies,
    normalizes and dispatches to WebhookHandlers.
    """

    mode: GatewayMode

    def __init__(
        self,
        *,
        currency: str = "SAR",
        webhook_secret: str | None = None,
        skip_signature_verification: bool = False,
    ) -> None:
        """Initialize shared gateway settings.

        Args:
            currency: ISO currency code for new sessions
            webhook_secret: Shared secret for webhook signatures
            skip_signature_verification: TEST ONLY. Accept webhooks without
                checking the signature. Refused in production by Settings.
        """
        self.currency = currency
        self._webhook_secret = webhook_secret
        self.skip_signature_verification = skip_signature_verification
        if skip_signature_verification:
            logger.warning("Webhook signature verification DISABLED (test-only mode)")

    @abstractmethod
    def create_payment(self, order: PaymentOrder) -> PaymentResult:
        """Open a 24-hour checkout session. Never raises on gateway errors."""

    @abstractmethod
    def get_payment_status(self, payment_id: str) -> PaymentSession | None:
        """Current canonical status, or None for unknown sessions."""

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes | str, signature: str | None) -> bool:
        """Check the signature over the raw payload."""

    @abstractmethod
    def parse_event(self, payload: bytes) -> WebhookPayload | None:
        """Normalize a verified body to a canonical event.

        Returns None for native events the system does not act on.

        Raises:
            WebhookPayloadError: If the body is malformed.
        """

    def record_event(self, event: WebhookPayload) -> None:
        """Hook for adapters that track session state locally."""

    def process_webhook(
        self,
        payload: bytes,
        signature: str | None,
        handlers: WebhookHandlers,
    ) -> WebhookResult:
        """Verify, normalize and dispatch one webhook delivery.

        No handler runs unless the signature is valid. Handler exceptions are
        logged and reported as an error result instead of propagating.
        """
        if not self.skip_signature_verification and not self.verify_webhook_signature(
            payload, signature
        ):
            log_webhook_event(logger, "unknown", "unverified", result="invalid_signature")
            return WebhookResult(
                success=False,
                processing_result="invalid_signature",
                message="Invalid webhook signature",
            )

        try:
            event = self.parse_event(payload)
        except WebhookPayloadError as e:
            logger.warning("Rejected webhook payload: %s", e)
            return WebhookResult(
                success=False, processing_result="invalid_payload", message=str(e)
            )
        except GatewayUnavailableError as e:
            logger.warning("Webhook deferred, gateway unavailable: %s", e)
            return WebhookResult(success=False, processing_result="retry", message=str(e))
        except Exception:
            logger.exception("Webhook event could not be normalized")
            return WebhookResult(
                success=False, processing_result="error", message="Failed to process webhook"
            )

        if event is None or event.event_type is None:
            event_name = event.event if event else "native"
            log_webhook_event(logger, event_name, "n/a", result="skipped")
            return WebhookResult(
                success=True,
                processing_result="skipped",
                message=f"Unhandled event type: {event_name}",
                event_type=event_name,
            )

        dispatch = {
            WebhookEventType.PAYMENT_COMPLETED: handlers.on_payment_completed,
            WebhookEventType.PAYMENT_FAILED: handlers.on_payment_failed,
            WebhookEventType.PAYMENT_EXPIRED: handlers.on_payment_expired,
        }

        try:
            self.record_event(event)
            result, message = dispatch[event.event_type](event)
        except Exception as e:
            logger.exception("Webhook handler failed for %s", event.dedupe_key)
            result, message = "error", f"Failed to process webhook: {e}"

        return WebhookResult(
            success=result != "error",
            processing_result=result,
            message=message,
            event_type=event.event,
            event_id=event.dedupe_key,
            order_id=event.order_id,
            payment_id=event.payment_id,
        )

    def payment_breakdown(self, parts_cost: Decimal, freight_cost: Decimal) -> PaymentBreakdown:
        return PaymentBreakdown(
            parts_cost=parts_cost,
            freight_cost=freight_cost,
            total_cost=parts_cost + freight_cost,
            currency=self.currency,
        )

    def public_config(self) -> GatewayConfig:
        return GatewayConfig(mode=self.mode, currency=self.currency)
