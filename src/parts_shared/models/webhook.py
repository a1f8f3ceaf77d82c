"""Webhook models: the canonical payment event and its audit log entry."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import WebhookEventType
from .payment import Money


class WebhookPayload(BaseModel):
    """Canonical payment event.

    The sandbox gateway receives this shape directly. Other gateways
    normalize their native envelopes onto it before dispatch.
    """

    model_config = ConfigDict(extra="ignore")

    event: str = Field(..., description="Event type, e.g. payment.completed")
    payment_id: str
    order_id: str
    status: str
    amount: Money
    currency: str
    transaction_id: str | None = None
    paid_at: datetime | None = None
    customer_email: str | None = None
    event_id: str | None = Field(
        default=None,
        description="Gateway event ID when the provider supplies one",
    )
    # Carried in the sandbox body for compatibility; verification uses the
    # header signature over the raw body.
    signature: str | None = None

    @property
    def event_type(self) -> WebhookEventType | None:
        """The event as a known type, or None for unhandled events."""
        try:
            return WebhookEventType(self.event)
        except ValueError:
            return None

    @property
    def dedupe_key(self) -> str:
        """Identifier used to detect redelivery of the same event."""
        return self.event_id or f"{self.event}:{self.payment_id}"


class WebhookEventLog(BaseModel):
    """Log of a received webhook event.

    Used for:
    - Idempotency: recognize redelivered events
    - Auditing: track all webhook deliveries
    - Debugging: investigate payment issues
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(
        ...,
        description="Gateway event ID (or event:payment_id for the sandbox)",
        examples=["evt_1ABC123DEF456", "payment.completed:pay_ab12"],
    )
    event_type: str = Field(
        ...,
        description="Event type",
        examples=["payment.completed", "checkout.session.completed"],
    )
    processed_at: datetime = Field(..., description="When the event was processed")
    payload_hash: str = Field(..., description="SHA-256 hash of payload")
    order_id: str | None = Field(default=None, description="Associated request ID")
    payment_id: str | None = Field(default=None, description="Associated payment ID")
    processing_result: str = Field(
        default="success",
        description="Result of processing: success, duplicate, skipped, error",
    )
    error_message: str | None = Field(default=None, description="Error details if processing failed")


class WebhookResult(BaseModel):
    """Outcome of PaymentGateway.process_webhook."""

    success: bool
    processing_result: str = Field(
        ...,
        description="success, duplicate, skipped, invalid_signature, invalid_payload, retry or error",
    )
    message: str | None = None
    event_type: str | None = None
    event_id: str | None = None
    order_id: str | None = None
    payment_id: str | None = None
