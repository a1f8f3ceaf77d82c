"""API models for payment endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from parts_shared.models import Money, PaymentBreakdown, SessionStatus, WebhookResult


class PaymentCreateRequest(BaseModel):
    """Create a payment link for an existing request.

    Customer details come from the stored request.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"order_id": "REQ-1755947420692-k3j9x0", "parts_cost": 100, "freight_cost": 50}
            ]
        },
    )

    order_id: str = Field(..., min_length=1, description="Request ID to collect payment for")
    parts_cost: Money = Field(..., ge=0)
    freight_cost: Money = Field(..., ge=0)


class PaymentCreateData(BaseModel):
    payment_id: str
    payment_url: str
    expires_at: datetime | None = None
    breakdown: PaymentBreakdown
    whatsapp_message: str
    whatsapp_link: str


class BreakdownRequest(BaseModel):
    parts_cost: Money = Field(..., ge=0)
    freight_cost: Money = Field(..., ge=0)


class SimulateRequest(BaseModel):
    """Sandbox only. Without an outcome the session's hash decides."""

    outcome: SessionStatus | None = None


class SimulateData(BaseModel):
    payment_id: str
    outcome: SessionStatus
    webhook: WebhookResult | None = None


class WebhookResponse(BaseModel):
    """Standard webhook response."""

    received: bool
    event_id: str | None = None
    event_type: str | None = None
    processing_result: str  # "success", "duplicate", "skipped", "retry", "error"
    message: str | None = None
