"""API models for request workflow endpoints."""

from pydantic import BaseModel, ConfigDict, Field

from parts_shared.models import (
    Money,
    NotificationIntent,
    NotificationRecord,
    PaymentSession,
    SparePartRequest,
)


class RequestListResponse(BaseModel):
    """One page of requests with the total match count."""

    success: bool = True
    data: list[SparePartRequest]
    total: int
    limit: int
    offset: int


class AvailabilityBody(BaseModel):
    """Price a pending request and issue its payment link."""

    model_config = ConfigDict(
        json_schema_extra={"examples": [{"parts_cost": 100, "freight_cost": 50}]},
    )

    parts_cost: Money = Field(..., ge=0, description="Parts cost in currency units")
    freight_cost: Money = Field(..., ge=0, description="Freight cost in currency units")


class NotAvailableBody(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class DispatchBody(BaseModel):
    """Shipment details recorded at dispatch."""

    tracking_number: str = Field(..., min_length=1, max_length=100, examples=["TRK123456789"])
    estimated_delivery: str | None = Field(default=None, examples=["2-3 business days"])


class OverridePaidBody(BaseModel):
    """Manual payment confirmation. Recorded in the request audit log."""

    actor: str = Field(..., min_length=1, description="Staff member applying the override")
    reason: str = Field(..., min_length=3, description="Why the payment is being confirmed manually")


class NotificationBody(BaseModel):
    intent: NotificationIntent


class NotificationSent(BaseModel):
    request: SparePartRequest
    notification: NotificationRecord


class PaymentSync(BaseModel):
    request: SparePartRequest
    session: PaymentSession
