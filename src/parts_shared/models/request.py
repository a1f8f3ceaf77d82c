"""Spare-part request models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .enums import (
    NotificationIntent,
    PaymentStatus,
    RequestStatus,
    SortField,
    SortOrder,
)
from .payment import Money

# Fields an update may touch. Everything else is set by create or by the
# workflow service itself.
UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "status",
        "price",
        "parts_cost",
        "freight_cost",
        "payment_link",
        "payment_status",
        "notes",
        "whatsapp_sent",
        "dispatched_on",
        "tracking_number",
    }
)


class NotificationRecord(BaseModel):
    """One customer notification sent for a request."""

    intent: NotificationIntent
    sent_at: datetime
    channel: str = "whatsapp"
    delivered: bool = True
    message: str


class AuditEntry(BaseModel):
    """Staff action that bypassed the regular workflow."""

    action: str
    actor: str
    reason: str
    at: datetime
    from_status: RequestStatus
    to_status: RequestStatus


class SparePartRequest(BaseModel):
    """A customer's spare-part inquiry and its fulfillment state.

    Amounts are decimal currency units.
    """

    # Note: strict=False lets ISO timestamps and Decimals from DynamoDB
    # items coerce into the declared types
    model_config = ConfigDict(strict=False)

    request_id: str = Field(..., description="Unique request ID", examples=["REQ-1755947420692-k3j9x0"])
    timestamp: datetime = Field(..., description="Intake time")
    customer_name: str
    phone_number: str
    email: str
    vehicle_estamra: str = Field(..., description="Vehicle registration (estamra) number")
    vin_number: str
    part_name: str
    part_photo_url: str | None = None

    status: RequestStatus = RequestStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    price: Money | None = Field(default=None, ge=0)
    parts_cost: Money | None = Field(default=None, ge=0)
    freight_cost: Money | None = Field(default=None, ge=0)
    payment_link: str | None = None
    payment_id: str | None = None
    notes: str | None = None
    whatsapp_sent: bool = False
    dispatched_on: datetime | None = None
    tracking_number: str | None = None
    estimated_delivery: str | None = None
    created_by: str | None = None
    last_updated: datetime | None = None

    notifications: list[NotificationRecord] = Field(default_factory=list)
    audit_log: list[AuditEntry] = Field(default_factory=list)
    version: int = Field(default=1, ge=1, description="Optimistic concurrency counter")

    def was_notified(self, intent: NotificationIntent) -> bool:
        """Whether a message for this intent was already delivered."""
        return any(n.intent == intent and n.delivered for n in self.notifications)

    @property
    def total_cost(self) -> Decimal | None:
        """parts_cost + freight_cost when both are set."""
        if self.parts_cost is None or self.freight_cost is None:
            return None
        return self.parts_cost + self.freight_cost


class RequestCreate(BaseModel):
    """Data submitted through the public intake form."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {
                    "customer_name": "Ahmed Al-Rashid",
                    "phone_number": "+966551234567",
                    "email": "ahmed@example.com",
                    "vehicle_estamra": "ABC123",
                    "vin_number": "KMHXX00XXXX000001",
                    "part_name": "Front brake pads for Hyundai Sonata 2022",
                }
            ]
        },
    )

    request_id: str | None = Field(default=None, description="Optional caller-supplied ID")
    customer_name: str = Field(..., min_length=1, max_length=200)
    phone_number: str = Field(..., min_length=5, max_length=32)
    email: EmailStr
    vehicle_estamra: str = Field(..., min_length=1, max_length=64)
    vin_number: str = Field(..., min_length=1, max_length=32)
    part_name: str = Field(..., min_length=1, max_length=500)
    part_photo_url: str | None = None
    created_by: str | None = None


class RequestUpdate(BaseModel):
    """Partial update restricted to the whitelisted fields."""

    model_config = ConfigDict(extra="forbid")

    status: RequestStatus | None = None
    price: Money | None = Field(default=None, ge=0)
    parts_cost: Money | None = Field(default=None, ge=0)
    freight_cost: Money | None = Field(default=None, ge=0)
    payment_link: str | None = None
    payment_status: PaymentStatus | None = None
    notes: str | None = None
    whatsapp_sent: bool | None = None
    dispatched_on: datetime | None = None
    tracking_number: str | None = None


class RequestFilter(BaseModel):
    """List filter. A None field matches everything on that dimension."""

    search: str | None = None
    status: RequestStatus | None = None
    payment_status: PaymentStatus | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    sort_by: SortField = SortField.TIMESTAMP
    sort_order: SortOrder = SortOrder.DESC
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class RequestPage(BaseModel):
    """One page of list results."""

    data: list[SparePartRequest]
    total: int
    limit: int
    offset: int


class DashboardStats(BaseModel):
    """Headline counts for the staff dashboard."""

    total_requests: int
    pending_requests: int
    pending_payments: int
    dispatched_orders: int
