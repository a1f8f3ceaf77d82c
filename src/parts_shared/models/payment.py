"""Payment session models shared by every gateway implementation.

Amounts are decimal currency units (150.00), never minor units. Conversion
to cents happens only inside gateways whose wire format needs it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from .enums import GatewayMode, SessionStatus

# Whole cents only; emitted as JSON numbers rather than strings.
Money = Annotated[
    Decimal,
    Field(decimal_places=2),
    PlainSerializer(float, return_type=float, when_used="json"),
]


class PaymentOrder(BaseModel):
    """Input to PaymentGateway.create_payment."""

    model_config = ConfigDict(frozen=True)

    order_id: str = Field(..., min_length=1, description="Request ID used for reconciliation")
    parts_cost: Money = Field(..., ge=0)
    freight_cost: Money = Field(..., ge=0)
    currency: str = Field(default="SAR", min_length=3, max_length=3)
    customer_name: str
    customer_email: str
    customer_phone: str | None = None
    description: str = Field(default="", description="Part name shown on the checkout page")
    idempotency_key: str | None = Field(
        default=None,
        description="Repeated creates with the same key return the same session",
    )

    @property
    def amount(self) -> Decimal:
        """Total charged amount."""
        return self.parts_cost + self.freight_cost


class PaymentResult(BaseModel):
    """Result of creating a payment session.

    On failure only `success` and `error` are set.
    """

    success: bool
    payment_id: str | None = None
    payment_url: str | None = None
    expires_at: datetime | None = None
    checkout_session_id: str | None = None
    amount: Money | None = None
    currency: str | None = None
    error: str | None = None


class PaymentSession(BaseModel):
    """A gateway's view of one checkout attempt."""

    payment_id: str
    status: SessionStatus
    amount: Money
    currency: str
    order_id: str | None = None
    checkout_session_id: str | None = None
    payment_url: str | None = None
    expires_at: datetime | None = None
    transaction_id: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None

    @property
    def is_resolved(self) -> bool:
        """True once the session reached a terminal status."""
        return self.status != SessionStatus.PENDING


class PaymentBreakdown(BaseModel):
    """Cost breakdown shown to customers."""

    parts_cost: Money
    freight_cost: Money
    total_cost: Money
    currency: str


class GatewayConfig(BaseModel):
    """Public gateway configuration for the checkout frontend."""

    mode: GatewayMode
    publishable_key: str | None = None
    currency: str
    supported_payment_methods: list[str] = Field(default_factory=lambda: ["card"])
