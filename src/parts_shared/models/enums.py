"""Enumeration types for spare-part request and payment models."""

from enum import Enum


class RequestStatus(str, Enum):
    """Workflow status of a spare-part request."""

    PENDING = "Pending"
    AVAILABLE = "Available"
    NOT_AVAILABLE = "Not Available"
    PAYMENT_SENT = "Payment Sent"
    PAID = "Paid"
    PROCESSING = "Processing"
    DISPATCHED = "Dispatched"


class PaymentStatus(str, Enum):
    """Payment status of a request as last reported by the gateway."""

    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"


class SessionStatus(str, Enum):
    """Canonical status of a gateway payment session."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class WebhookEventType(str, Enum):
    """Canonical webhook events understood by the state machine."""

    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_EXPIRED = "payment.expired"


class NotificationIntent(str, Enum):
    """Customer-facing message intents."""

    AVAILABILITY = "availability"
    PAYMENT_LINK = "payment_link"
    PAYMENT_CONFIRMED = "payment_confirmed"
    DISPATCHED = "dispatched"


class GatewayMode(str, Enum):
    """Which payment gateway variant is serving requests."""

    STRIPE = "stripe"
    SANDBOX = "sandbox"
    MOCK = "mock"  # sandbox standing in for an unconfigured real gateway


class SortField(str, Enum):
    """Fields the request list can be sorted by."""

    TIMESTAMP = "timestamp"
    CUSTOMER_NAME = "customer_name"
    STATUS = "status"
    PRICE = "price"


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"
