"""Pydantic models for spare-part requests, payments and webhooks."""

from .enums import (
    GatewayMode,
    NotificationIntent,
    PaymentStatus,
    RequestStatus,
    SessionStatus,
    SortField,
    SortOrder,
    WebhookEventType,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    STRIPE_ERROR_MESSAGES,
    ErrorCode,
    ErrorResponse,
    PartsDeskError,
    get_user_friendly_stripe_message,
)
from .payment import (
    GatewayConfig,
    Money,
    PaymentBreakdown,
    PaymentOrder,
    PaymentResult,
    PaymentSession,
)
from .request import (
    UPDATABLE_FIELDS,
    AuditEntry,
    DashboardStats,
    NotificationRecord,
    RequestCreate,
    RequestFilter,
    RequestPage,
    RequestUpdate,
    SparePartRequest,
)
from .webhook import WebhookEventLog, WebhookPayload, WebhookResult

__all__ = [
    # Enums
    "GatewayMode",
    "NotificationIntent",
    "PaymentStatus",
    "RequestStatus",
    "SessionStatus",
    "SortField",
    "SortOrder",
    "WebhookEventType",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "STRIPE_ERROR_MESSAGES",
    "ErrorCode",
    "ErrorResponse",
    "PartsDeskError",
    "get_user_friendly_stripe_message",
    # Payment
    "GatewayConfig",
    "Money",
    "PaymentBreakdown",
    "PaymentOrder",
    "PaymentResult",
    "PaymentSession",
    # Request
    "UPDATABLE_FIELDS",
    "AuditEntry",
    "DashboardStats",
    "NotificationRecord",
    "RequestCreate",
    "RequestFilter",
    "RequestPage",
    "RequestUpdate",
    "SparePartRequest",
    # Webhook
    "WebhookEventLog",
    "WebhookPayload",
    "WebhookResult",
]
