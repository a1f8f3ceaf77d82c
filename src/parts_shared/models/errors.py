"""Standard error codes for the spare-parts desk.

Every service and route raises PartsDeskError with one of these codes so the
API layer can produce a consistent ErrorResponse body and HTTP status.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes."""

    # Request errors (ERR_REQ_001-ERR_REQ_005)
    REQUEST_NOT_FOUND = "ERR_REQ_001"
    INVALID_TRANSITION = "ERR_REQ_002"
    CONCURRENT_UPDATE = "ERR_REQ_003"
    FIELD_NOT_UPDATABLE = "ERR_REQ_004"
    DUPLICATE_REQUEST_ID = "ERR_REQ_005"

    # Validation
    VALIDATION_FAILED = "ERR_VALIDATION"

    # Payment errors (ERR_PAY_001-ERR_PAY_006)
    PAYMENT_NOT_FOUND = "ERR_PAY_001"
    GATEWAY_ERROR = "ERR_PAY_002"
    INVALID_AMOUNT = "ERR_PAY_003"
    INVALID_WEBHOOK_SIGNATURE = "ERR_PAY_004"
    INVALID_WEBHOOK_PAYLOAD = "ERR_PAY_005"
    SIMULATION_NOT_ALLOWED = "ERR_PAY_006"

    # Notification errors
    NOTIFICATION_FAILED = "ERR_NOTIFY_001"

    # Configuration
    CONFIGURATION_ERROR = "ERR_CONFIG"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.REQUEST_NOT_FOUND: "Request not found",
    ErrorCode.INVALID_TRANSITION: "Status transition is not allowed",
    ErrorCode.CONCURRENT_UPDATE: "Request was modified by another operation",
    ErrorCode.FIELD_NOT_UPDATABLE: "One or more fields cannot be updated",
    ErrorCode.DUPLICATE_REQUEST_ID: "A request with this ID already exists",
    ErrorCode.VALIDATION_FAILED: "Request validation failed",
    ErrorCode.PAYMENT_NOT_FOUND: "Payment not found",
    ErrorCode.GATEWAY_ERROR: "Payment gateway error occurred",
    ErrorCode.INVALID_AMOUNT: "Payment amount must be greater than zero",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.INVALID_WEBHOOK_PAYLOAD: "Invalid webhook payload",
    ErrorCode.SIMULATION_NOT_ALLOWED: "Simulation not allowed in production",
    ErrorCode.NOTIFICATION_FAILED: "Customer notification could not be delivered",
    ErrorCode.CONFIGURATION_ERROR: "Service is misconfigured",
}

# Recovery suggestions for API clients
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.REQUEST_NOT_FOUND: "Verify the request ID",
    ErrorCode.INVALID_TRANSITION: "Check the current status before changing it",
    ErrorCode.CONCURRENT_UPDATE: "Reload the request and apply the change again",
    ErrorCode.FIELD_NOT_UPDATABLE: "Only send whitelisted fields consistent with the current status",
    ErrorCode.DUPLICATE_REQUEST_ID: "Submit without a request ID to have one assigned",
    ErrorCode.VALIDATION_FAILED: "Check the request parameters and try again",
    ErrorCode.PAYMENT_NOT_FOUND: "Verify the payment ID",
    ErrorCode.GATEWAY_ERROR: "Try again or re-issue the payment link",
    ErrorCode.INVALID_AMOUNT: "Set parts and freight cost before issuing a link",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.INVALID_WEBHOOK_PAYLOAD: "Check the webhook body format",
    ErrorCode.SIMULATION_NOT_ALLOWED: "Use a sandbox environment",
    ErrorCode.NOTIFICATION_FAILED: "Check the customer phone number and messaging configuration",
    ErrorCode.CONFIGURATION_ERROR: "Check environment configuration",
}


class ErrorResponse(BaseModel):
    """Standard error body returned by the API."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class PartsDeskError(Exception):
    """Exception raised by request, workflow and payment operations.

    Caught by the API exception handlers and converted to an ErrorResponse.
    """

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.details)


# Stripe error code to user-friendly message mapping
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    "amount_too_small": "The payment amount is below the minimum allowed.",
    "amount_too_large": "The payment amount exceeds the maximum allowed.",
    "api_key_expired": "Payment provider credentials have expired.",
    "email_invalid": "The customer email address is invalid.",
    "parameter_invalid_integer": "The payment amount is invalid.",
    "processing_error": "A processing error occurred. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
}


def get_user_friendly_stripe_message(
    stripe_error_code: Optional[str],
    default_message: str = "Payment link could not be created. Please try again.",
) -> str:
    """Get a user-friendly message for a Stripe error code.

    Args:
        stripe_error_code: The Stripe error code (e.g., 'amount_too_small').
        default_message: Message to use if error code is unknown.

    Returns:
        User-friendly error message.
    """
    if stripe_error_code and stripe_error_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[stripe_error_code]
    return default_message
