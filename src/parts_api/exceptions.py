"""FastAPI exception handlers for converting PartsDeskError to HTTP responses.

The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: validation, bad webhook signature or payload
- 403 Forbidden: sandbox-only operations in production
- 404 Not Found: unknown request or payment
- 409 Conflict: invalid transition, stale version, duplicate ID
- 502 Bad Gateway: payment gateway or messaging provider failure
- 500 Internal Server Error: misconfiguration

Usage:
    from parts_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from parts_api.models.common import ValidationErrorResponse
from parts_shared.models.errors import ErrorCode, PartsDeskError
from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)

# Map ErrorCode to HTTP status codes
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_FAILED: HTTP_400_BAD_REQUEST,
    ErrorCode.FIELD_NOT_UPDATABLE: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_AMOUNT: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_WEBHOOK_PAYLOAD: HTTP_400_BAD_REQUEST,
    ErrorCode.SIMULATION_NOT_ALLOWED: HTTP_403_FORBIDDEN,
    ErrorCode.REQUEST_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.PAYMENT_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_TRANSITION: HTTP_409_CONFLICT,
    ErrorCode.CONCURRENT_UPDATE: HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_REQUEST_ID: HTTP_409_CONFLICT,
    ErrorCode.GATEWAY_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.NOTIFICATION_FAILED: HTTP_502_BAD_GATEWAY,
    ErrorCode.CONFIGURATION_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """HTTP status for an ErrorCode, 400 when not explicitly mapped."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def parts_desk_error_handler(request: Request, exc: PartsDeskError) -> JSONResponse:
    """Convert PartsDeskError to an ErrorResponse body."""
    status_code = get_http_status_for_error(exc.code)
    if status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.code.value, exc.details)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code.value)

    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request validation failures as 400 with field-level detail."""
    return JSONResponse(
        status_code=HTTP_400_BAD_REQUEST,
        content=ValidationErrorResponse.from_errors(exc.errors()).model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(PartsDeskError, parts_desk_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
