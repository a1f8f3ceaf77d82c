"""Request tracing middleware.

Every request runs under a correlation ID taken from X-Correlation-ID, or
from the Lambda request ID when running behind API Gateway, or generated.
The ID is echoed on the response and each request is logged with its
status and duration.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from parts_shared.utils.logging import clear_correlation_id, get_logger, set_correlation_id

CORRELATION_ID_HEADER = "X-Correlation-ID"

logger = get_logger(__name__)


def _lambda_request_id(request: Request) -> str | None:
    # Mangum puts the Lambda context in the ASGI scope
    context = request.scope.get("aws.context")
    return getattr(context, "aws_request_id", None)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = set_correlation_id(
            request.headers.get(CORRELATION_ID_HEADER) or _lambda_request_id(request)
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            logger.info(
                "%s %s -> %d",
                request.method,
                request.url.path,
                response.status_code,
                extra={"duration_ms": round((time.perf_counter() - started) * 1000, 1)},
            )
            return response
        finally:
            clear_correlation_id()
