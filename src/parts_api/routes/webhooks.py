"""Webhook endpoint for payment gateway events.

Accepts:
- Stripe events (checkout.session.completed, checkout.session.expired,
  payment_intent.payment_failed), signed in the Stripe-Signature header
- Sandbox events (payment.completed, payment.failed, payment.expired),
  signed with HMAC-SHA256 in the X-Webhook-Signature header

This endpoint does NOT require authentication; deliveries are trusted only
after signature verification.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_200_OK,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from parts_api.dependencies import get_payment_gateway, get_webhook_handler
from parts_api.models.payments import WebhookResponse
from parts_shared.models import ErrorCode, PartsDeskError
from parts_shared.services.gateway import PaymentGateway
from parts_shared.services.webhook_handler import WebhookHandler
from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

SIGNATURE_HEADERS = ("Stripe-Signature", "X-Webhook-Signature")


@router.post(
    "/payments/webhook",
    summary="Payment gateway webhook",
    description="""
Receive a payment event from the configured gateway.

**Responses:**
- 200 for processed events, including duplicates and unhandled event types
- 400 for an invalid signature or malformed payload (nothing is changed)
- 500 when processing fails; the gateway should retry
- 503 when the gateway itself could not be reached while reading the event;
  nothing was recorded and the delivery should be retried

Redelivered events are recognized by event ID and acknowledged without
reprocessing.
""",
    response_model=WebhookResponse,
    status_code=HTTP_200_OK,
    responses={
        400: {"description": "Invalid signature or payload"},
        500: {"description": "Internal processing error"},
        503: {"description": "Payment gateway unreachable, retry the delivery"},
    },
)
async def payment_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_payment_gateway),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse | JSONResponse:
    payload = await request.body()
    signature = next(
        (request.headers[h] for h in SIGNATURE_HEADERS if request.headers.get(h)),
        None,
    )

    result = gateway.process_webhook(payload, signature, handler)

    if result.processing_result == "invalid_signature":
        raise PartsDeskError(ErrorCode.INVALID_WEBHOOK_SIGNATURE)
    if result.processing_result == "invalid_payload":
        raise PartsDeskError(ErrorCode.INVALID_WEBHOOK_PAYLOAD, {"reason": result.message})

    response = WebhookResponse(
        received=True,
        event_id=result.event_id,
        event_type=result.event_type,
        processing_result=result.processing_result,
        message=result.message,
    )
    if result.processing_result == "error":
        logger.error("Webhook %s failed: %s", result.event_id, result.message)
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json"),
        )
    if result.processing_result == "retry":
        return JSONResponse(
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response
