"""Payment endpoints.

Provides REST endpoints for:
- Creating a payment link for a priced request
- Checking a payment session's status
- Cost breakdowns and public gateway configuration
- Resolving sandbox sessions with a simulated, signed webhook

Webhook delivery lives in routes/webhooks.py.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from starlette.status import HTTP_201_CREATED

from parts_api.dependencies import (
    get_app_settings,
    get_notification_dispatcher,
    get_payment_gateway,
    get_webhook_handler,
    get_workflow_service,
)
from parts_api.models.common import ApiResponse
from parts_api.models.payments import (
    BreakdownRequest,
    PaymentCreateData,
    PaymentCreateRequest,
    SimulateData,
    SimulateRequest,
)
from parts_shared.config import Settings
from parts_shared.models import (
    ErrorCode,
    GatewayConfig,
    NotificationIntent,
    PartsDeskError,
    PaymentBreakdown,
    PaymentSession,
)
from parts_shared.services.gateway import PaymentGateway
from parts_shared.services.notifications import NotificationDispatcher, whatsapp_link
from parts_shared.services.sandbox_gateway import SandboxGateway, simulate_outcome
from parts_shared.services.webhook_handler import WebhookHandler
from parts_shared.services.workflow import WorkflowService
from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["payments"])


@router.post(
    "/payments/create",
    summary="Create payment link",
    description="""
Price a pending request and create a checkout session for it.

`order_id` is the request ID. Customer name, email and phone come from the
stored request. The response carries the WhatsApp message the customer will
receive and a click-to-chat link for sending it manually.

**Errors:**
- 400 when parts + freight is not greater than zero
- 404 when the request does not exist
- 409 when the request is no longer Pending
- 502 when the gateway refuses the session (reason in `details`)
""",
    response_model=ApiResponse[PaymentCreateData],
    status_code=HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid amount"},
        404: {"description": "Request not found"},
        409: {"description": "Request already priced"},
        502: {"description": "Payment gateway error"},
    },
)
async def create_payment(
    body: PaymentCreateRequest,
    workflow: WorkflowService = Depends(get_workflow_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ApiResponse[PaymentCreateData]:
    request = workflow.mark_available(body.order_id, body.parts_cost, body.freight_cost)
    message = dispatcher.render(request, NotificationIntent.PAYMENT_LINK)

    return ApiResponse(
        data=PaymentCreateData(
            payment_id=request.payment_id or "",
            payment_url=request.payment_link or "",
            expires_at=_session_expiry(workflow.gateway, request.payment_id),
            breakdown=workflow.gateway.payment_breakdown(body.parts_cost, body.freight_cost),
            whatsapp_message=message,
            whatsapp_link=whatsapp_link(request.phone_number, message),
        ),
        message="Payment link created",
    )


def _session_expiry(gateway: PaymentGateway, payment_id: str | None) -> datetime | None:
    if not payment_id:
        return None
    session = gateway.get_payment_status(payment_id)
    return session.expires_at if session else None


@router.get(
    "/payments/status/{payment_id}",
    summary="Get payment status",
    description="""
Current status of a payment session as the gateway reports it.

A pending session past its expiry is reported as `expired`. A completed
session is never reported as expired.
""",
    response_model=ApiResponse[PaymentSession],
    responses={404: {"description": "Payment not found"}},
)
async def get_payment_status(
    payment_id: str,
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> ApiResponse[PaymentSession]:
    session = gateway.get_payment_status(payment_id)
    if session is None:
        raise PartsDeskError(ErrorCode.PAYMENT_NOT_FOUND, {"payment_id": payment_id})
    return ApiResponse(data=session)


@router.post(
    "/payments/breakdown",
    summary="Compute cost breakdown",
    response_model=ApiResponse[PaymentBreakdown],
)
async def payment_breakdown(
    body: BreakdownRequest,
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> ApiResponse[PaymentBreakdown]:
    return ApiResponse(data=gateway.payment_breakdown(body.parts_cost, body.freight_cost))


@router.get(
    "/payments/config",
    summary="Public gateway configuration",
    description="Gateway mode, currency and publishable key for the checkout frontend.",
    response_model=ApiResponse[GatewayConfig],
)
async def payment_config(
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> ApiResponse[GatewayConfig]:
    return ApiResponse(data=gateway.public_config())


@router.post(
    "/payments/simulate/{payment_id}",
    summary="Simulate payment outcome (sandbox only)",
    description="""
Resolve a sandbox session by delivering a signed webhook through the normal
webhook pipeline.

Without an explicit outcome, the session ID's hash decides: about 60%
completed, 20% still pending (no webhook), 15% failed, 5% expired.

Refused in production and when a real gateway is configured.
""",
    response_model=ApiResponse[SimulateData],
    responses={
        403: {"description": "Simulation not allowed"},
        404: {"description": "Payment not found"},
    },
)
async def simulate_payment(
    payment_id: str,
    body: SimulateRequest | None = None,
    settings: Settings = Depends(get_app_settings),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> ApiResponse[SimulateData]:
    if settings.is_production or not isinstance(gateway, SandboxGateway):
        raise PartsDeskError(
            ErrorCode.SIMULATION_NOT_ALLOWED,
            {"environment": settings.environment, "gateway": gateway.mode.value},
        )

    outcome = (body.outcome if body else None) or simulate_outcome(payment_id)
    try:
        delivery = gateway.build_webhook(payment_id, outcome)
    except KeyError as e:
        raise PartsDeskError(ErrorCode.PAYMENT_NOT_FOUND, {"payment_id": payment_id}) from e
    except RuntimeError as e:
        raise PartsDeskError(ErrorCode.CONFIGURATION_ERROR, {"reason": str(e)}) from e

    if delivery is None:
        logger.info("Simulated payment %s left pending", payment_id)
        return ApiResponse(data=SimulateData(payment_id=payment_id, outcome=outcome))

    payload, signature = delivery
    result = gateway.process_webhook(payload, signature, handler)
    logger.info("Simulated payment %s -> %s (%s)", payment_id, outcome.value, result.processing_result)
    return ApiResponse(data=SimulateData(payment_id=payment_id, outcome=outcome, webhook=result))
