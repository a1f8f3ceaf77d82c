"""Spare-part request endpoints.

Provides REST endpoints for:
- Intake (public form submission)
- Listing, filtering and sorting requests for the staff dashboard
- Partial updates of whitelisted fields
- Workflow transitions (availability, payment link, processing, dispatch)
- Customer notifications and payment status polling

Mutating endpoints accept an optional `expected_version` query parameter.
A stale version is rejected with 409 instead of overwriting a newer write.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from starlette.status import HTTP_201_CREATED

from parts_api.dependencies import get_request_store, get_workflow_service
from parts_api.models.common import ApiResponse, SuccessMessage
from parts_api.models.requests import (
    AvailabilityBody,
    DispatchBody,
    NotAvailableBody,
    NotificationBody,
    NotificationSent,
    OverridePaidBody,
    PaymentSync,
    RequestListResponse,
)
from parts_shared.models import (
    DashboardStats,
    ErrorCode,
    PartsDeskError,
    PaymentStatus,
    RequestCreate,
    RequestFilter,
    RequestStatus,
    RequestUpdate,
    SortField,
    SortOrder,
    SparePartRequest,
)
from parts_shared.services.request_store import RequestStore
from parts_shared.services.workflow import WorkflowService
from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["requests"])

ExpectedVersion = Query(
    default=None,
    ge=1,
    description="Reject the change with 409 unless the stored version matches",
)


@router.post(
    "/requests",
    summary="Submit a spare-part request",
    description="""
Create a request from the public intake form.

The request starts in `Pending` with payment status `Pending`. A request ID
is generated unless one is supplied; a supplied ID that already exists is
rejected with 409.
""",
    response_model=ApiResponse[SparePartRequest],
    status_code=HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid form data"},
        409: {"description": "Request ID already exists"},
    },
)
async def create_request(
    body: RequestCreate,
    store: RequestStore = Depends(get_request_store),
) -> ApiResponse[SparePartRequest]:
    request = store.create(body)
    return ApiResponse(data=request, message="Request submitted")


@router.get(
    "/requests",
    summary="List requests",
    description="""
Filter, sort and page requests.

`search` matches customer name, VIN, part name and request ID
(case-insensitive). Date bounds are inclusive and compared in UTC. Sorting is
stable; ties keep timestamp order.
""",
    response_model=RequestListResponse,
)
async def list_requests(
    search: str | None = Query(default=None, max_length=200),
    status: RequestStatus | None = Query(default=None),
    payment_status: PaymentStatus | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    sort_by: SortField = Query(default=SortField.TIMESTAMP),
    sort_order: SortOrder = Query(default=SortOrder.DESC),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: RequestStore = Depends(get_request_store),
) -> RequestListResponse:
    page = store.list(
        RequestFilter(
            search=search,
            status=status,
            payment_status=payment_status,
            date_from=date_from,
            date_to=date_to,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
    )
    return RequestListResponse(
        data=page.data,
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get(
    "/dashboard/stats",
    summary="Dashboard counts",
    response_model=ApiResponse[DashboardStats],
)
async def dashboard_stats(
    store: RequestStore = Depends(get_request_store),
) -> ApiResponse[DashboardStats]:
    return ApiResponse(data=store.stats())


@router.get(
    "/requests/{request_id}",
    summary="Get request",
    response_model=ApiResponse[SparePartRequest],
    responses={404: {"description": "Request not found"}},
)
async def get_request(
    request_id: str,
    store: RequestStore = Depends(get_request_store),
) -> ApiResponse[SparePartRequest]:
    return ApiResponse(data=store.get_or_raise(request_id))


@router.patch(
    "/requests/{request_id}",
    summary="Update request",
    description="""
Partially update whitelisted fields.

A `status` change runs the same transition as the dedicated endpoint, so
side effects (payment link, notifications) happen exactly as they would
there. `Paid` can only be reached through a confirmed payment or
`/override-paid`.
""",
    response_model=ApiResponse[SparePartRequest],
    responses={
        400: {"description": "Field not updatable or invalid value"},
        404: {"description": "Request not found"},
        409: {"description": "Invalid transition or stale version"},
    },
)
async def update_request(
    request_id: str,
    body: RequestUpdate,
    expected_version: int | None = ExpectedVersion,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[SparePartRequest]:
    request = workflow.apply_update(request_id, body, expected_version=expected_version)
    return ApiResponse(data=request, message="Request updated")


@router.delete(
    "/requests/{request_id}",
    summary="Delete request",
    response_model=SuccessMessage,
    responses={404: {"description": "Request not found"}},
)
async def delete_request(
    request_id: str,
    store: RequestStore = Depends(get_request_store),
) -> SuccessMessage:
    if not store.delete(request_id):
        raise PartsDeskError(ErrorCode.REQUEST_NOT_FOUND, {"request_id": request_id})
    logger.info("Deleted request %s", request_id)
    return SuccessMessage(message=f"Request {request_id} deleted")


# === Workflow transitions ===


@router.post(
    "/requests/{request_id}/availability",
    summary="Mark available",
    description="Price a pending request and create its payment session.",
    response_model=ApiResponse[SparePartRequest],
    responses={
        400: {"description": "Total must be greater than zero"},
        409: {"description": "Request is not Pending"},
        502: {"description": "Payment gateway error"},
    },
)
async def mark_available(
    request_id: str,
    body: AvailabilityBody,
    expected_version: int | None = ExpectedVersion,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[SparePartRequest]:
    request = workflow.mark_available(
        request_id,
        body.parts_cost,
        body.freight_cost,
        expected_version=expected_version,
    )
    return ApiResponse(data=request, message="Payment link created")


@router.post(
    "/requests/{request_id}/not-available",
    summary="Mark not available",
    response_model=ApiResponse[SparePartRequest],
)
async def mark_not_available(
    request_id: str,
    body: NotAvailableBody | None = None,
    expected_version: int | None = ExpectedVersion,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[SparePartRequest]:
    request = workflow.mark_not_available(
        request_id,
        notes=body.notes if body else None,
        expected_version=expected_version,
    )
    return ApiResponse(data=request)


@router.post(
    "/requests/{request_id}/send-payment-link",
    summary="Send payment link",
    description="Deliver the payment link to the customer and move to `Payment Sent`.",
    response_model=ApiResponse[SparePartRequest],
    responses={502: {"description": "Message could not be delivered"}},
)
async def send_payment_link(
    request_id: str,
    expected_version: int | None = ExpectedVersion,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[SparePartRequest]:
    request = workflow.send_payment_link(request_id, expected_version=expected_version)
    return ApiResponse(data=request, message="Payment link sent")


@router.post(
    "/requests/{request_id}/reissue-payment-link",
    summary="Reissue payment link",
    description="Replace a failed or expired payment session. Status is unchanged.",
    response_model=ApiResponse[SparePartRequest],
    responses={409: {"description": "No open payment, or the current link is still valid"}},
)
async def reissue_payment_link(
    request_id: str,
    expected_version: int | None = ExpectedVersion,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[SparePartRequest]:
    request = workflow.reissue_payment_link(request_id, expected_version=expected_version)
    return ApiResponse(data=request, message="Payment link reissued")


@router.post(
    "/requests/{request_id}/processing",
    summary="Start processing",
    response_model=ApiResponse[SparePartRequest],
)
async def start_processing(
    request_id: str,
    expected_version: int | None = ExpectedVersion,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[SparePartRequest]:
    request = workflow.start_processing(request_id, expected_version=expected_version)
    return ApiResponse(data=request)


@router.post(
    "/requests/{request_id}/dispatch",
    summary="Dispatch order",
    description="Record shipment, stamp `dispatched_on` and notify the customer.",
    response_model=ApiResponse[SparePartRequest],
)
async def dispatch_request(
    request_id: str,
    body: DispatchBody,
    expected_version: int | None = ExpectedVersion,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[SparePartRequest]:
    request = workflow.dispatch(
        request_id,
        body.tracking_number,
        estimated_delivery=body.estimated_delivery,
        expected_version=expected_version,
    )
    return ApiResponse(data=request, message="Order dispatched")


@router.post(
    "/requests/{request_id}/override-paid",
    summary="Confirm payment manually",
    description="""
Mark a request `Paid` without a gateway event.

For payments received outside the gateway. The actor and reason are stored
in the request's audit log.
""",
    response_model=ApiResponse[SparePartRequest],
)
async def override_paid(
    request_id: str,
    body: OverridePaidBody,
    expected_version: int | None = ExpectedVersion,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[SparePartRequest]:
    request = workflow.override_paid(
        request_id,
        actor=body.actor,
        reason=body.reason,
        expected_version=expected_version,
    )
    return ApiResponse(data=request, message="Payment confirmed manually")


@router.post(
    "/requests/{request_id}/notifications",
    summary="Send customer notification",
    response_model=ApiResponse[NotificationSent],
    responses={
        400: {"description": "Request lacks fields the message needs"},
        502: {"description": "Message could not be delivered"},
    },
)
async def send_notification(
    request_id: str,
    body: NotificationBody,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[NotificationSent]:
    request, record = workflow.send_notification(request_id, body.intent)
    return ApiResponse(data=NotificationSent(request=request, notification=record))


@router.post(
    "/requests/{request_id}/sync-payment",
    summary="Poll payment status",
    description="Fetch the current session from the gateway and apply a resolved outcome.",
    response_model=ApiResponse[PaymentSync],
    responses={404: {"description": "Request has no payment session"}},
)
async def sync_payment(
    request_id: str,
    workflow: WorkflowService = Depends(get_workflow_service),
) -> ApiResponse[PaymentSync]:
    request, session = workflow.sync_payment_status(request_id)
    return ApiResponse(data=PaymentSync(request=request, session=session))
