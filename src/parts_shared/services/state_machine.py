"""Request status rules.

Status moves forward along Pending -> Available -> Payment Sent -> Paid ->
Processing -> Dispatched, with Not Available as the only side branch
(reachable from Pending or Available, terminal).
"""

from parts_shared.models import (
    ErrorCode,
    PartsDeskError,
    PaymentStatus,
    RequestStatus,
    SparePartRequest,
)

TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.AVAILABLE, RequestStatus.NOT_AVAILABLE}),
    RequestStatus.AVAILABLE: frozenset({RequestStatus.PAYMENT_SENT, RequestStatus.NOT_AVAILABLE}),
    RequestStatus.NOT_AVAILABLE: frozenset(),
    RequestStatus.PAYMENT_SENT: frozenset({RequestStatus.PAID}),
    RequestStatus.PAID: frozenset({RequestStatus.PROCESSING}),
    RequestStatus.PROCESSING: frozenset({RequestStatus.DISPATCHED}),
    RequestStatus.DISPATCHED: frozenset(),
}

# Main line in workflow order; Not Available is off the line
MAIN_LINE: tuple[RequestStatus, ...] = (
    RequestStatus.PENDING,
    RequestStatus.AVAILABLE,
    RequestStatus.PAYMENT_SENT,
    RequestStatus.PAID,
    RequestStatus.PROCESSING,
    RequestStatus.DISPATCHED,
)

PAID_OR_LATER = frozenset(MAIN_LINE[MAIN_LINE.index(RequestStatus.PAID) :])
PRICED = frozenset(MAIN_LINE[MAIN_LINE.index(RequestStatus.AVAILABLE) :])
LINK_SENT = frozenset(MAIN_LINE[MAIN_LINE.index(RequestStatus.PAYMENT_SENT) :])


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in TRANSITIONS[current]


def require_transition(request: SparePartRequest, *targets: RequestStatus) -> None:
    """Raise INVALID_TRANSITION unless the request may move to each target in turn."""
    current = request.status
    for target in targets:
        if not can_transition(current, target):
            raise PartsDeskError(
                ErrorCode.INVALID_TRANSITION,
                {
                    "request_id": request.request_id,
                    "from": current.value,
                    "to": target.value,
                    "allowed": sorted(s.value for s in TRANSITIONS[current]),
                },
            )
        current = target


def reconcile(request: SparePartRequest) -> list[str]:
    """Invariant violations in a request record; empty when consistent."""
    violations = []
    status = request.status

    total = request.total_cost
    if total is not None and request.price is not None and request.price != total:
        violations.append(f"price {request.price} != parts_cost + freight_cost {total}")

    if status in PRICED and request.price is None:
        violations.append(f"status {status.value} without a price")

    if status in LINK_SENT and not request.payment_link:
        violations.append(f"status {status.value} without a payment link")

    if status in PAID_OR_LATER and request.payment_status != PaymentStatus.PAID:
        violations.append(f"status {status.value} with payment_status {request.payment_status.value}")

    if request.payment_status == PaymentStatus.PAID and status not in PAID_OR_LATER:
        violations.append(f"payment_status Paid while status is {status.value}")

    if status == RequestStatus.DISPATCHED:
        if request.dispatched_on is None:
            violations.append("Dispatched without dispatched_on")
        if not request.tracking_number:
            violations.append("Dispatched without tracking_number")
    elif request.dispatched_on is not None:
        violations.append(f"dispatched_on set while status is {status.value}")

    if any(n.delivered for n in request.notifications) and not request.whatsapp_sent:
        violations.append("notification delivered but whatsapp_sent is false")

    return violations
