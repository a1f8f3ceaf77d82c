"""Workflow service: every status change of a request goes through here.

Each operation loads the request, checks the transition, performs the
side effect (payment session, customer notification) and saves with an
optimistic version check. reconcile() runs after every transition and any
violation is logged; a PATCH that would introduce a violation is refused
before it is written.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from parts_shared.models import (
    AuditEntry,
    ErrorCode,
    NotificationIntent,
    NotificationRecord,
    PartsDeskError,
    PaymentOrder,
    PaymentResult,
    PaymentSession,
    PaymentStatus,
    RequestStatus,
    RequestUpdate,
    SessionStatus,
    SparePartRequest,
    WebhookEventType,
    WebhookPayload,
)
from parts_shared.services.gateway import PaymentGateway
from parts_shared.services.notifications import NotificationDispatcher
from parts_shared.services.request_store import RequestStore, apply_changes
from parts_shared.services.state_machine import (
    PAID_OR_LATER,
    reconcile,
    require_transition,
)
from parts_shared.utils.logging import get_logger, log_payment_operation

logger = get_logger(__name__)

COST_FIELDS = frozenset({"price", "parts_cost", "freight_cost"})
# Written by transitions; a PATCH that changes status may not also set them
TRANSITION_FIELDS = frozenset({"payment_link", "payment_status", "whatsapp_sent", "dispatched_on"})
CENT = Decimal("0.01")


def _require_whole_cents(**amounts: Decimal) -> None:
    """Raise VALIDATION_FAILED for amounts carrying fractions of a cent."""
    fractional = sorted(name for name, value in amounts.items() if value != value.quantize(CENT))
    if fractional:
        raise PartsDeskError(
            ErrorCode.VALIDATION_FAILED,
            {"fields": fractional, "reason": "amounts must be whole cents"},
        )


class WorkflowService:
    """Drives requests through the status state machine."""

    def __init__(
        self,
        store: RequestStore,
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._store = store
        self.gateway = gateway
        self._dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, request_id: str, expected_version: int | None = None) -> SparePartRequest:
        request = self._store.get_or_raise(request_id)
        if expected_version is not None and expected_version != request.version:
            raise PartsDeskError(
                ErrorCode.CONCURRENT_UPDATE,
                {"request_id": request_id, "expected": expected_version, "actual": request.version},
            )
        return request

    def _save(
        self,
        request: SparePartRequest,
        changes: Mapping[str, Any],
        action: str,
    ) -> SparePartRequest:
        saved = self._store.save(
            request.model_copy(update=dict(changes)),
            expected_version=request.version,
        )
        if saved.status != request.status:
            logger.info(
                "Request %s: %s -> %s (%s)",
                saved.request_id,
                request.status.value,
                saved.status.value,
                action,
                extra={"order_id": saved.request_id, "action": action},
            )

        violations = reconcile(saved)
        if violations:
            logger.error(
                "Request %s violates invariants after %s: %s",
                saved.request_id,
                action,
                "; ".join(violations),
                extra={"order_id": saved.request_id, "action": action},
            )
        return saved

    @staticmethod
    def _with_record(request: SparePartRequest, record: NotificationRecord) -> dict[str, Any]:
        changes: dict[str, Any] = {"notifications": [*request.notifications, record]}
        if record.delivered:
            changes["whatsapp_sent"] = True
        return changes

    def _notify_after(self, request: SparePartRequest, intent: NotificationIntent) -> SparePartRequest:
        """Send a follow-up message once the transition itself is saved.

        Failures are logged; the transition stands.
        """
        if request.was_notified(intent):
            return request
        try:
            record = self._dispatcher.dispatch(request, intent)
            return self._save(request, self._with_record(request, record), f"notify_{intent.value}")
        except PartsDeskError as e:
            logger.error(
                "Notification %s for %s not recorded: %s %s",
                intent.value,
                request.request_id,
                e.code.value,
                e.details,
            )
            return request

    def _create_session(
        self,
        request: SparePartRequest,
        parts_cost: Decimal,
        freight_cost: Decimal,
    ) -> PaymentResult:
        if parts_cost + freight_cost <= 0:
            raise PartsDeskError(
                ErrorCode.INVALID_AMOUNT,
                {"parts_cost": str(parts_cost), "freight_cost": str(freight_cost)},
            )

        order = PaymentOrder(
            order_id=request.request_id,
            parts_cost=parts_cost,
            freight_cost=freight_cost,
            currency=self.gateway.currency,
            customer_name=request.customer_name,
            customer_email=request.email,
            customer_phone=request.phone_number,
            description=request.part_name,
            idempotency_key=f"{request.request_id}-v{request.version}",
        )
        result = self.gateway.create_payment(order)
        if not result.success:
            log_payment_operation(
                logger, "create_payment", order_id=request.request_id,
                amount=order.amount, error=result.error or "unknown gateway error",
            )
            raise PartsDeskError(
                ErrorCode.GATEWAY_ERROR,
                {"request_id": request.request_id, "reason": result.error},
            )
        return result

    # ------------------------------------------------------------------
    # Staff transitions
    # ------------------------------------------------------------------

    def mark_available(
        self,
        request_id: str,
        parts_cost: Decimal,
        freight_cost: Decimal,
        *,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """Pending -> Available: price the request and issue a payment link."""
        _require_whole_cents(parts_cost=parts_cost, freight_cost=freight_cost)
        request = self._load(request_id, expected_version)
        require_transition(request, RequestStatus.AVAILABLE)

        result = self._create_session(request, parts_cost, freight_cost)
        return self._save(
            request,
            {
                "status": RequestStatus.AVAILABLE,
                "parts_cost": parts_cost,
                "freight_cost": freight_cost,
                "price": parts_cost + freight_cost,
                "payment_link": result.payment_url,
                "payment_id": result.payment_id,
                "payment_status": PaymentStatus.PENDING,
            },
            "mark_available",
        )

    def mark_not_available(
        self,
        request_id: str,
        *,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """Pending/Available -> Not Available."""
        request = self._load(request_id, expected_version)
        require_transition(request, RequestStatus.NOT_AVAILABLE)

        changes: dict[str, Any] = {"status": RequestStatus.NOT_AVAILABLE}
        if notes:
            changes["notes"] = notes
        return self._save(request, changes, "mark_not_available")

    def send_payment_link(
        self,
        request_id: str,
        *,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """Available -> Payment Sent, once the link reaches the customer."""
        request = self._load(request_id, expected_version)
        require_transition(request, RequestStatus.PAYMENT_SENT)
        if request.payment_status == PaymentStatus.FAILED:
            raise PartsDeskError(
                ErrorCode.INVALID_TRANSITION,
                {"request_id": request_id, "reason": "payment session failed, reissue the link first"},
            )

        record = self._dispatcher.dispatch(request, NotificationIntent.PAYMENT_LINK)
        changes = self._with_record(request, record)
        if not record.delivered:
            self._save(request, changes, "send_payment_link_failed")
            raise PartsDeskError(ErrorCode.NOTIFICATION_FAILED, {"request_id": request_id})

        changes["status"] = RequestStatus.PAYMENT_SENT
        return self._save(request, changes, "send_payment_link")

    def reissue_payment_link(
        self,
        request_id: str,
        *,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """Replace a failed or expired payment session with a new one.

        Status is unchanged. A request already in Payment Sent gets the new
        link sent again.
        """
        request = self._load(request_id, expected_version)
        if request.status not in (RequestStatus.AVAILABLE, RequestStatus.PAYMENT_SENT):
            raise PartsDeskError(
                ErrorCode.INVALID_TRANSITION,
                {"request_id": request_id, "from": request.status.value, "reason": "no open payment"},
            )

        if request.payment_status != PaymentStatus.FAILED and request.payment_id:
            session = self.gateway.get_payment_status(request.payment_id)
            if session is not None and session.status == SessionStatus.PENDING:
                raise PartsDeskError(
                    ErrorCode.INVALID_TRANSITION,
                    {"request_id": request_id, "reason": "current payment link is still valid"},
                )

        result = self._create_session(request, request.parts_cost, request.freight_cost)
        reissued = self._save(
            request,
            {
                "payment_link": result.payment_url,
                "payment_id": result.payment_id,
                "payment_status": PaymentStatus.PENDING,
            },
            "reissue_payment_link",
        )

        if reissued.status != RequestStatus.PAYMENT_SENT:
            return reissued

        record = self._dispatcher.dispatch(reissued, NotificationIntent.PAYMENT_LINK)
        if not record.delivered:
            logger.warning("Reissued link for %s was not delivered", request_id)
        return self._save(reissued, self._with_record(reissued, record), "resend_payment_link")

    def start_processing(
        self,
        request_id: str,
        *,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """Paid -> Processing."""
        request = self._load(request_id, expected_version)
        require_transition(request, RequestStatus.PROCESSING)
        return self._save(request, {"status": RequestStatus.PROCESSING}, "start_processing")

    def dispatch(
        self,
        request_id: str,
        tracking_number: str | None = None,
        *,
        estimated_delivery: str | None = None,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """Processing -> Dispatched; stamps dispatched_on once."""
        request = self._load(request_id, expected_version)
        require_transition(request, RequestStatus.DISPATCHED)

        tracking_number = tracking_number or request.tracking_number
        if not tracking_number:
            raise PartsDeskError(
                ErrorCode.VALIDATION_FAILED,
                {"field": "tracking_number", "reason": "required to dispatch"},
            )

        changes: dict[str, Any] = {
            "status": RequestStatus.DISPATCHED,
            "tracking_number": tracking_number,
            "dispatched_on": request.dispatched_on or datetime.now(UTC),
        }
        if estimated_delivery:
            changes["estimated_delivery"] = estimated_delivery

        dispatched = self._save(request, changes, "dispatch")
        return self._notify_after(dispatched, NotificationIntent.DISPATCHED)

    def override_paid(
        self,
        request_id: str,
        *,
        actor: str,
        reason: str,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """Mark a request Paid without a gateway event, with an audit entry."""
        if not actor.strip() or not reason.strip():
            raise PartsDeskError(
                ErrorCode.VALIDATION_FAILED,
                {"fields": ["actor", "reason"], "reason": "override requires actor and reason"},
            )

        request = self._load(request_id, expected_version)
        if request.status not in (RequestStatus.AVAILABLE, RequestStatus.PAYMENT_SENT):
            raise PartsDeskError(
                ErrorCode.INVALID_TRANSITION,
                {"request_id": request_id, "from": request.status.value, "to": RequestStatus.PAID.value},
            )

        entry = AuditEntry(
            action="override_paid",
            actor=actor,
            reason=reason,
            at=datetime.now(UTC),
            from_status=request.status,
            to_status=RequestStatus.PAID,
        )
        logger.warning(
            "Manual payment override for %s by %s: %s",
            request_id,
            actor,
            reason,
            extra={"order_id": request_id, "actor": actor},
        )
        paid = self._save(
            request,
            {
                "status": RequestStatus.PAID,
                "payment_status": PaymentStatus.PAID,
                "audit_log": [*request.audit_log, entry],
            },
            "override_paid",
        )
        return self._notify_after(paid, NotificationIntent.PAYMENT_CONFIRMED)

    def send_notification(
        self,
        request_id: str,
        intent: NotificationIntent,
    ) -> tuple[SparePartRequest, NotificationRecord]:
        """Render and deliver a message for any intent, recording the attempt."""
        request = self._load(request_id)
        record = self._dispatcher.dispatch(request, intent)
        saved = self._save(request, self._with_record(request, record), f"notify_{intent.value}")
        if not record.delivered:
            raise PartsDeskError(ErrorCode.NOTIFICATION_FAILED, {"request_id": request_id})
        return saved, record

    def apply_update(
        self,
        request_id: str,
        update: RequestUpdate,
        *,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """PATCH semantics: plain fields are written, status goes through the machine.

        The whole change is checked against the loaded request before anything
        is written. A status change runs first, through the same operation as
        its dedicated endpoint, and the remaining fields are saved after it.
        """
        changes = update.model_dump(exclude_unset=True)
        target: RequestStatus | None = changes.pop("status", None)

        request = self._load(request_id, expected_version)
        if target == request.status:
            target = None

        candidate = self._check_field_changes(request, changes)
        if target is None:
            if not changes:
                return request
            return self._store.update(request_id, changes, expected_version=request.version)

        self._check_patch_target(request, candidate, target, changes)
        moved = self._patch_transition(candidate, target, request.version)

        rest = {
            field: getattr(candidate, field)
            for field in changes
            if getattr(moved, field) != getattr(candidate, field)
        }
        if not rest:
            return moved
        return self._store.update(request_id, rest, expected_version=moved.version)

    @staticmethod
    def _check_field_changes(
        request: SparePartRequest, changes: Mapping[str, Any]
    ) -> SparePartRequest:
        """Reject plain-field changes that break a request invariant.

        Returns the request as it would look with the changes applied.
        """
        if "payment_status" in changes and changes["payment_status"] != request.payment_status:
            if changes["payment_status"] == PaymentStatus.PAID:
                raise PartsDeskError(
                    ErrorCode.INVALID_TRANSITION,
                    {
                        "field": "payment_status",
                        "reason": "Paid requires a confirmed payment or override-paid",
                    },
                )
            if request.status in PAID_OR_LATER:
                raise PartsDeskError(
                    ErrorCode.INVALID_TRANSITION,
                    {
                        "field": "payment_status",
                        "reason": f"payment is settled for a {request.status.value} request",
                    },
                )

        cost_changes = COST_FIELDS.intersection(changes)
        if cost_changes and request.status != RequestStatus.PENDING:
            raise PartsDeskError(
                ErrorCode.FIELD_NOT_UPDATABLE,
                {"fields": sorted(cost_changes), "reason": "costs are fixed once priced"},
            )
        if "dispatched_on" in changes and changes["dispatched_on"] != request.dispatched_on:
            raise PartsDeskError(
                ErrorCode.FIELD_NOT_UPDATABLE,
                {"fields": ["dispatched_on"], "reason": "dispatched_on is stamped on dispatch"},
            )
        if (
            "payment_link" in changes
            and request.payment_id
            and changes["payment_link"] != request.payment_link
        ):
            raise PartsDeskError(
                ErrorCode.FIELD_NOT_UPDATABLE,
                {
                    "fields": ["payment_link"],
                    "reason": "link belongs to the current payment session, reissue it instead",
                },
            )

        candidate = apply_changes(request, changes)
        introduced = sorted(set(reconcile(candidate)) - set(reconcile(request)))
        if introduced:
            raise PartsDeskError(
                ErrorCode.FIELD_NOT_UPDATABLE,
                {"fields": sorted(changes), "violations": introduced},
            )
        return candidate

    @staticmethod
    def _check_patch_target(
        request: SparePartRequest,
        candidate: SparePartRequest,
        target: RequestStatus,
        changes: Mapping[str, Any],
    ) -> None:
        """Preconditions of a PATCH status change, checked before any write."""
        if target == RequestStatus.PAID:
            raise PartsDeskError(
                ErrorCode.INVALID_TRANSITION,
                {"request_id": request.request_id, "to": target.value, "reason": "use override-paid"},
            )
        require_transition(request, target)

        owned = TRANSITION_FIELDS.intersection(changes)
        if owned:
            raise PartsDeskError(
                ErrorCode.FIELD_NOT_UPDATABLE,
                {"fields": sorted(owned), "reason": f"set by the move to {target.value}"},
            )
        if target == RequestStatus.AVAILABLE and (
            candidate.parts_cost is None or candidate.freight_cost is None
        ):
            raise PartsDeskError(
                ErrorCode.VALIDATION_FAILED,
                {"fields": ["parts_cost", "freight_cost"], "reason": "required to mark available"},
            )
        if target == RequestStatus.DISPATCHED and not candidate.tracking_number:
            raise PartsDeskError(
                ErrorCode.VALIDATION_FAILED,
                {"field": "tracking_number", "reason": "required to dispatch"},
            )

    def _patch_transition(
        self, candidate: SparePartRequest, target: RequestStatus, version: int
    ) -> SparePartRequest:
        request_id = candidate.request_id
        if target == RequestStatus.AVAILABLE:
            return self.mark_available(
                request_id, candidate.parts_cost, candidate.freight_cost, expected_version=version
            )
        if target == RequestStatus.NOT_AVAILABLE:
            return self.mark_not_available(request_id, notes=candidate.notes, expected_version=version)
        if target == RequestStatus.PAYMENT_SENT:
            return self.send_payment_link(request_id, expected_version=version)
        if target == RequestStatus.PROCESSING:
            return self.start_processing(request_id, expected_version=version)
        return self.dispatch(request_id, candidate.tracking_number, expected_version=version)

    # ------------------------------------------------------------------
    # Gateway-driven transitions
    # ------------------------------------------------------------------

    def confirm_payment(self, payload: WebhookPayload) -> tuple[str, str | None]:
        """Apply a completed payment. Repeats for a paid request are no-ops."""
        request = self._store.get(payload.order_id)
        if request is None:
            logger.warning("Completed payment %s for unknown request %s", payload.payment_id, payload.order_id)
            return "skipped", f"Request {payload.order_id} not found"

        if request.status in PAID_OR_LATER:
            return "duplicate", f"Request {request.request_id} already {request.status.value}"

        if request.status not in (RequestStatus.AVAILABLE, RequestStatus.PAYMENT_SENT):
            logger.error(
                "Completed payment %s for request %s in status %s needs manual review",
                payload.payment_id,
                request.request_id,
                request.status.value,
            )
            return "skipped", f"Cannot confirm payment in status {request.status.value}"

        if request.price is not None and payload.amount != request.price:
            logger.error(
                "Payment %s amount %s does not match price %s for %s",
                payload.payment_id,
                payload.amount,
                request.price,
                request.request_id,
            )
            return "skipped", "Payment amount does not match request price"

        if request.payment_id and payload.payment_id != request.payment_id:
            logger.warning(
                "Payment %s completed for %s via a superseded session (current %s)",
                payload.payment_id,
                request.request_id,
                request.payment_id,
            )

        path = [RequestStatus.PAID]
        if request.status == RequestStatus.AVAILABLE:
            path.insert(0, RequestStatus.PAYMENT_SENT)
        require_transition(request, *path)

        paid = self._save(
            request,
            {
                "status": RequestStatus.PAID,
                "payment_status": PaymentStatus.PAID,
                "payment_id": payload.payment_id,
            },
            "payment_completed",
        )
        log_payment_operation(
            logger, "payment_completed", payment_id=payload.payment_id,
            order_id=request.request_id, amount=payload.amount, currency=payload.currency,
            status=SessionStatus.COMPLETED.value,
        )
        self._notify_after(paid, NotificationIntent.PAYMENT_CONFIRMED)
        return "success", None

    def record_payment_failure(self, payload: WebhookPayload) -> tuple[str, str | None]:
        """Apply a failed or expired payment: payment_status Failed, status unchanged."""
        request = self._store.get(payload.order_id)
        if request is None:
            return "skipped", f"Request {payload.order_id} not found"
        if request.status in PAID_OR_LATER:
            return "skipped", f"Request {request.request_id} already paid"
        if request.status not in (RequestStatus.AVAILABLE, RequestStatus.PAYMENT_SENT):
            return "skipped", f"No open payment in status {request.status.value}"
        if request.payment_id and payload.payment_id != request.payment_id:
            return "skipped", "Event for a superseded payment session"
        if request.payment_status == PaymentStatus.FAILED:
            return "duplicate", "Payment already marked failed"

        self._save(request, {"payment_status": PaymentStatus.FAILED}, payload.event)
        log_payment_operation(
            logger, payload.event.replace(".", "_"), payment_id=payload.payment_id,
            order_id=request.request_id, status=payload.status,
        )
        return "success", None

    def sync_payment_status(self, request_id: str) -> tuple[SparePartRequest, PaymentSession]:
        """Poll the gateway for the current session and apply its outcome."""
        request = self._load(request_id)
        if not request.payment_id:
            raise PartsDeskError(ErrorCode.PAYMENT_NOT_FOUND, {"request_id": request_id})

        session = self.gateway.get_payment_status(request.payment_id)
        if session is None:
            raise PartsDeskError(ErrorCode.PAYMENT_NOT_FOUND, {"payment_id": request.payment_id})

        event = {
            SessionStatus.COMPLETED: WebhookEventType.PAYMENT_COMPLETED,
            SessionStatus.FAILED: WebhookEventType.PAYMENT_FAILED,
            SessionStatus.EXPIRED: WebhookEventType.PAYMENT_EXPIRED,
        }.get(session.status)
        if event is not None:
            payload = WebhookPayload(
                event=event.value,
                payment_id=session.payment_id,
                order_id=request_id,
                status=session.status.value,
                amount=session.amount,
                currency=session.currency,
                transaction_id=session.transaction_id,
                paid_at=session.paid_at,
            )
            if event == WebhookEventType.PAYMENT_COMPLETED:
                result, message = self.confirm_payment(payload)
            else:
                result, message = self.record_payment_failure(payload)
            logger.info("Payment sync for %s: %s %s", request_id, result, message or "")

        return self._store.get_or_raise(request_id), session
