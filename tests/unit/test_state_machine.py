"""Unit tests for request status rules and record reconciliation."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from parts_shared.models import (
    ErrorCode,
    NotificationIntent,
    NotificationRecord,
    PartsDeskError,
    PaymentStatus,
    RequestStatus,
    SparePartRequest,
)
from parts_shared.services.state_machine import (
    TRANSITIONS,
    can_transition,
    reconcile,
    require_transition,
)


def _request(**overrides) -> SparePartRequest:
    data = {
        "request_id": "REQ-1755947420692-k3j9x0",
        "timestamp": datetime(2026, 3, 1, 9, 30, tzinfo=UTC),
        "customer_name": "Ahmed Al-Rashid",
        "phone_number": "+966551234567",
        "email": "ahmed@example.com",
        "vehicle_estamra": "ABC123",
        "vin_number": "KMHXX00XXXX000001",
        "part_name": "Front brake pads",
    }
    data.update(overrides)
    return SparePartRequest(**data)


def _paid(**overrides) -> SparePartRequest:
    data = {
        "status": RequestStatus.PAID,
        "payment_status": PaymentStatus.PAID,
        "parts_cost": Decimal("100"),
        "freight_cost": Decimal("50"),
        "price": Decimal("150"),
        "payment_link": "https://sandbox-api.payment-gateway.com/payment/pay_1?sandbox=true",
    }
    data.update(overrides)
    return _request(**data)


class TestTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (RequestStatus.PENDING, RequestStatus.AVAILABLE),
            (RequestStatus.PENDING, RequestStatus.NOT_AVAILABLE),
            (RequestStatus.AVAILABLE, RequestStatus.PAYMENT_SENT),
            (RequestStatus.AVAILABLE, RequestStatus.NOT_AVAILABLE),
            (RequestStatus.PAYMENT_SENT, RequestStatus.PAID),
            (RequestStatus.PAID, RequestStatus.PROCESSING),
            (RequestStatus.PROCESSING, RequestStatus.DISPATCHED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (RequestStatus.PENDING, RequestStatus.PAID),
            (RequestStatus.AVAILABLE, RequestStatus.PAID),
            (RequestStatus.PAYMENT_SENT, RequestStatus.NOT_AVAILABLE),
            (RequestStatus.PAID, RequestStatus.PENDING),
            (RequestStatus.DISPATCHED, RequestStatus.PROCESSING),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_statuses_have_no_exits(self):
        assert TRANSITIONS[RequestStatus.NOT_AVAILABLE] == frozenset()
        assert TRANSITIONS[RequestStatus.DISPATCHED] == frozenset()

    def test_every_status_has_rules(self):
        assert set(TRANSITIONS) == set(RequestStatus)


class TestRequireTransition:
    def test_path_through_intermediate_status(self):
        require_transition(_request(status=RequestStatus.AVAILABLE), RequestStatus.PAYMENT_SENT, RequestStatus.PAID)

    def test_error_lists_allowed_targets(self):
        with pytest.raises(PartsDeskError) as exc_info:
            require_transition(_request(), RequestStatus.DISPATCHED)

        assert exc_info.value.code == ErrorCode.INVALID_TRANSITION
        assert exc_info.value.details["from"] == "Pending"
        assert exc_info.value.details["to"] == "Dispatched"
        assert exc_info.value.details["allowed"] == ["Available", "Not Available"]


class TestReconcile:
    def test_new_request_is_consistent(self):
        assert reconcile(_request()) == []

    def test_paid_request_is_consistent(self):
        assert reconcile(_paid()) == []

    def test_price_mismatch(self):
        violations = reconcile(_paid(price=Decimal("140")))

        assert any("price" in v for v in violations)

    def test_paid_status_without_paid_payment(self):
        violations = reconcile(_paid(payment_status=PaymentStatus.PENDING))

        assert violations == ["status Paid with payment_status Pending"]

    def test_paid_payment_before_paid_status(self):
        violations = reconcile(_paid(status=RequestStatus.PAYMENT_SENT))

        assert violations == ["payment_status Paid while status is Payment Sent"]

    def test_dispatched_requires_date_and_tracking(self):
        violations = reconcile(_paid(status=RequestStatus.DISPATCHED))

        assert "Dispatched without dispatched_on" in violations
        assert "Dispatched without tracking_number" in violations

    def test_dispatched_on_only_when_dispatched(self):
        violations = reconcile(_paid(dispatched_on=datetime.now(UTC)))

        assert violations == ["dispatched_on set while status is Paid"]

    def test_delivered_notification_sets_whatsapp_sent(self):
        record = NotificationRecord(
            intent=NotificationIntent.AVAILABILITY,
            sent_at=datetime.now(UTC),
            message="hello",
        )

        assert reconcile(_request(notifications=[record])) == [
            "notification delivered but whatsapp_sent is false"
        ]
        assert reconcile(_request(notifications=[record], whatsapp_sent=True)) == []
