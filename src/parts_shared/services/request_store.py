"""Request store: persistence for spare-part requests.

RequestStore is the repository interface the workflow and API depend on;
DynamoRequestStore backs it with a single DynamoDB table keyed by
request_id. Every write is conditional on the stored `version`, so two
concurrent writers cannot silently overwrite each other.
"""

import json
import secrets
import string
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from parts_shared.models import (
    UPDATABLE_FIELDS,
    DashboardStats,
    ErrorCode,
    PartsDeskError,
    PaymentStatus,
    RequestCreate,
    RequestFilter,
    RequestPage,
    RequestStatus,
    SortField,
    SortOrder,
    SparePartRequest,
)
from parts_shared.services.dynamodb import DynamoDBService, get_dynamodb_service
from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
MAX_ID_ATTEMPTS = 5


def generate_request_id() -> str:
    """Generate an ID like REQ-1755947420692-k3j9x0."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"REQ-{int(time.time() * 1000)}-{suffix}"


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class RequestStore(ABC):
    """Repository interface for spare-part requests."""

    @abstractmethod
    def create(self, data: RequestCreate) -> SparePartRequest:
        """Create a Pending request, assigning request_id when absent."""

    @abstractmethod
    def get(self, request_id: str) -> SparePartRequest | None:
        """Fetch a request or None."""

    @abstractmethod
    def all(self) -> list[SparePartRequest]:
        """Every stored request in intake order."""

    @abstractmethod
    def save(self, request: SparePartRequest, *, expected_version: int) -> SparePartRequest:
        """Persist a full record if the stored version still matches.

        Used by the workflow for fields outside the public update whitelist
        (payment_id, notifications, audit_log).
        """

    @abstractmethod
    def delete(self, request_id: str) -> bool:
        """Hard delete. Returns False when the request did not exist."""

    def get_or_raise(self, request_id: str) -> SparePartRequest:
        request = self.get(request_id)
        if request is None:
            raise PartsDeskError(ErrorCode.REQUEST_NOT_FOUND, {"request_id": request_id})
        return request

    def update(
        self,
        request_id: str,
        changes: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> SparePartRequest:
        """Apply a partial update restricted to UPDATABLE_FIELDS.

        Args:
            request_id: Request to change
            changes: Field -> new value
            expected_version: Version the caller last read; defaults to the
                version loaded here

        Returns:
            The updated request

        Raises:
            PartsDeskError: FIELD_NOT_UPDATABLE, REQUEST_NOT_FOUND,
                VALIDATION_FAILED or CONCURRENT_UPDATE
        """
        rejected = sorted(set(changes) - UPDATABLE_FIELDS)
        if rejected:
            raise PartsDeskError(ErrorCode.FIELD_NOT_UPDATABLE, {"fields": rejected})

        current = self.get_or_raise(request_id)
        if expected_version is not None and expected_version != current.version:
            raise PartsDeskError(
                ErrorCode.CONCURRENT_UPDATE,
                {"request_id": request_id, "expected": expected_version, "actual": current.version},
            )

        updated = apply_changes(current, changes)
        return self.save(updated, expected_version=current.version)

    def list(self, query: RequestFilter) -> RequestPage:
        """Filter, sort and paginate requests."""
        rows = filter_requests(self.all(), query)
        rows = sort_requests(rows, query.sort_by, query.sort_order)
        page = rows[query.offset : query.offset + query.limit]
        return RequestPage(data=page, total=len(rows), limit=query.limit, offset=query.offset)

    def stats(self) -> DashboardStats:
        return compute_stats(self.all())


def apply_changes(current: SparePartRequest, changes: Mapping[str, Any]) -> SparePartRequest:
    """Merge changes into a request, keeping price == parts_cost + freight_cost.

    Raises:
        PartsDeskError: VALIDATION_FAILED when an explicit price contradicts
            the cost breakdown.
    """
    data = current.model_dump()
    data.update(changes)

    parts_cost, freight_cost = data.get("parts_cost"), data.get("freight_cost")
    if parts_cost is not None and freight_cost is not None:
        total = Decimal(str(parts_cost)) + Decimal(str(freight_cost))
        if "price" in changes and changes["price"] is not None and Decimal(str(changes["price"])) != total:
            raise PartsDeskError(
                ErrorCode.VALIDATION_FAILED,
                {"field": "price", "reason": "price must equal parts_cost + freight_cost"},
            )
        data["price"] = total

    return SparePartRequest.model_validate(data)


def _matches_search(request: SparePartRequest, needle: str) -> bool:
    haystacks = (request.customer_name, request.vin_number, request.part_name, request.request_id)
    return any(needle in (h or "").lower() for h in haystacks)


def filter_requests(
    requests: Iterable[SparePartRequest], query: RequestFilter
) -> list[SparePartRequest]:
    """Apply every set filter dimension (unset dimensions match all)."""
    needle = query.search.strip().lower() if query.search else ""
    date_from = _as_utc(query.date_from) if query.date_from else None
    date_to = _as_utc(query.date_to) if query.date_to else None

    result = []
    for request in requests:
        if needle and not _matches_search(request, needle):
            continue
        if query.status is not None and request.status != query.status:
            continue
        if query.payment_status is not None and request.payment_status != query.payment_status:
            continue
        stamp = _as_utc(request.timestamp)
        if date_from and stamp < date_from:
            continue
        if date_to and stamp > date_to:
            continue
        result.append(request)
    return result


_SORT_KEYS = {
    SortField.TIMESTAMP: lambda r: _as_utc(r.timestamp),
    SortField.CUSTOMER_NAME: lambda r: r.customer_name.lower(),
    SortField.STATUS: lambda r: r.status.value,
    SortField.PRICE: lambda r: r.price,
}


def sort_requests(
    requests: Iterable[SparePartRequest], sort_by: SortField, sort_order: SortOrder
) -> list[SparePartRequest]:
    """Stable sort; rows without a value for the key go last in both directions.

    Ties keep intake order (timestamp, then request_id).
    """
    rows = sorted(requests, key=lambda r: (_as_utc(r.timestamp), r.request_id))
    key = _SORT_KEYS[sort_by]

    present = [r for r in rows if key(r) is not None]
    missing = [r for r in rows if key(r) is None]
    # list.sort stays stable with reverse=True
    present.sort(key=key, reverse=sort_order == SortOrder.DESC)
    return present + missing


def compute_stats(requests: Iterable[SparePartRequest]) -> DashboardStats:
    total = pending = pending_payments = dispatched = 0
    for request in requests:
        total += 1
        if request.status == RequestStatus.PENDING:
            pending += 1
        elif request.status == RequestStatus.DISPATCHED:
            dispatched += 1
        if (
            request.status in (RequestStatus.AVAILABLE, RequestStatus.PAYMENT_SENT)
            and request.payment_status == PaymentStatus.PENDING
        ):
            pending_payments += 1
    return DashboardStats(
        total_requests=total,
        pending_requests=pending,
        pending_payments=pending_payments,
        dispatched_orders=dispatched,
    )


def _request_to_item(request: SparePartRequest) -> dict[str, Any]:
    """Convert request model to DynamoDB item (Decimal numbers, ISO dates)."""
    return json.loads(request.model_dump_json(), parse_float=Decimal)


def _item_to_request(item: dict[str, Any]) -> SparePartRequest:
    """Convert DynamoDB item to request model."""
    data = dict(item)
    data["version"] = int(data.get("version", 1))
    return SparePartRequest.model_validate(data)


class DynamoRequestStore(RequestStore):
    """RequestStore backed by the "<prefix>-requests" table."""

    TABLE = "requests"

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self._db = db or get_dynamodb_service()

    def create(self, data: RequestCreate) -> SparePartRequest:
        fields = data.model_dump(exclude={"request_id"})
        caller_id = data.request_id

        for _ in range(MAX_ID_ATTEMPTS):
            now = datetime.now(UTC)
            request = SparePartRequest(
                request_id=caller_id or generate_request_id(),
                timestamp=now,
                last_updated=now,
                **fields,
            )
            created = self._db.put_item(
                self.TABLE,
                _request_to_item(request),
                condition_expression="attribute_not_exists(request_id)",
            )
            if created:
                logger.info(
                    "Request created",
                    extra={"order_id": request.request_id, "part_name": request.part_name},
                )
                return request
            if caller_id:
                raise PartsDeskError(ErrorCode.DUPLICATE_REQUEST_ID, {"request_id": caller_id})
            logger.warning("Request ID collision on %s, regenerating", request.request_id)

        raise PartsDeskError(ErrorCode.DUPLICATE_REQUEST_ID, {"attempts": MAX_ID_ATTEMPTS})

    def get(self, request_id: str) -> SparePartRequest | None:
        item = self._db.get_item(self.TABLE, {"request_id": request_id})
        return _item_to_request(item) if item else None

    def all(self) -> list[SparePartRequest]:
        requests = [_item_to_request(item) for item in self._db.scan_all(self.TABLE)]
        requests.sort(key=lambda r: (_as_utc(r.timestamp), r.request_id))
        return requests

    def save(self, request: SparePartRequest, *, expected_version: int) -> SparePartRequest:
        stored = request.model_copy(
            update={"version": expected_version + 1, "last_updated": datetime.now(UTC)}
        )
        written = self._db.put_item(
            self.TABLE,
            _request_to_item(stored),
            condition_expression="attribute_exists(request_id) AND version = :expected",
            expression_attribute_values={":expected": expected_version},
        )
        if not written:
            if self.get(request.request_id) is None:
                raise PartsDeskError(
                    ErrorCode.REQUEST_NOT_FOUND, {"request_id": request.request_id}
                )
            raise PartsDeskError(
                ErrorCode.CONCURRENT_UPDATE,
                {"request_id": request.request_id, "expected": expected_version},
            )
        return stored

    def delete(self, request_id: str) -> bool:
        deleted = self._db.delete_item(
            self.TABLE,
            {"request_id": request_id},
            condition_expression="attribute_exists(request_id)",
        )
        if deleted:
            logger.info("Request deleted", extra={"order_id": request_id})
        return deleted
