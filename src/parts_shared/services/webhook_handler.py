"""Webhook handler: idempotent delivery of payment events to the workflow.

Business logic for webhook events lives here rather than in the HTTP route
so it can be unit tested without a transport. Every delivery is recorded
in the webhook-events table, which also recognizes redelivered events.
"""

import datetime as dt
from collections.abc import Callable
from typing import Any

from parts_shared.models import WebhookEventLog, WebhookPayload
from parts_shared.services.dynamodb import DynamoDBService, get_dynamodb_service
from parts_shared.services.gateway import compute_payload_hash
from parts_shared.services.workflow import WorkflowService
from parts_shared.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)

# An event recorded with one of these results is not processed again
FINAL_RESULTS = frozenset({"success", "duplicate", "skipped"})


class WebhookHandler:
    """Implements WebhookHandlers on top of WorkflowService."""

    WEBHOOK_EVENTS_TABLE = "webhook-events"

    def __init__(self, workflow: WorkflowService, db: DynamoDBService | None = None) -> None:
        self._workflow = workflow
        self._db = db or get_dynamodb_service()

    def get_event(self, event_id: str) -> WebhookEventLog | None:
        item = self._db.get_item(self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id})
        return WebhookEventLog.model_validate(item, strict=False) if item else None

    def is_event_already_processed(self, event_id: str) -> bool:
        """Whether a delivery with this key already reached a final result."""
        existing = self.get_event(event_id)
        return existing is not None and existing.processing_result in FINAL_RESULTS

    def log_event(
        self,
        payload: WebhookPayload,
        processing_result: str,
        error_message: str | None = None,
    ) -> None:
        """Record a processed delivery for idempotency and audit."""
        entry = WebhookEventLog(
            event_id=payload.dedupe_key,
            event_type=payload.event,
            processed_at=dt.datetime.now(dt.UTC),
            payload_hash=compute_payload_hash(payload.model_dump_json()),
            order_id=payload.order_id,
            payment_id=payload.payment_id,
            processing_result=processing_result,
            error_message=error_message,
        )
        item: dict[str, Any] = entry.model_dump(mode="json", exclude_none=True)
        self._db.put_item(self.WEBHOOK_EVENTS_TABLE, item)

    def _handle(
        self,
        payload: WebhookPayload,
        action: Callable[[WebhookPayload], tuple[str, str | None]],
    ) -> tuple[str, str | None]:
        event_id = payload.dedupe_key

        if self.is_event_already_processed(event_id):
            log_webhook_event(
                logger, payload.event, event_id, order_id=payload.order_id,
                payment_id=payload.payment_id, result="duplicate",
            )
            return "duplicate", "Event already processed"

        try:
            result, message = action(payload)
        except Exception as e:
            logger.exception("Webhook event %s failed", event_id)
            result, message = "error", f"Failed to process event: {e}"

        self.log_event(payload, result, message if result != "success" else None)
        log_webhook_event(
            logger, payload.event, event_id, order_id=payload.order_id,
            payment_id=payload.payment_id, result=result,
            error=message if result == "error" else None,
        )
        return result, message

    def on_payment_completed(self, payload: WebhookPayload) -> tuple[str, str | None]:
        return self._handle(payload, self._workflow.confirm_payment)

    def on_payment_failed(self, payload: WebhookPayload) -> tuple[str, str | None]:
        return self._handle(payload, self._workflow.record_payment_failure)

    def on_payment_expired(self, payload: WebhookPayload) -> tuple[str, str | None]:
        return self._handle(payload, self._workflow.record_payment_failure)
