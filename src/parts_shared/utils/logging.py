"""Logging with a per-request correlation ID and key=value context.

Anything passed through ``extra`` is appended to the line, so call sites
attach identifiers instead of formatting them into the message:

    logger = get_logger(__name__)
    logger.info("Payment link issued", extra={"order_id": "REQ-123"})

    [7d0c...] 2026-03-01 09:30:00,000 INFO parts_shared.workflow: Payment link issued | order_id=REQ-123
"""

import logging
import uuid
from contextvars import ContextVar
from decimal import Decimal
from typing import Any

NO_CORRELATION_ID = "no-correlation-id"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "correlation_id"}


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation ID to the current context, generating one if needed."""
    cid = correlation_id or uuid.uuid4().hex
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Stamps records with the current correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class StructuredFormatter(logging.Formatter):
    """Prefixes the correlation ID and appends extra fields as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        cid = getattr(record, "correlation_id", None) or get_correlation_id() or NO_CORRELATION_ID
        line = f"[{cid}] {super().format(record)}"

        fields = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def configure_logging(level: str = "INFO") -> None:
    """Install the structured handler on the root logger once."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    if any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(DEFAULT_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Module logger carrying the correlation ID filter."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def _context(**fields: Any) -> dict[str, Any]:
    return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in fields.items() if v is not None}


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    payment_id: str | None = None,
    order_id: str | None = None,
    amount: Decimal | None = None,
    currency: str | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log one gateway call or payment state change.

    Logged at ERROR when ``error`` is set, otherwise INFO.

    Args:
        logger: Logger to write to
        operation: e.g. "create_payment", "payment_completed"
        payment_id: Gateway session ID
        order_id: Request the payment belongs to
        amount: Amount in currency units
        currency: ISO currency code
        status: Canonical session status
        error: Failure description
        **extra: Further context fields
    """
    fields = _context(
        operation=operation,
        payment_id=payment_id,
        order_id=order_id,
        amount=amount,
        currency=currency,
        status=status,
        error=error,
        **extra,
    )
    level = logging.ERROR if error else logging.INFO
    logger.log(level, "Payment %s", operation, extra=fields)


# Webhook outcomes that are expected but worth noticing
_WARN_RESULTS = frozenset({"duplicate", "skipped", "invalid_signature"})


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    event_id: str,
    *,
    order_id: str | None = None,
    payment_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log the outcome of one webhook delivery.

    ERROR for "error", WARNING for duplicates, skips and bad signatures,
    INFO otherwise.
    """
    fields = _context(
        event_type=event_type,
        event_id=event_id,
        order_id=order_id,
        payment_id=payment_id,
        result=result,
        error=error,
        **extra,
    )
    if result == "error":
        level = logging.ERROR
    elif result in _WARN_RESULTS:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(level, "Webhook %s %s", event_type, result or "received", extra=fields)
