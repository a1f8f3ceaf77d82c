"""Customer notification rendering and delivery.

NotificationDispatcher.render() is pure: it turns a request and an intent
into message text. Delivery goes through a NotificationSender so the
workflow never depends on a messaging provider directly.
"""

import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from decimal import Decimal
from urllib.parse import quote

import httpx

from parts_shared.models import (
    ErrorCode,
    NotificationIntent,
    NotificationRecord,
    PartsDeskError,
    SparePartRequest,
)
from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)

BUSINESS_SIGNATURE = "Hyundai × Wallan Group"
DEFAULT_DELIVERY_ESTIMATE = "2-3 business days"
WHATSAPP_TIMEOUT_SECONDS = 10.0


def whatsapp_link(phone_number: str, message: str | None = None) -> str:
    """Click-to-chat link, e.g. https://wa.me/966551234567?text=Hello."""
    digits = re.sub(r"\D", "", phone_number)
    if not message:
        return f"https://wa.me/{digits}"
    return f"https://wa.me/{digits}?text={quote(message, safe='')}"


def _money(amount: Decimal) -> str:
    return f"{amount:.2f}"


class NotificationDispatcher:
    """Render and deliver customer messages."""

    def __init__(self, sender: "NotificationSender", currency: str = "SAR") -> None:
        self._sender = sender
        self.currency = currency

    @property
    def channel(self) -> str:
        return self._sender.channel

    def render(self, request: SparePartRequest, intent: NotificationIntent) -> str:
        """Message text for an intent.

        Raises:
            PartsDeskError: VALIDATION_FAILED when the request lacks a field
                the intent needs (costs and link for payment_link, tracking
                number for dispatched).
        """
        renderer = {
            NotificationIntent.AVAILABILITY: self._availability,
            NotificationIntent.PAYMENT_LINK: self._payment_link,
            NotificationIntent.PAYMENT_CONFIRMED: self._payment_confirmed,
            NotificationIntent.DISPATCHED: self._dispatched,
        }[intent]
        return renderer(request)

    def dispatch(self, request: SparePartRequest, intent: NotificationIntent) -> NotificationRecord:
        """Render and send; delivery failure is reported, not raised."""
        message = self.render(request, intent)
        delivered = self._sender.send(request.phone_number, message)
        logger.info(
            "Notification %s for %s delivered=%s",
            intent.value,
            request.request_id,
            delivered,
            extra={"order_id": request.request_id, "intent": intent.value},
        )
        return NotificationRecord(
            intent=intent,
            sent_at=datetime.now(UTC),
            channel=self._sender.channel,
            delivered=delivered,
            message=message,
        )

    @staticmethod
    def _require(request: SparePartRequest, intent: NotificationIntent, *fields: str) -> None:
        missing = [f for f in fields if getattr(request, f) in (None, "")]
        if missing:
            raise PartsDeskError(
                ErrorCode.VALIDATION_FAILED,
                {"intent": intent.value, "missing": missing},
            )

    def _availability(self, request: SparePartRequest) -> str:
        lines = [
            "🚗 *Hyundai Spare Parts Update*",
            "",
            f"Hello {request.customer_name},",
            "",
            f"Your request {request.request_id} is now available!",
            f"*{request.part_name}*",
        ]
        if request.price is not None:
            lines += ["", f"💰 Price: {_money(request.price)} {self.currency}"]
        lines += [
            "",
            "We will send your secure payment link shortly.",
            "",
            "For any questions, reply to this message or call our support team.",
            "",
            f"Thank you for choosing {BUSINESS_SIGNATURE}!",
        ]
        return "\n".join(lines)

    def _payment_link(self, request: SparePartRequest) -> str:
        self._require(
            request, NotificationIntent.PAYMENT_LINK, "parts_cost", "freight_cost", "payment_link"
        )
        total = request.parts_cost + request.freight_cost
        return "\n".join(
            [
                "🚗 *Hyundai Spare Parts - Payment Ready*",
                "",
                f"Hello {request.customer_name},",
                "",
                "Your requested part is available:",
                f"*{request.part_name}*",
                "",
                "💰 *Payment Breakdown:*",
                f"• Parts Cost: {_money(request.parts_cost)} {self.currency}",
                f"• Freight Cost: {_money(request.freight_cost)} {self.currency}",
                f"• *Total: {_money(total)} {self.currency}*",
                "",
                "🔗 *Secure Payment Link:*",
                request.payment_link,
                "",
                "⏰ This link expires in 24 hours.",
                "",
                "After payment confirmation, we'll immediately start processing your order for dispatch.",
                "",
                f"Thank you for choosing {BUSINESS_SIGNATURE}!",
            ]
        )

    def _payment_confirmed(self, request: SparePartRequest) -> str:
        lines = [
            "✅ *Payment Confirmed - Hyundai Spare Parts*",
            "",
            f"Hello {request.customer_name},",
            "",
            "Your payment has been successfully processed!",
            "",
            "📋 *Order Details:*",
            f"• Part: {request.part_name}",
            f"• Request ID: {request.request_id}",
        ]
        if request.payment_id:
            lines.append(f"• Payment Reference: {request.payment_id}")
        if request.price is not None:
            lines.append(f"• Amount: {_money(request.price)} {self.currency}")
        lines += [
            "• Status: Paid ✅",
            "",
            "🚚 *Next Steps:*",
            "Your order is now being processed and will be dispatched within 24-48 hours. "
            "You'll receive tracking information once shipped.",
            "",
            "Thank you for your business!",
            "",
            BUSINESS_SIGNATURE,
        ]
        return "\n".join(lines)

    def _dispatched(self, request: SparePartRequest) -> str:
        self._require(request, NotificationIntent.DISPATCHED, "tracking_number")
        return "\n".join(
            [
                "🚚 *Order Dispatched - Hyundai Spare Parts*",
                "",
                f"Hello {request.customer_name},",
                "",
                "Great news! Your order has been dispatched.",
                "",
                "📦 *Shipment Details:*",
                f"• Part: {request.part_name}",
                f"• Tracking Number: {request.tracking_number}",
                "• Status: Dispatched 🚚",
                "",
                "🔍 You can track your package using the tracking number above.",
                "",
                f"Expected delivery: {request.estimated_delivery or DEFAULT_DELIVERY_ESTIMATE}",
                "",
                f"Thank you for choosing {BUSINESS_SIGNATURE}!",
            ]
        )


class NotificationSender(ABC):
    """Delivery channel for rendered messages."""

    channel: str = "whatsapp"

    @abstractmethod
    def send(self, phone_number: str, message: str) -> bool:
        """Deliver a message. Returns False when delivery failed."""


class LoggingSender(NotificationSender):
    """Writes messages to the log instead of delivering them."""

    channel = "log"

    def send(self, phone_number: str, message: str) -> bool:
        logger.info("Message to %s:\n%s", phone_number, message)
        return True


class WhatsAppSender(NotificationSender):
    """WhatsApp Cloud API text messages."""

    def __init__(
        self,
        *,
        phone_number_id: str,
        access_token: str,
        api_url: str = "https://graph.facebook.com/v19.0",
        timeout: float = WHATSAPP_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self._endpoint = f"{api_url.rstrip('/')}/{phone_number_id}/messages"
        self._client = client or httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def send(self, phone_number: str, message: str) -> bool:
        payload = {
            "messaging_product": "whatsapp",
            "to": re.sub(r"\D", "", phone_number),
            "type": "text",
            "text": {"body": message},
        }
        try:
            response = self._client.post(self._endpoint, json=payload)
            response.raise_for_status()
        except (httpx.TimeoutException, httpx.HTTPError) as e:
            logger.error("WhatsApp delivery to %s failed: %s", phone_number, e)
            return False
        return True
