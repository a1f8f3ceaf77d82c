"""FastAPI dependency providers for shared services.

Services are created lazily on first use and cached with @lru_cache, so the
gateway variant is chosen once per process and the sandbox session registry
is shared by every request.

Service Dependency Graph:
    Settings (get_settings)
        ├── PaymentGateway (build_gateway)
        ├── NotificationDispatcher
        │       └── NotificationSender (logging or WhatsApp)
        └── DynamoDBService
                └── DynamoRequestStore
                        └── WorkflowService
                                └── WebhookHandler

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from parts_shared.config import Settings, get_settings
from parts_shared.services.dynamodb import get_dynamodb_service, reset_dynamodb_service
from parts_shared.services.gateway import PaymentGateway
from parts_shared.services.gateway_factory import build_gateway
from parts_shared.services.notifications import (
    LoggingSender,
    NotificationDispatcher,
    NotificationSender,
    WhatsAppSender,
)
from parts_shared.services.request_store import DynamoRequestStore, RequestStore
from parts_shared.services.webhook_handler import WebhookHandler
from parts_shared.services.workflow import WorkflowService


def get_app_settings() -> Settings:
    return get_settings()


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Get the process-wide payment gateway."""
    return build_gateway(get_settings())


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    """Get the dispatcher, delivering through WhatsApp when configured."""
    settings = get_settings()
    sender: NotificationSender
    if settings.whatsapp_enabled:
        sender = WhatsAppSender(
            phone_number_id=settings.whatsapp_phone_number_id or "",
            access_token=settings.whatsapp_access_token or "",
            api_url=settings.whatsapp_api_url,
        )
    else:
        sender = LoggingSender()
    return NotificationDispatcher(sender, currency=settings.currency)


@lru_cache
def get_request_store() -> RequestStore:
    """Get cached RequestStore backed by DynamoDB."""
    return DynamoRequestStore(db=get_dynamodb_service(get_settings().dynamodb_table_prefix))


@lru_cache
def get_workflow_service() -> WorkflowService:
    """Get cached WorkflowService wired to store, gateway and dispatcher."""
    return WorkflowService(
        store=get_request_store(),
        gateway=get_payment_gateway(),
        dispatcher=get_notification_dispatcher(),
    )


@lru_cache
def get_webhook_handler() -> WebhookHandler:
    """Get cached WebhookHandler."""
    return WebhookHandler(
        workflow=get_workflow_service(),
        db=get_dynamodb_service(get_settings().dynamodb_table_prefix),
    )


def reset_services() -> None:
    """Clear all cached service instances and settings.

    Call this in test fixtures to ensure clean state between tests.
    """
    get_payment_gateway.cache_clear()
    get_notification_dispatcher.cache_clear()
    get_request_store.cache_clear()
    get_workflow_service.cache_clear()
    get_webhook_handler.cache_clear()
    get_settings.cache_clear()
    reset_dynamodb_service()
