"""Health check endpoint."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from parts_api.dependencies import get_app_settings, get_payment_gateway
from parts_shared.config import Settings
from parts_shared.services.gateway import PaymentGateway

router = APIRouter(tags=["health"])


@router.get("/health", summary="Service health")
async def health(
    settings: Settings = Depends(get_app_settings),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> dict[str, Any]:
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.environment,
        "payment_gateway": gateway.mode.value,
        "notifications": "whatsapp" if settings.whatsapp_enabled else "log",
    }
