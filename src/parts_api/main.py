"""Spare Parts Desk REST API.

All routes live under /api (intake, staff workflow, payments, webhooks and
health). The same app serves uvicorn locally and Lambda through Mangum.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from parts_api.exceptions import register_exception_handlers
from parts_api.middleware.correlation import CorrelationIdMiddleware
from parts_api.routes import health, payments, requests, webhooks
from parts_shared.config import get_settings
from parts_shared.utils.logging import configure_logging, get_logger

API_PREFIX = "/api"
SERVICE_NAME = "partsdesk-api"

# Staff dashboard dev server
DEV_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]

logger = get_logger(__name__)


def create_app() -> FastAPI:
    """Build the application with middleware, error handlers and routers."""
    application = FastAPI(
        title="Spare Parts Desk API",
        description="REST API for spare-part requests, payment links and fulfillment",
        version="0.1.0",
    )

    # Added last runs first: correlation IDs wrap CORS handling
    application.add_middleware(
        CORSMiddleware,
        allow_origins=DEV_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(CorrelationIdMiddleware)

    register_exception_handlers(application)

    for module in (health, requests, payments, webhooks):
        application.include_router(module.router, prefix=API_PREFIX)

    @application.get(f"{API_PREFIX}/ping", tags=["health"])
    async def ping() -> dict[str, Any]:
        """Liveness probe that touches no dependencies."""
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "service": SERVICE_NAME,
        }

    return application


configure_logging(get_settings().log_level)
app = create_app()

# AWS Lambda entry point behind API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Serve the API with uvicorn (the `partsdesk-api` script)."""
    import uvicorn

    if reload:
        # Reload needs an import string rather than the app object
        uvicorn.run("parts_api.main:app", host=host, port=port, reload=True, reload_dirs=["src"])
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
