"""Select the payment gateway variant once at startup."""

import secrets

from parts_shared.config import Settings
from parts_shared.models import GatewayMode
from parts_shared.services.gateway import PaymentGateway
from parts_shared.services.sandbox_gateway import SandboxGateway
from parts_shared.services.stripe_gateway import StripeGateway
from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)


def build_gateway(settings: Settings) -> PaymentGateway:
    """Build the gateway named by PAYMENT_PROVIDER.

    Stripe without a secret key degrades to the sandbox labeled as mock.
    Sandbox and mock gateways without a webhook secret sign their own
    simulated deliveries with a per-process random secret.
    """
    if settings.payment_provider == "stripe" and settings.stripe_secret_key:
        logger.info("Payment gateway: stripe")
        return StripeGateway(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.webhook_secret,
            publishable_key=settings.stripe_publishable_key,
            base_url=settings.base_url,
            currency=settings.currency,
            skip_signature_verification=settings.webhook_skip_verification,
        )

    mode = GatewayMode.SANDBOX
    if settings.payment_provider == "stripe":
        logger.warning("STRIPE_SECRET_KEY not configured, using MOCK payment gateway")
        mode = GatewayMode.MOCK

    webhook_secret = settings.webhook_secret
    if not webhook_secret:
        logger.warning("No webhook secret configured, generated an ephemeral sandbox secret")
        webhook_secret = secrets.token_hex(32)

    logger.info("Payment gateway: %s", mode.value)
    return SandboxGateway(
        base_url=settings.base_url,
        currency=settings.currency,
        webhook_secret=webhook_secret,
        failure_rate=settings.sandbox_failure_rate,
        mode=mode,
        skip_signature_verification=settings.webhook_skip_verification,
    )
