"""Runtime configuration loaded from environment variables.

Settings are read once per process through get_settings(). Secrets that are
not present in the environment are fetched from SSM Parameter Store when
SSM_PARAMETER_PREFIX is set, e.g. "/partsdesk/prod" resolves the Stripe key
from "/partsdesk/prod/stripe/secret_key".
"""

import os
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from parts_shared.models.errors import ErrorCode, PartsDeskError
from parts_shared.services.ssm_service import SSMServiceError, get_ssm_service
from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)

# Environment variable -> SSM parameter suffix for secrets
SECRET_PARAMETERS: dict[str, str] = {
    "STRIPE_SECRET_KEY": "stripe/secret_key",
    "PAYMENT_WEBHOOK_SECRET": "payments/webhook_secret",
    "WHATSAPP_ACCESS_TOKEN": "whatsapp/access_token",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Process-wide settings."""

    model_config = ConfigDict(frozen=True)

    environment: Literal["dev", "test", "prod"] = "dev"
    payment_provider: Literal["sandbox", "stripe"] = "sandbox"
    stripe_secret_key: str | None = None
    stripe_publishable_key: str | None = None
    webhook_secret: str | None = None
    base_url: str = "http://localhost:8080"
    currency: str = Field(default="SAR", min_length=3, max_length=3)
    sandbox_failure_rate: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    # Test-only: accept webhooks without checking the signature
    webhook_skip_verification: bool = False
    dynamodb_table_prefix: str = "partsdesk-dev"
    whatsapp_phone_number_id: str | None = None
    whatsapp_access_token: str | None = None
    whatsapp_api_url: str = "https://graph.facebook.com/v19.0"
    ssm_parameter_prefix: str | None = None
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"

    @property
    def whatsapp_enabled(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (used by tests)

        Returns:
            Validated Settings

        Raises:
            PartsDeskError: CONFIGURATION_ERROR when a production deployment is
                missing its webhook secret or enables skip-verification.
        """
        env = dict(os.environ if environ is None else environ)
        environment = env.get("ENVIRONMENT", "dev")
        ssm_prefix = env.get("SSM_PARAMETER_PREFIX") or None

        secrets = {
            name: env.get(name) or _secret_from_ssm(ssm_prefix, suffix)
            for name, suffix in SECRET_PARAMETERS.items()
        }

        settings = cls(
            environment=environment,
            payment_provider=env.get("PAYMENT_PROVIDER", "sandbox").lower(),
            stripe_secret_key=secrets["STRIPE_SECRET_KEY"],
            stripe_publishable_key=env.get("STRIPE_PUBLISHABLE_KEY") or None,
            webhook_secret=secrets["PAYMENT_WEBHOOK_SECRET"],
            base_url=env.get("BASE_URL", "http://localhost:8080").rstrip("/"),
            currency=env.get("PAYMENT_CURRENCY", "SAR").upper(),
            sandbox_failure_rate=Decimal(env.get("SANDBOX_FAILURE_RATE", "0")),
            webhook_skip_verification=(
                env.get("WEBHOOK_SKIP_VERIFICATION", "").lower() in _TRUE_VALUES
            ),
            dynamodb_table_prefix=env.get(
                "DYNAMODB_TABLE_PREFIX", f"partsdesk-{environment}"
            ),
            whatsapp_phone_number_id=env.get("WHATSAPP_PHONE_NUMBER_ID") or None,
            whatsapp_access_token=secrets["WHATSAPP_ACCESS_TOKEN"],
            whatsapp_api_url=env.get(
                "WHATSAPP_API_URL", "https://graph.facebook.com/v19.0"
            ).rstrip("/"),
            ssm_parameter_prefix=ssm_prefix,
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
        settings.validate_for_startup()
        return settings

    def validate_for_startup(self) -> None:
        """Refuse configurations that are unsafe to serve traffic with."""
        if not self.is_production:
            return
        if not self.webhook_secret:
            raise PartsDeskError(
                ErrorCode.CONFIGURATION_ERROR,
                {"setting": "PAYMENT_WEBHOOK_SECRET", "reason": "required in prod"},
            )
        if self.webhook_skip_verification:
            raise PartsDeskError(
                ErrorCode.CONFIGURATION_ERROR,
                {"setting": "WEBHOOK_SKIP_VERIFICATION", "reason": "not allowed in prod"},
            )


def _secret_from_ssm(prefix: str | None, suffix: str) -> str | None:
    if not prefix:
        return None
    name = f"{prefix.rstrip('/')}/{suffix}"
    try:
        return get_ssm_service().get_parameter(name)
    except SSMServiceError as e:
        logger.warning("Secret %s unavailable from SSM: %s", name, e)
        return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide Settings (loaded on first use)."""
    return Settings.from_env()
