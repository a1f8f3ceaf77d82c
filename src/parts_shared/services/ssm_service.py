"""Secrets from SSM Parameter Store.

Deployments keep the Stripe key, the webhook signing secret and the WhatsApp
token in SecureString parameters under one prefix (see config.py).
"""

from functools import lru_cache

import boto3
from botocore.exceptions import ClientError

from parts_shared.utils.logging import get_logger

logger = get_logger(__name__)

_ERROR_HINTS = {
    "ParameterNotFound": "not found",
    "AccessDeniedException": "access denied, check ssm:GetParameter and kms:Decrypt permissions",
}


class SSMServiceError(Exception):
    """A parameter could not be read."""


class SSMService:
    """Reads decrypted parameters and remembers them for the process lifetime."""

    def __init__(self) -> None:
        self._client = boto3.client("ssm")
        self._values: dict[str, str] = {}

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Decrypted value of `name`.

        Raises:
            SSMServiceError: If the parameter is missing or unreadable.
        """
        if use_cache and name in self._values:
            return self._values[name]

        try:
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            hint = _ERROR_HINTS.get(code, str(e))
            raise SSMServiceError(f"SSM parameter {name}: {hint}") from e

        self._values[name] = response["Parameter"]["Value"]
        logger.info("Loaded SSM parameter %s", name)
        return self._values[name]

    def clear_cache(self) -> None:
        self._values.clear()


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    return SSMService()
