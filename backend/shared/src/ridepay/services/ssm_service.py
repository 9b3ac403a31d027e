"""SSM Parameter Store access for payment secrets.

Three SecureString parameters live under ``/ridepay/<env>/``: the Stripe API
key, the Stripe webhook signing secret and the scheduler's worker token.
Values are cached per process for ``SSM_CACHE_TTL_SECONDS`` so a rotated
worker token is picked up without a redeploy.
"""

import logging
import os
import time
from collections.abc import Callable
from functools import lru_cache

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300.0

STRIPE_SECRET_KEY = "stripe/secret_key"
STRIPE_WEBHOOK_SECRET = "stripe/webhook_secret"
WORKER_TOKEN = "worker/token"


class SSMServiceError(Exception):
    """Raised when SSM parameter retrieval fails."""


def parameter_path(name: str, environment: str | None = None) -> str:
    """Build the environment-scoped parameter path.

    Args:
        name: Path below the environment, e.g. "stripe/secret_key"
        environment: Environment name. Defaults to ENVIRONMENT env var.

    Returns:
        Full path like "/ridepay/dev/stripe/secret_key"
    """
    env = environment or os.environ.get("ENVIRONMENT", "dev")
    return f"/ridepay/{env}/{name}"


class SSMService:
    """Reads decrypted parameters, caching each for a bounded time.

    Usage:
        ssm = get_ssm_service()
        token = ssm.get_parameter(parameter_path(WORKER_TOKEN))
    """

    def __init__(
        self,
        cache_ttl_seconds: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the SSM client.

        Args:
            cache_ttl_seconds: Seconds a fetched value stays valid. Defaults to
                SSM_CACHE_TTL_SECONDS; 0 disables caching
            monotonic: Clock used for cache expiry
        """
        self._client = boto3.client("ssm")
        if cache_ttl_seconds is None:
            cache_ttl_seconds = float(
                os.getenv("SSM_CACHE_TTL_SECONDS", str(DEFAULT_CACHE_TTL_SECONDS))
            )
        self.cache_ttl_seconds = cache_ttl_seconds
        self._monotonic = monotonic
        self._cache: dict[str, tuple[str, float]] = {}

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Retrieve a decrypted parameter value.

        Args:
            name: Full parameter path (e.g., "/ridepay/dev/worker/token")
            use_cache: Whether a cached, unexpired value may be returned

        Returns:
            The decrypted parameter value.

        Raises:
            SSMServiceError: If parameter cannot be retrieved.
        """
        now = self._monotonic()
        cached = self._cache.get(name)
        if use_cache and cached is not None and now - cached[1] < self.cache_ttl_seconds:
            return cached[0]

        try:
            logger.info("Fetching SSM parameter: %s", name)
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ParameterNotFound":
                raise SSMServiceError(f"SSM parameter not found: {name}") from e
            if error_code == "AccessDeniedException":
                raise SSMServiceError(
                    f"Access denied to SSM parameter: {name}. "
                    "Check IAM permissions for ssm:GetParameter."
                ) from e
            raise SSMServiceError(f"Failed to retrieve SSM parameter {name}: {e}") from e
        except BotoCoreError as e:
            raise SSMServiceError(f"SSM unreachable while reading {name}: {e}") from e

        value = response["Parameter"]["Value"]
        self._cache[name] = (value, now)
        return value

    def invalidate(self, name: str | None = None) -> None:
        """Forget one cached parameter, or all of them."""
        if name is None:
            self._cache.clear()
        else:
            self._cache.pop(name, None)


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    """Get the shared SSMService instance."""
    return SSMService()
