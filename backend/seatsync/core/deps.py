"""
FastAPI dependencies for machine-to-machine authentication.

WHY: Every caller of this API is a machine: the cron runner, internal
services changing seats, and the billing provider's webhooks. The first
two present a shared secret as a bearer token; comparing it in constant
time keeps the secret from leaking through response timing.
"""

import hmac
from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from seatsync.core.config import settings
from seatsync.core.exceptions import AuthenticationError, ConfigurationError
from seatsync.services.lemonsqueezy_client import LemonSqueezyClient, get_provider_client


# WHY: auto_error=False so a missing header becomes our AuthenticationError
# (401 in our error format) instead of FastAPI's 403.
security = HTTPBearer(auto_error=False)


def _check_bearer(
    credentials: Optional[HTTPAuthorizationCredentials],
    expected: Optional[str],
    setting_name: str,
) -> None:
    if not expected:
        raise ConfigurationError(
            message=f"{setting_name} is not configured",
            setting=setting_name,
        )
    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        raise AuthenticationError(message="Unauthorized")


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """
    Require ``Authorization: Bearer <CRON_SECRET>``.

    Raises:
        AuthenticationError: Header missing or secret wrong (401)
        ConfigurationError: CRON_SECRET unset on this deployment (503)
    """
    _check_bearer(credentials, settings.CRON_SECRET, "CRON_SECRET")


async def verify_internal_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """Require ``Authorization: Bearer <INTERNAL_API_TOKEN>``."""
    _check_bearer(credentials, settings.INTERNAL_API_TOKEN, "INTERNAL_API_TOKEN")


def get_provider_client_factory() -> Callable[[], LemonSqueezyClient]:
    """
    Provide the factory that builds the LemonSqueezy client.

    WHY: Routes call the factory only when they actually need the
    provider, so no-op and legacy seat requests still succeed on a
    deployment without an API key. Tests override this dependency with
    a fake client.
    """
    return get_provider_client
