"""
LemonSqueezy API client.

WHAT: Async HTTP client for the three provider calls the billing engine
makes: read a subscription, patch a subscription item's quantity, and
record usage against a subscription item.

WHY: Centralizes provider access for:
- Bearer authentication and JSON:API envelopes
- An explicit timeout on every call
- Mapping failures onto typed errors

HOW: Uses httpx with a short-lived AsyncClient per call. A 4xx/5xx
response raises ProviderError. A timeout raises ProviderTimeoutError,
meaning the outcome is unknown. There is no in-process retry: cron jobs
retry on their next run and reconciliation catches the rest.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from seatsync.core.config import settings
from seatsync.core.exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
)

logger = logging.getLogger(__name__)

JSON_API_CONTENT_TYPE = "application/vnd.api+json"


@dataclass(frozen=True)
class ProviderSubscription:
    """The provider's view of a subscription."""

    id: str
    status: Optional[str]
    quantity: Optional[int]
    subscription_item_id: Optional[str]
    renews_at: Optional[datetime]
    variant_id: Optional[str] = None


def parse_provider_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a provider timestamp (``2024-05-01T10:00:00.000000Z``) to naive UTC.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class LemonSqueezyClient:
    """
    Async HTTP client for the LemonSqueezy REST API.

    Args:
        api_key: LemonSqueezy API key
        base_url: API root, e.g. https://api.lemonsqueezy.com/v1
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.lemonsqueezy.com/v1",
        timeout: float = 15.0,
    ):
        if not api_key:
            raise ConfigurationError(
                message="LemonSqueezy API key is required",
                setting="LEMONSQUEEZY_API_KEY",
            )
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Accept": JSON_API_CONTENT_TYPE,
            "Content-Type": JSON_API_CONTENT_TYPE,
            "Authorization": f"Bearer {self._api_key}",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make an authenticated request to the provider.

        Raises:
            ProviderError: Error status or connection failure
            ProviderTimeoutError: No answer within the timeout
        """
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        logger.info(f"LemonSqueezy {method} {endpoint}")

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    json=data,
                )
        except httpx.TimeoutException:
            logger.warning(f"LemonSqueezy {method} {endpoint} timed out after {self._timeout}s")
            raise ProviderTimeoutError(
                endpoint=endpoint,
                method=method,
                timeout=self._timeout,
            )
        except httpx.RequestError as e:
            logger.error(f"LemonSqueezy {method} {endpoint} connection error: {e}")
            raise ProviderError(
                message=f"Billing provider connection error: {e}",
                endpoint=endpoint,
                method=method,
            )

        if response.status_code >= 400:
            detail = self._parse_error_response(response)
            logger.error(
                f"LemonSqueezy {method} {endpoint} failed with {response.status_code}: {detail}"
            )
            raise ProviderError(
                message=f"Billing provider error: {detail}",
                upstream_status=response.status_code,
                endpoint=endpoint,
                method=method,
            )

        if response.status_code == 204:
            return {}
        return response.json()

    def _parse_error_response(self, response: httpx.Response) -> str:
        """
        Extract the error detail from a JSON:API error document.

        Falls back to the raw body, then to the status code.
        """
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"

        errors = data.get("errors") if isinstance(data, dict) else None
        if errors and isinstance(errors, list):
            first = errors[0] or {}
            return first.get("detail") or first.get("title") or f"HTTP {response.status_code}"
        return response.text or f"HTTP {response.status_code}"

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        """
        Fetch a subscription's quantity, status, item id and renewal date.

        The quantity is that of the first subscription item, falling back to
        the subscription attribute.
        """
        body = await self._request("GET", f"/subscriptions/{subscription_id}")
        data = body.get("data") or {}
        attributes = data.get("attributes") or {}
        item = attributes.get("first_subscription_item") or {}

        quantity = item.get("quantity")
        if quantity is None:
            quantity = attributes.get("quantity")

        return ProviderSubscription(
            id=str(data.get("id", subscription_id)),
            status=attributes.get("status"),
            quantity=_to_int(quantity),
            subscription_item_id=_to_str(item.get("id")),
            renews_at=parse_provider_datetime(attributes.get("renews_at")),
            variant_id=_to_str(attributes.get("variant_id")),
        )

    async def update_subscription_item(
        self,
        item_id: str,
        quantity: int,
        *,
        disable_prorations: bool = False,
        invoice_immediately: bool = False,
    ) -> Dict[str, Any]:
        """
        Set a subscription item's quantity.

        Args:
            item_id: Provider subscription item id
            quantity: New seat count
            disable_prorations: True defers the change to the next renewal
            invoice_immediately: Charge the prorated difference now
        """
        attributes: Dict[str, Any] = {
            "quantity": quantity,
            "disable_prorations": disable_prorations,
        }
        if invoice_immediately and not disable_prorations:
            attributes["invoice_immediately"] = True

        return await self._request(
            "PATCH",
            f"/subscription-items/{item_id}",
            data={
                "data": {
                    "type": "subscription-items",
                    "id": str(item_id),
                    "attributes": attributes,
                }
            },
        )

    async def create_usage_record(
        self,
        item_id: str,
        quantity: int,
        *,
        action: str = "increment",
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record usage against a usage-billed subscription item.

        ``increment`` adds ``quantity`` to the usage already recorded this
        period; ``set`` would replace it, lowering what was billed so far.
        """
        attributes: Dict[str, Any] = {"quantity": quantity, "action": action}
        if description:
            attributes["description"] = description

        return await self._request(
            "POST",
            "/usage-records",
            data={
                "data": {
                    "type": "usage-records",
                    "attributes": attributes,
                    "relationships": {
                        "subscription-item": {
                            "data": {"type": "subscription-items", "id": str(item_id)}
                        }
                    },
                }
            },
        )


def get_provider_client() -> LemonSqueezyClient:
    """
    Build a client from settings.

    Raises:
        ConfigurationError: LEMONSQUEEZY_API_KEY or LEMONSQUEEZY_STORE_ID is not set
    """
    if not settings.LEMONSQUEEZY_API_KEY:
        raise ConfigurationError(
            message="LemonSqueezy API key is not configured",
            setting="LEMONSQUEEZY_API_KEY",
        )
    if not settings.LEMONSQUEEZY_STORE_ID:
        raise ConfigurationError(
            message="LemonSqueezy store id is not configured",
            setting="LEMONSQUEEZY_STORE_ID",
        )
    return LemonSqueezyClient(
        api_key=settings.LEMONSQUEEZY_API_KEY,
        base_url=settings.LEMONSQUEEZY_API_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
