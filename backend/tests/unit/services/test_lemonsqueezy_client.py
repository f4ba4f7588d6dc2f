"""
Unit tests for the LemonSqueezy client.

WHAT: Tests request construction and error mapping.

HOW: Patches httpx.AsyncClient, so no request leaves the process.
"""

from datetime import datetime

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from seatsync.core.exceptions import ConfigurationError, ProviderError, ProviderTimeoutError
from seatsync.services.lemonsqueezy_client import (
    LemonSqueezyClient,
    get_provider_client,
    parse_provider_datetime,
)


def _response(status_code: int, json_body=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if json_body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_body
    return response


@pytest.fixture
def ls_client():
    return LemonSqueezyClient(api_key="test-key", base_url="https://api.test/v1", timeout=5.0)


class TestClientSetup:
    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            LemonSqueezyClient(api_key="")

    def test_get_provider_client_without_key(self, monkeypatch):
        from seatsync.core import config

        monkeypatch.setattr(config.settings, "LEMONSQUEEZY_API_KEY", None)
        with pytest.raises(ConfigurationError) as exc_info:
            get_provider_client()
        assert exc_info.value.status_code == 503

    def test_get_provider_client_without_store_id(self, monkeypatch):
        from seatsync.core import config

        monkeypatch.setattr(config.settings, "LEMONSQUEEZY_API_KEY", "test-key")
        monkeypatch.setattr(config.settings, "LEMONSQUEEZY_STORE_ID", None)
        with pytest.raises(ConfigurationError) as exc_info:
            get_provider_client()
        assert exc_info.value.context["setting"] == "LEMONSQUEEZY_STORE_ID"

    def test_get_provider_client_configured(self, monkeypatch):
        from seatsync.core import config

        monkeypatch.setattr(config.settings, "LEMONSQUEEZY_API_KEY", "test-key")
        monkeypatch.setattr(config.settings, "LEMONSQUEEZY_STORE_ID", "12345")

        assert isinstance(get_provider_client(), LemonSqueezyClient)

    def test_parse_provider_datetime_to_naive_utc(self):
        parsed = parse_provider_datetime("2026-05-01T10:00:00.000000Z")
        assert parsed == datetime(2026, 5, 1, 10, 0, 0)
        assert parse_provider_datetime(None) is None


class TestGetSubscription:
    @pytest.mark.asyncio
    async def test_reads_quantity_from_first_item(self, ls_client):
        body = {
            "data": {
                "id": "123",
                "attributes": {
                    "status": "active",
                    "renews_at": "2026-05-01T10:00:00.000000Z",
                    "variant_id": 9,
                    "first_subscription_item": {"id": 456, "quantity": 7},
                },
            }
        }
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_request = AsyncMock(return_value=_response(200, body))
            mock_client.return_value.__aenter__.return_value.request = mock_request

            subscription = await ls_client.get_subscription("123")

        assert subscription.quantity == 7
        assert subscription.subscription_item_id == "456"
        assert subscription.status == "active"
        assert subscription.renews_at == datetime(2026, 5, 1, 10, 0, 0)
        assert subscription.variant_id == "9"

        kwargs = mock_request.call_args.kwargs
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "https://api.test/v1/subscriptions/123"
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"
        assert kwargs["headers"]["Accept"] == "application/vnd.api+json"

    @pytest.mark.asyncio
    async def test_falls_back_to_subscription_quantity(self, ls_client):
        body = {"data": {"id": "123", "attributes": {"status": "active", "quantity": 4}}}
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.request = AsyncMock(
                return_value=_response(200, body)
            )

            subscription = await ls_client.get_subscription("123")

        assert subscription.quantity == 4
        assert subscription.subscription_item_id is None


class TestUpdateSubscriptionItem:
    @pytest.mark.asyncio
    async def test_patch_body_with_immediate_invoice(self, ls_client):
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_request = AsyncMock(return_value=_response(200, {"data": {}}))
            mock_client.return_value.__aenter__.return_value.request = mock_request

            await ls_client.update_subscription_item("456", 8, invoice_immediately=True)

        kwargs = mock_request.call_args.kwargs
        assert kwargs["method"] == "PATCH"
        assert kwargs["url"].endswith("/subscription-items/456")
        assert kwargs["json"] == {
            "data": {
                "type": "subscription-items",
                "id": "456",
                "attributes": {
                    "quantity": 8,
                    "disable_prorations": False,
                    "invoice_immediately": True,
                },
            }
        }

    @pytest.mark.asyncio
    async def test_disabled_prorations_never_invoice(self, ls_client):
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_request = AsyncMock(return_value=_response(200, {"data": {}}))
            mock_client.return_value.__aenter__.return_value.request = mock_request

            await ls_client.update_subscription_item(
                "456", 8, disable_prorations=True, invoice_immediately=True
            )

        attributes = mock_request.call_args.kwargs["json"]["data"]["attributes"]
        assert attributes == {"quantity": 8, "disable_prorations": True}


class TestCreateUsageRecord:
    @pytest.mark.asyncio
    async def test_usage_record_body(self, ls_client):
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_request = AsyncMock(return_value=_response(201, {"data": {}}))
            mock_client.return_value.__aenter__.return_value.request = mock_request

            await ls_client.create_usage_record("456", 2, description="2 seats added")

        kwargs = mock_request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"].endswith("/usage-records")
        data = kwargs["json"]["data"]
        assert data["type"] == "usage-records"
        assert data["attributes"]["quantity"] == 2
        assert data["attributes"]["action"] == "increment"
        assert data["relationships"]["subscription-item"]["data"] == {
            "type": "subscription-items",
            "id": "456",
        }


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_error_status_raises_provider_error_with_detail(self, ls_client):
        body = {"errors": [{"detail": "The quantity must be at least 1."}]}
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.request = AsyncMock(
                return_value=_response(422, body)
            )

            with pytest.raises(ProviderError) as exc_info:
                await ls_client.update_subscription_item("456", 0)

        assert "The quantity must be at least 1." in exc_info.value.message
        assert exc_info.value.context["upstream_status"] == 422
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, ls_client):
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.request = AsyncMock(
                return_value=_response(503, text="Service Unavailable")
            )

            with pytest.raises(ProviderError) as exc_info:
                await ls_client.get_subscription("123")

        assert "Service Unavailable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_is_unknown_outcome(self, ls_client):
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.request = AsyncMock(
                side_effect=httpx.ReadTimeout("timed out")
            )

            with pytest.raises(ProviderTimeoutError) as exc_info:
                await ls_client.update_subscription_item("456", 8)

        assert exc_info.value.status_code == 504
        assert exc_info.value.context["outcome"] == "unknown"

    @pytest.mark.asyncio
    async def test_connection_error(self, ls_client):
        with patch("seatsync.services.lemonsqueezy_client.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.request = AsyncMock(
                side_effect=httpx.ConnectError("refused")
            )

            with pytest.raises(ProviderError):
                await ls_client.get_subscription("123")
