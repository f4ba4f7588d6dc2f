"""
Integration tests for the LemonSqueezy webhook endpoint.

WHAT: Tests signature checks and event processing through the HTTP
surface, signing bodies the way the provider does.
"""

import hashlib
import hmac
import json

import pytest
from httpx import AsyncClient

from seatsync.dao.subscription import SubscriptionDAO
from tests.factories import OrganizationFactory, SubscriptionFactory, provider_payload

WEBHOOK_URL = "/api/webhooks/lemonsqueezy"


async def _post(client: AsyncClient, payload, secret: str = "test-webhook-secret"):
    body = json.dumps(payload).encode()
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return await client.post(
        WEBHOOK_URL,
        content=body,
        headers={"X-Signature": signature, "Content-Type": "application/json"},
    )


class TestWebhookSignature:
    @pytest.mark.asyncio
    async def test_missing_signature(self, client: AsyncClient):
        response = await client.post(WEBHOOK_URL, json={"meta": {"event_name": "x"}})

        assert response.status_code == 401
        assert response.json()["error"] == "WebhookSignatureError"

    @pytest.mark.asyncio
    async def test_wrong_secret(self, client: AsyncClient):
        response = await _post(
            client, provider_payload("subscription_updated", "sub_1"), secret="wrong"
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unconfigured_secret(self, client: AsyncClient, monkeypatch):
        from seatsync.core import config

        monkeypatch.setattr(config.settings, "LEMONSQUEEZY_WEBHOOK_SECRET", None)

        response = await _post(client, provider_payload("subscription_updated", "sub_1"))

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_signed_non_object_body(self, client: AsyncClient):
        response = await _post(client, ["not", "an", "object"])

        assert response.status_code == 400


class TestWebhookProcessing:
    @pytest.mark.asyncio
    async def test_subscription_created(self, client: AsyncClient, db_session):
        org = await OrganizationFactory.create(db_session)

        response = await _post(
            client,
            provider_payload(
                "subscription_created",
                "sub_http",
                event_id="evt_http_1",
                quantity=4,
                custom_data={"organization_id": org.id, "billing_type": "quantity_based"},
            ),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["received"] is True
        assert body["status"] == "processed"
        assert body["duplicate"] is False
        assert body["event_id"] == "evt_http_1"

        subscription = await SubscriptionDAO(db_session).get_by_provider_subscription_id("sub_http")
        assert subscription.current_seats == 4

    @pytest.mark.asyncio
    async def test_duplicate_acknowledged(self, client: AsyncClient, db_session):
        org = await OrganizationFactory.create(db_session)
        await SubscriptionFactory.create(
            db_session, organization_id=org.id, provider_subscription_id="sub_dup"
        )
        payload = provider_payload("subscription_updated", "sub_dup", event_id="evt_dup", quantity=6)

        await _post(client, payload)
        response = await _post(client, payload)

        assert response.status_code == 200
        assert response.json()["duplicate"] is True

    @pytest.mark.asyncio
    async def test_unsupported_event_acknowledged(self, client: AsyncClient):
        response = await _post(client, provider_payload("order_refunded", "ord_9", event_id="evt_o"))

        assert response.status_code == 200
        assert response.json()["status"] == "skipped"

    @pytest.mark.asyncio
    async def test_unknown_subscription_returns_error_for_retry(self, client: AsyncClient):
        response = await _post(
            client, provider_payload("subscription_updated", "sub_ghost", event_id="evt_ghost")
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_payment_success_promotes_pending(self, client: AsyncClient, db_session):
        org = await OrganizationFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session,
            organization_id=org.id,
            current_seats=5,
            pending_seats=3,
            quantity_synced=True,
            provider_subscription_id="sub_pay",
        )
        payload = {
            "meta": {"event_name": "subscription_payment_success", "event_id": "evt_pay_http"},
            "data": {
                "type": "subscription-invoices",
                "id": "inv_7",
                "attributes": {"subscription_id": "sub_pay"},
            },
        }

        response = await _post(client, payload)

        assert response.status_code == 200
        assert response.json()["subscription_id"] == subscription.id
        fresh = await SubscriptionDAO(db_session).get_fresh(subscription.id)
        assert fresh.current_seats == 3
        assert fresh.pending_seats is None
