"""
LemonSqueezy webhook processing.

WHAT: Applies provider-originated subscription events to local subscription
rows: creation at checkout, status and quantity updates, the renewal
payment that promotes pending seats and archives members pending removal,
and cancellation or expiry.

WHY: Webhooks are how the provider confirms state. They can arrive at any
time, more than once, and concurrently with a seat change or a background
job touching the same row, so:
- Every event id is recorded in the billing event ledger and a redelivery
  of an already handled event is acknowledged without being applied again
- Seat fields are written with the same versioned compare-and-swap the
  seat manager uses

HOW:
1. verify_signature() checks ``X-Signature`` (HMAC-SHA256 of the raw body)
2. WebhookService.process() de-duplicates on ``meta.event_id``
3. The event is dispatched by ``meta.event_name``; unknown names are
   recorded as skipped
4. A handler failure rolls back its partial writes, records the event as
   failed (so the provider's redelivery is processed again) and re-raises
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.config import settings
from seatsync.core.exceptions import (
    AppException,
    ConcurrentModificationError,
    OrganizationNotFoundError,
    SubscriptionNotFoundError,
    ValidationError,
)
from seatsync.dao.billing_event import BillingEventDAO
from seatsync.dao.membership import MembershipDAO
from seatsync.dao.organization import OrganizationDAO
from seatsync.dao.subscription import SubscriptionDAO
from seatsync.models.billing_event import BillingEventStatus
from seatsync.models.subscription import BillingType, Subscription, SubscriptionStatus
from seatsync.services.alert_service import AlertService
from seatsync.services.lemonsqueezy_client import parse_provider_datetime
from seatsync.services.seat_calculator import required_paid_seats

logger = logging.getLogger(__name__)

JOB_NAME = "webhook"

SIGNATURE_PREFIX = "sha256="

# LemonSqueezy reports "unpaid" after dunning fails; locally that is past due.
STATUS_MAP = {
    "on_trial": SubscriptionStatus.ON_TRIAL,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAUSED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "expired": SubscriptionStatus.EXPIRED,
}


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check a webhook signature in constant time.

    Accepts the bare hex digest as well as the ``sha256=<hex>`` form.
    """
    if not raw_body or not signature or not secret:
        return False

    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]

    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def _map_status(value: Optional[str]) -> SubscriptionStatus:
    status = STATUS_MAP.get(value or "")
    if status is None:
        raise ValidationError(message=f"Invalid subscription status: {value}", status=value)
    return status


def _to_int(value: Any, field: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(message=f"Invalid integer for {field}", field=field, value=value)


@dataclass
class WebhookResult:
    """Outcome of one delivery, returned to the provider as the response body."""

    event_name: str
    event_id: str
    status: str
    message: str
    subscription_id: Optional[int] = None
    duplicate: bool = False


class WebhookService:
    """
    Processes verified LemonSqueezy webhook payloads.

    Commits its own work: the ledger entry must be stored together with
    the subscription change it describes.
    """

    def __init__(self, session: AsyncSession, alert_service: Optional[AlertService] = None):
        self.session = session
        self.subscription_dao = SubscriptionDAO(session)
        self.organization_dao = OrganizationDAO(session)
        self.membership_dao = MembershipDAO(session)
        self.event_dao = BillingEventDAO(session)
        self.alert_service = alert_service or AlertService(session)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[WebhookResult]]] = {
            "subscription_created": self._subscription_created,
            "subscription_updated": self._subscription_updated,
            "subscription_payment_success": self._payment_success,
            "subscription_cancelled": self._subscription_ended,
            "subscription_expired": self._subscription_ended,
        }

    async def process(self, payload: Dict[str, Any]) -> WebhookResult:
        """
        Apply one webhook event exactly once.

        Args:
            payload: Parsed JSON body

        Returns:
            WebhookResult; ``duplicate`` is True for an event already handled

        Raises:
            ValidationError: Payload lacks ``meta.event_name`` or is malformed
            AppException: Handler failure (the event is recorded as failed)
        """
        meta = payload.get("meta") or {}
        event_name = meta.get("event_name")
        if not event_name:
            raise ValidationError(message="Webhook payload missing meta.event_name")

        event_id = meta.get("event_id") or self._fallback_event_id(event_name, payload)

        existing = await self.event_dao.get_by_event_id(event_id)
        if existing and existing.status != BillingEventStatus.FAILED:
            logger.info(f"Webhook {event_name} ({event_id}) already handled, skipping")
            return WebhookResult(
                event_name=event_name,
                event_id=event_id,
                status=existing.status.value,
                message="Event already processed",
                duplicate=True,
            )

        handler = self._handlers.get(event_name)
        if handler is None:
            logger.info(f"Unsupported webhook event type: {event_name}")
            result = WebhookResult(
                event_name=event_name,
                event_id=event_id,
                status=BillingEventStatus.SKIPPED.value,
                message=f"Unsupported event type: {event_name}",
            )
            await self._record(event_id, event_name, payload, BillingEventStatus.SKIPPED, result.message)
            await self.session.commit()
            return result

        try:
            result = await handler(payload)
            result.event_id = event_id
        except AppException as e:
            await self.session.rollback()
            logger.error(f"Webhook {event_name} ({event_id}) failed: {e.message}")
            await self._record(event_id, event_name, payload, BillingEventStatus.FAILED, e.message)
            await self.session.commit()
            raise

        await self._record(
            event_id, event_name, payload, BillingEventStatus(result.status), result.message
        )
        await self.session.commit()
        logger.info(f"Webhook {event_name} ({event_id}): {result.message}")
        return result

    @staticmethod
    def _fallback_event_id(event_name: str, payload: Dict[str, Any]) -> str:
        data_id = (payload.get("data") or {}).get("id") or "unknown"
        return f"{event_name}-{data_id}-{int(time.time() * 1000)}"

    async def _record(
        self,
        event_id: str,
        event_name: str,
        payload: Dict[str, Any],
        status: BillingEventStatus,
        message: Optional[str],
    ) -> None:
        existing = await self.event_dao.get_by_event_id(event_id)
        error = message if status == BillingEventStatus.FAILED else None
        if existing:
            await self.event_dao.update(existing.id, status=status, payload=payload, error=error)
        else:
            await self.event_dao.create(
                event_id=event_id,
                event_name=event_name,
                status=status,
                payload=payload,
                error=error,
            )

    # ========================================================================
    # Event handlers
    # ========================================================================

    async def _subscription_created(self, payload: Dict[str, Any]) -> WebhookResult:
        """
        Link a new provider subscription to its organization.

        The organization comes from ``meta.custom_data.organization_id``
        (set at checkout). A redelivered creation for a known subscription
        refreshes it instead of inserting a second row.
        """
        meta = payload["meta"]
        custom_data = meta.get("custom_data") or {}
        data = payload.get("data") or {}
        attributes = data.get("attributes") or {}
        provider_id = self._provider_id(data.get("id"))

        organization_id = _to_int(custom_data.get("organization_id"), "organization_id")
        if organization_id is None:
            raise ValidationError(
                message="Missing organization_id in webhook custom_data",
                provider_subscription_id=provider_id,
            )
        organization = await self.organization_dao.get_by_id(organization_id)
        if not organization:
            raise OrganizationNotFoundError(organization_id=organization_id)

        try:
            billing_type = BillingType(custom_data.get("billing_type") or BillingType.USAGE_BASED.value)
        except ValueError:
            raise ValidationError(
                message=f"Unknown billing type: {custom_data.get('billing_type')}",
                provider_subscription_id=provider_id,
            )

        item = attributes.get("first_subscription_item") or {}
        seats = _to_int(custom_data.get("user_count"), "user_count")
        if seats is None:
            seats = _to_int(item.get("quantity"), "quantity") or 0

        values = {
            "status": _map_status(attributes.get("status")),
            "renews_at": parse_provider_datetime(attributes.get("renews_at")),
            "provider_subscription_item_id": self._provider_id(item.get("id")) if item.get("id") else None,
            "variant_id": self._provider_id(attributes.get("variant_id")) if attributes.get("variant_id") else None,
        }

        existing = await self.subscription_dao.get_by_provider_subscription_id(provider_id)
        if existing:
            subscription = await self._write(existing, **values, current_seats=seats)
            message = f"Subscription {provider_id} refreshed from redelivered creation"
        else:
            subscription = await self.subscription_dao.create(
                organization_id=organization_id,
                provider_subscription_id=provider_id,
                billing_type=billing_type,
                current_seats=seats,
                quantity_synced=False,
                **values,
            )
            message = f"Subscription {provider_id} created with {seats} seats"

        migrated_from = custom_data.get("migration_from_subscription_id")
        if migrated_from:
            await self._retire_migrated(str(migrated_from), provider_id)

        await self._sync_paid_seats(organization_id, seats)

        return WebhookResult(
            event_name=meta["event_name"],
            event_id="",
            status=BillingEventStatus.PROCESSED.value,
            message=message,
            subscription_id=subscription.id,
        )

    async def _subscription_updated(self, payload: Dict[str, Any]) -> WebhookResult:
        """
        Refresh status, renewal date and item id.

        Usage-based subscriptions keep their locally managed seat count
        (the provider quantity does not track seats there). Quantity-based
        and legacy subscriptions take the provider quantity, except while a
        pushed pending change waits for renewal: then the provider already
        shows the pending count and the promotion happens on payment.
        """
        data = payload.get("data") or {}
        attributes = data.get("attributes") or {}
        subscription = await self._find(self._provider_id(data.get("id")))

        item = attributes.get("first_subscription_item") or {}
        values: Dict[str, Any] = {
            "status": _map_status(attributes.get("status")),
            "renews_at": parse_provider_datetime(attributes.get("renews_at")),
        }
        if item.get("id"):
            values["provider_subscription_item_id"] = self._provider_id(item["id"])

        quantity = _to_int(item.get("quantity"), "quantity")
        tracks_quantity = subscription.billing_type in (
            BillingType.QUANTITY_BASED,
            BillingType.LEGACY_VOLUME,
        )
        awaiting_renewal = (
            subscription.pending_seats is not None and quantity == subscription.pending_seats
        )
        if tracks_quantity and quantity is not None and not awaiting_renewal:
            values["current_seats"] = quantity

        subscription = await self._write(subscription, **values)
        if "current_seats" in values:
            await self._sync_paid_seats(subscription.organization_id, subscription.current_seats)

        return WebhookResult(
            event_name=payload["meta"]["event_name"],
            event_id="",
            status=BillingEventStatus.PROCESSED.value,
            message=(
                f"Subscription {subscription.provider_subscription_id} updated: "
                f"status={subscription.status.value}, seats={subscription.current_seats}"
            ),
            subscription_id=subscription.id,
        )

    async def _payment_success(self, payload: Dict[str, Any]) -> WebhookResult:
        """
        Renewal boundary: promote pending seats and archive removed members.

        ``data`` is a subscription invoice here; the subscription id is in
        its attributes. Members pending removal lose their seat now that
        the period they paid for has ended.

        A pending count the provider never received is still promoted, as
        it reflects the members the organization kept, but a warning alert
        flags the drift for reconciliation.
        """
        attributes = (payload.get("data") or {}).get("attributes") or {}
        subscription = await self._find(self._provider_id(attributes.get("subscription_id")))
        organization_id = subscription.organization_id

        archived = await self.membership_dao.archive_pending_removals(organization_id)
        archived_note = f"; {archived} member(s) archived" if archived else ""

        if subscription.pending_seats is None:
            return WebhookResult(
                event_name=payload["meta"]["event_name"],
                event_id="",
                status=BillingEventStatus.PROCESSED.value,
                message=(
                    f"Payment confirmed for subscription "
                    f"{subscription.provider_subscription_id}{archived_note}"
                ),
                subscription_id=subscription.id,
            )

        previous_seats = subscription.current_seats
        new_seats = subscription.pending_seats
        unsynced = subscription.has_unsynced_change
        if unsynced:
            await self.alert_service.send_warning(
                f"Pending seat change for subscription {subscription.provider_subscription_id} "
                f"was promoted at renewal before reaching the billing provider",
                {
                    "subscription_id": subscription.id,
                    "organization_id": organization_id,
                    "previous_seats": previous_seats,
                    "pending_seats": new_seats,
                },
                job=JOB_NAME,
            )

        subscription = await self._write(
            subscription,
            expect_pending=new_seats,
            current_seats=new_seats,
            pending_seats=None,
            quantity_synced=False,
        )
        await self._sync_paid_seats(organization_id, new_seats)

        unsynced_note = " (provider was not updated)" if unsynced else ""
        return WebhookResult(
            event_name=payload["meta"]["event_name"],
            event_id="",
            status=BillingEventStatus.PROCESSED.value,
            message=(
                f"Pending seat change applied for subscription "
                f"{subscription.provider_subscription_id}: {previous_seats} -> {new_seats}"
                f"{unsynced_note}{archived_note}"
            ),
            subscription_id=subscription.id,
        )

    async def _subscription_ended(self, payload: Dict[str, Any]) -> WebhookResult:
        """Cancellation or expiry: status only, seats stay for the audit trail."""
        data = payload.get("data") or {}
        attributes = data.get("attributes") or {}
        subscription = await self._find(self._provider_id(data.get("id")))

        event_name = payload["meta"]["event_name"]
        default = "expired" if event_name == "subscription_expired" else "cancelled"
        subscription = await self._write(
            subscription, status=_map_status(attributes.get("status") or default)
        )

        return WebhookResult(
            event_name=event_name,
            event_id="",
            status=BillingEventStatus.PROCESSED.value,
            message=(
                f"Subscription {subscription.provider_subscription_id} is now "
                f"{subscription.status.value}"
            ),
            subscription_id=subscription.id,
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _provider_id(value: Any) -> str:
        if value is None or value == "":
            raise ValidationError(message="Webhook payload missing subscription id")
        return str(value)

    async def _find(self, provider_subscription_id: str) -> Subscription:
        subscription = await self.subscription_dao.get_by_provider_subscription_id(
            provider_subscription_id
        )
        if not subscription:
            raise SubscriptionNotFoundError(provider_subscription_id=provider_subscription_id)
        return subscription

    async def _write(
        self,
        subscription: Subscription,
        expect_pending: Optional[int] = None,
        **values: Any,
    ) -> Subscription:
        """
        Compare-and-swap ``values`` onto the subscription row.

        On a version conflict the row is re-read and the write retried.
        With ``expect_pending`` set, the retry is abandoned if another
        writer replaced the pending seat count in the meantime.

        Raises:
            ConcurrentModificationError: Retry budget exhausted
        """
        subscription_id = subscription.id
        expected_version = subscription.version

        for attempt in range(settings.SEAT_WRITE_MAX_RETRIES):
            if await self.subscription_dao.compare_and_set(
                subscription_id, expected_version, **values
            ):
                return await self.subscription_dao.get_fresh(subscription_id)

            latest = await self.subscription_dao.get_fresh(subscription_id)
            if latest is None:
                raise SubscriptionNotFoundError(subscription_id=subscription_id)
            if expect_pending is not None and latest.pending_seats != expect_pending:
                break
            logger.warning(
                f"Version conflict writing subscription {subscription_id} "
                f"(attempt {attempt + 1}), retrying"
            )
            expected_version = latest.version

        raise ConcurrentModificationError(
            message="Subscription changed concurrently while applying webhook",
            subscription_id=subscription_id,
        )

    async def _retire_migrated(self, old_provider_id: str, new_provider_id: str) -> None:
        old = await self.subscription_dao.get_by_provider_subscription_id(old_provider_id)
        if not old:
            logger.warning(
                f"Migration source subscription {old_provider_id} not found "
                f"for {new_provider_id}"
            )
            return
        await self._write(old, status=SubscriptionStatus.CANCELLED)
        logger.info(f"Subscription {old_provider_id} replaced by {new_provider_id}")

    async def _sync_paid_seats(self, organization_id: int, seats: int) -> None:
        """Organization paid seats follow the confirmed subscription seat count."""
        await self.organization_dao.update(organization_id, paid_seats=required_paid_seats(seats))
