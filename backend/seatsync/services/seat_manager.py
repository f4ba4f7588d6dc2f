"""
Seat manager.

WHAT: Applies a requested seat count to a subscription, on the billing
provider and in our database, using the mechanism its billing type needs.

WHY: Three billing models exist side by side:
1. usage_based (monthly): added seats reported as a usage increment,
   billed at the end of the period, no refund on decrease
2. quantity_based (annual): item quantity patched with proration, the
   difference charged or credited immediately
3. legacy_volume: cannot be changed in place at all

Each model is one BillingStrategy registered in BILLING_STRATEGIES, so a
new model is one new class instead of another branch at every call site.

HOW (per change):
1. Load the subscription and its strategy; legacy fails fast
2. Return a no-op result when the count is unchanged
3. Resolve the provider item id, fetching and storing it if missing
4. Call the provider
5. Only after the provider accepted, compare-and-swap the seat fields;
   on a version conflict re-read and retry

A provider failure leaves every seat field untouched. A provider timeout
is an unknown outcome: nothing is written locally and reconciliation
reports any drift.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.config import settings
from seatsync.core.exceptions import (
    ConcurrentModificationError,
    DatabaseError,
    LegacyBillingError,
    ProviderError,
    ProviderTimeoutError,
    SubscriptionNotFoundError,
    ValidationError,
)
from seatsync.dao.subscription import SubscriptionDAO
from seatsync.middleware.request_context import new_correlation_id
from seatsync.models.subscription import BillingType, Subscription
from seatsync.services.alert_service import AlertService
from seatsync.services.lemonsqueezy_client import LemonSqueezyClient, get_provider_client

logger = logging.getLogger(__name__)

JOB_NAME = "seat_manager"

CHARGED_IMMEDIATELY = "immediately"
CHARGED_END_OF_PERIOD = "end_of_period"

DAYS_PER_YEAR = 365
CENTS = Decimal("0.01")


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class ProrationPreview:
    """Cost of a quantity-based seat change for the rest of the period."""

    applicable: bool
    amount: Decimal
    days_remaining: int
    seats_added: int
    message: str
    yearly_price_per_seat: Optional[Decimal] = None


@dataclass(frozen=True)
class StrategyOutcome:
    charged_at: str
    message: str


@dataclass
class SeatChangeResult:
    """
    Result of a seat change.

    ``changed`` is False for the no-op short circuit, in which case
    ``charged_at`` is None and the provider was not contacted.
    """

    subscription_id: int
    organization_id: int
    billing_type: BillingType
    changed: bool
    previous_seats: int
    current_seats: int
    message: str
    correlation_id: str
    charged_at: Optional[str] = None
    proration_amount: Optional[Decimal] = None
    days_remaining: Optional[int] = None
    queued_invitations: List[Dict[str, Any]] = field(default_factory=list)


def calculate_proration(
    current_seats: int,
    new_quantity: int,
    renews_at: Optional[datetime],
    yearly_price_per_seat: Decimal,
    now: Optional[datetime] = None,
) -> ProrationPreview:
    """
    Prorated charge for adding seats to an annual subscription.

    Formula: seats_added * yearly_price * days_remaining / 365, rounded to
    cents. Partial days count as a whole day. Removing seats costs nothing
    now; the credit lands at renewal.
    """
    current = now or datetime.utcnow()
    days_remaining = 0
    if renews_at is not None:
        seconds = (renews_at - current).total_seconds()
        days_remaining = max(0, math.ceil(seconds / 86400))

    seats_added = max(0, new_quantity - current_seats)
    if seats_added == 0:
        return ProrationPreview(
            applicable=True,
            amount=Decimal("0.00"),
            days_remaining=days_remaining,
            seats_added=0,
            message="Credit will be applied at next renewal",
        )

    amount = (
        Decimal(seats_added) * yearly_price_per_seat * Decimal(days_remaining) / Decimal(DAYS_PER_YEAR)
    ).quantize(CENTS, rounding=ROUND_HALF_UP)
    plural = "s" if seats_added != 1 else ""
    return ProrationPreview(
        applicable=True,
        amount=amount,
        days_remaining=days_remaining,
        seats_added=seats_added,
        message=f"{seats_added} seat{plural} for {days_remaining} days",
        yearly_price_per_seat=yearly_price_per_seat,
    )


# ============================================================================
# Billing strategies
# ============================================================================


class BillingStrategy(ABC):
    """One way of applying a seat count on the provider."""

    billing_type: BillingType

    def ensure_supported(self, subscription: Subscription) -> None:
        """Raise if seat changes are impossible for this billing type."""
        return None

    def calls_provider(self, current_seats: int, new_quantity: int) -> bool:
        """Whether applying this change needs the provider at all."""
        return True

    def preview(
        self,
        current_seats: int,
        new_quantity: int,
        renews_at: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> ProrationPreview:
        return ProrationPreview(
            applicable=False,
            amount=Decimal("0.00"),
            days_remaining=0,
            seats_added=0,
            message=f"Proration not applicable for {self.billing_type.value} subscriptions",
        )

    @abstractmethod
    async def apply(
        self,
        client: LemonSqueezyClient,
        item_id: str,
        current_seats: int,
        new_quantity: int,
        *,
        invoice_immediately: bool,
        proration: ProrationPreview,
        correlation_id: str,
    ) -> StrategyOutcome:
        """Push ``new_quantity`` to the provider."""


class UsageBasedStrategy(BillingStrategy):
    """
    Monthly plans: report added seats as usage.

    Usage already recorded this period stays billed. An increase adds the
    new seats to it; a decrease records nothing and only lowers the local
    entitlement, which the next period's usage starts from.
    """

    billing_type = BillingType.USAGE_BASED

    def calls_provider(self, current_seats: int, new_quantity: int) -> bool:
        return new_quantity > current_seats

    async def apply(
        self,
        client,
        item_id,
        current_seats,
        new_quantity,
        *,
        invoice_immediately,
        proration,
        correlation_id,
    ):
        if new_quantity < current_seats:
            return StrategyOutcome(
                charged_at=CHARGED_END_OF_PERIOD,
                message="Seat reduction applies from the next billing period; no refund for the current period",
            )

        seats_added = new_quantity - current_seats
        await client.create_usage_record(
            item_id,
            seats_added,
            action="increment",
            description=f"{seats_added} seat(s) added, {new_quantity} total ({correlation_id})",
        )
        return StrategyOutcome(
            charged_at=CHARGED_END_OF_PERIOD,
            message="New seats will be billed at end of current billing period",
        )


class QuantityBasedStrategy(BillingStrategy):
    """Annual plans: patch the item quantity with proration."""

    billing_type = BillingType.QUANTITY_BASED

    def preview(self, current_seats, new_quantity, renews_at, now=None):
        return calculate_proration(
            current_seats, new_quantity, renews_at, settings.YEARLY_PRICE_PER_SEAT, now=now
        )

    async def apply(
        self,
        client,
        item_id,
        current_seats,
        new_quantity,
        *,
        invoice_immediately,
        proration,
        correlation_id,
    ):
        await client.update_subscription_item(
            item_id,
            new_quantity,
            disable_prorations=False,
            invoice_immediately=invoice_immediately,
        )
        if proration.seats_added > 0:
            message = (
                f"You will be charged ${proration.amount:.2f} "
                f"for {proration.days_remaining} remaining days"
            )
        else:
            message = "Seats reduced; credit will be applied at next renewal"
        return StrategyOutcome(charged_at=CHARGED_IMMEDIATELY, message=message)


class LegacyVolumeStrategy(BillingStrategy):
    """Old volume pricing: every change requires a new subscription."""

    billing_type = BillingType.LEGACY_VOLUME

    def ensure_supported(self, subscription):
        raise LegacyBillingError(
            subscription_id=subscription.id,
            organization_id=subscription.organization_id,
        )

    async def apply(self, client, item_id, current_seats, new_quantity, **kwargs):
        raise LegacyBillingError()


BILLING_STRATEGIES: Dict[BillingType, BillingStrategy] = {
    strategy.billing_type: strategy
    for strategy in (UsageBasedStrategy(), QuantityBasedStrategy(), LegacyVolumeStrategy())
}


def get_billing_strategy(billing_type: BillingType) -> BillingStrategy:
    """
    Look up the strategy for a billing type.

    Raises:
        ValidationError: No strategy is registered for the type
    """
    try:
        return BILLING_STRATEGIES[BillingType(billing_type)]
    except (KeyError, ValueError):
        raise ValidationError(
            message=f"Unknown billing type: {billing_type}",
            billing_type=str(billing_type),
        )


# ============================================================================
# Seat manager
# ============================================================================


class SeatManager:
    """
    Applies seat changes to subscriptions.

    Args:
        session: Database session; the manager commits its own writes
        client_factory: Builds the provider client on first use
        alert_service: Alert sink (defaults to one on ``session``)
        max_retries: Compare-and-swap attempts before giving up
    """

    def __init__(
        self,
        session: AsyncSession,
        client_factory: Callable[[], LemonSqueezyClient] = get_provider_client,
        alert_service: Optional[AlertService] = None,
        max_retries: Optional[int] = None,
    ):
        self.session = session
        self.subscription_dao = SubscriptionDAO(session)
        self.alert_service = alert_service or AlertService(session)
        self.max_retries = max_retries or settings.SEAT_WRITE_MAX_RETRIES
        self._client_factory = client_factory
        self._client: Optional[LemonSqueezyClient] = None

    def _get_client(self) -> LemonSqueezyClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def _load(self, subscription_id: int) -> Subscription:
        subscription = await self.subscription_dao.get_fresh(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(subscription_id=subscription_id)
        return subscription

    async def add_seats(self, subscription_id: int, new_quantity: int, **kwargs: Any) -> SeatChangeResult:
        """Increase seats; a lower count is rejected, an equal one is a no-op."""
        return await self.change_seats(subscription_id, new_quantity, direction=1, **kwargs)

    async def remove_seats(self, subscription_id: int, new_quantity: int, **kwargs: Any) -> SeatChangeResult:
        """Decrease seats; a higher count is rejected, an equal one is a no-op."""
        return await self.change_seats(subscription_id, new_quantity, direction=-1, **kwargs)

    async def change_seats(
        self,
        subscription_id: int,
        new_quantity: int,
        *,
        queued_invitations: Optional[List[Dict[str, Any]]] = None,
        invoice_immediately: bool = True,
        correlation_id: Optional[str] = None,
        direction: int = 0,
    ) -> SeatChangeResult:
        """
        Set a subscription's seat count to ``new_quantity``.

        Args:
            subscription_id: Local subscription id
            new_quantity: Target total seats (>= 1)
            queued_invitations: Invitations the caller will send once this
                returns successfully; stored with the new seat count
            invoice_immediately: Quantity-based only, charge proration now
            correlation_id: Id for logs and alerts (generated if omitted)
            direction: 1 requires an increase, -1 a decrease, 0 either

        Raises:
            ValidationError: Bad quantity or wrong direction
            SubscriptionNotFoundError: Unknown subscription
            LegacyBillingError: Legacy volume subscription
            ProviderError / ProviderTimeoutError: Provider call failed
            ConcurrentModificationError: Local write lost every retry
        """
        if new_quantity < 1:
            raise ValidationError(
                message="Seat quantity must be at least 1", new_quantity=new_quantity
            )

        subscription = await self._load(subscription_id)
        strategy = get_billing_strategy(subscription.billing_type)
        strategy.ensure_supported(subscription)

        organization_id = subscription.organization_id
        previous_seats = subscription.current_seats
        correlation_id = correlation_id or new_correlation_id(f"seat-update-{organization_id}")

        if new_quantity == previous_seats:
            logger.info(
                f"[{correlation_id}] Subscription {subscription_id} already has {new_quantity} seats"
            )
            return SeatChangeResult(
                subscription_id=subscription_id,
                organization_id=organization_id,
                billing_type=subscription.billing_type,
                changed=False,
                previous_seats=previous_seats,
                current_seats=previous_seats,
                message="No change",
                correlation_id=correlation_id,
            )

        if direction > 0 and new_quantity < previous_seats:
            raise ValidationError(
                message="Use remove_seats to decrease seat count",
                current_seats=previous_seats,
                new_quantity=new_quantity,
            )
        if direction < 0 and new_quantity > previous_seats:
            raise ValidationError(
                message="Use add_seats to increase seat count",
                current_seats=previous_seats,
                new_quantity=new_quantity,
            )

        client = None
        if strategy.calls_provider(previous_seats, new_quantity):
            client = self._get_client()
            subscription = await self.resolve_subscription_item_id(subscription, client)
        item_id = subscription.provider_subscription_item_id
        expected_version = subscription.version
        proration = strategy.preview(previous_seats, new_quantity, subscription.renews_at)

        context = {
            "subscription_id": subscription_id,
            "organization_id": organization_id,
            "billing_type": subscription.billing_type.value,
            "previous_seats": previous_seats,
            "new_seats": new_quantity,
        }
        logger.info(f"[{correlation_id}] Changing seats", extra={"context": context})

        try:
            outcome = await strategy.apply(
                client,
                item_id,
                previous_seats,
                new_quantity,
                invoice_immediately=invoice_immediately,
                proration=proration,
                correlation_id=correlation_id,
            )
        except ProviderTimeoutError:
            await self.alert_service.send_warning(
                f"Seat change for subscription {subscription_id} timed out; provider outcome unknown",
                {**context, "outcome": "unknown"},
                job=JOB_NAME,
                correlation_id=correlation_id,
            )
            await self.session.commit()
            raise
        except ProviderError as e:
            await self.alert_service.send_warning(
                f"Provider rejected seat change for subscription {subscription_id}",
                {**context, "error": e.message},
                job=JOB_NAME,
                correlation_id=correlation_id,
            )
            await self.session.commit()
            raise

        await self._persist_seats(
            subscription,
            expected_version,
            new_quantity,
            queued_invitations,
            context,
            correlation_id,
        )

        logger.info(f"[{correlation_id}] Subscription {subscription_id} now has {new_quantity} seats")
        return SeatChangeResult(
            subscription_id=subscription_id,
            organization_id=organization_id,
            billing_type=strategy.billing_type,
            changed=True,
            previous_seats=previous_seats,
            current_seats=new_quantity,
            message=outcome.message,
            correlation_id=correlation_id,
            charged_at=outcome.charged_at,
            proration_amount=proration.amount if proration.applicable else None,
            days_remaining=proration.days_remaining if proration.applicable else None,
            queued_invitations=list(queued_invitations or []),
        )

    async def resolve_subscription_item_id(
        self, subscription: Subscription, client: LemonSqueezyClient
    ) -> Subscription:
        """
        Make sure the subscription knows its provider item id.

        Fetches it from the provider when missing and commits it straight
        away, so it survives even if the seat change itself fails.
        """
        if subscription.provider_subscription_item_id:
            return subscription

        if not subscription.provider_subscription_id:
            raise ValidationError(
                message="Subscription is not linked to the billing provider",
                subscription_id=subscription.id,
            )

        provider_subscription = await client.get_subscription(subscription.provider_subscription_id)
        if not provider_subscription.subscription_item_id:
            raise ProviderError(
                message="Billing provider returned no subscription item",
                subscription_id=subscription.id,
            )

        logger.info(
            f"Storing provider item id {provider_subscription.subscription_item_id} "
            f"for subscription {subscription.id}"
        )
        refreshed = await self.subscription_dao.set_item_id(
            subscription.id, provider_subscription.subscription_item_id
        )
        await self.session.commit()
        return refreshed

    async def _persist_seats(
        self,
        subscription: Subscription,
        expected_version: int,
        new_quantity: int,
        queued_invitations: Optional[List[Dict[str, Any]]],
        context: Dict[str, Any],
        correlation_id: str,
    ) -> None:
        """
        Compare-and-swap the new seat count after the provider accepted it.

        A pending change equal to the new count has just been applied, so it
        is cleared to keep pending and current seats distinct.
        """
        subscription_id = subscription.id
        pending_seats = subscription.pending_seats

        try:
            for attempt in range(1, self.max_retries + 1):
                values: Dict[str, Any] = {"current_seats": new_quantity}
                if pending_seats == new_quantity:
                    values.update(pending_seats=None, quantity_synced=False)
                if queued_invitations:
                    values["queued_invitations"] = list(queued_invitations)

                if await self.subscription_dao.compare_and_set(
                    subscription_id, expected_version, **values
                ):
                    await self.session.commit()
                    return

                logger.warning(
                    f"[{correlation_id}] Version conflict on subscription {subscription_id} "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                latest = await self.subscription_dao.get_fresh(subscription_id)
                if latest is None:
                    break
                expected_version = latest.version
                pending_seats = latest.pending_seats
        except SQLAlchemyError as e:
            await self.session.rollback()
            await self.alert_service.send_critical(
                f"Provider accepted seat change for subscription {subscription_id} "
                f"but the local write failed",
                {**context, "error": str(e)},
                job=JOB_NAME,
                correlation_id=correlation_id,
            )
            await self.session.commit()
            raise DatabaseError(
                message="Seat change applied on provider but not saved locally",
                subscription_id=subscription_id,
                correlation_id=correlation_id,
            ) from e

        await self.alert_service.send_critical(
            f"Provider accepted seat change for subscription {subscription_id} "
            f"but the local write kept conflicting",
            {**context, "attempts": self.max_retries},
            job=JOB_NAME,
            correlation_id=correlation_id,
        )
        await self.session.commit()
        raise ConcurrentModificationError(
            subscription_id=subscription_id,
            correlation_id=correlation_id,
        )

    async def preview_proration(
        self, subscription_id: int, new_quantity: int
    ) -> ProrationPreview:
        """
        Preview what a seat change would cost now.

        Uses the provider's renewal date when the subscription is linked,
        falling back to the locally stored one.
        """
        if new_quantity < 1:
            raise ValidationError(
                message="Seat quantity must be at least 1", new_quantity=new_quantity
            )

        subscription = await self._load(subscription_id)
        strategy = get_billing_strategy(subscription.billing_type)
        strategy.ensure_supported(subscription)

        renews_at = subscription.renews_at
        if strategy.billing_type == BillingType.QUANTITY_BASED and subscription.provider_subscription_id:
            provider_subscription = await self._get_client().get_subscription(
                subscription.provider_subscription_id
            )
            renews_at = provider_subscription.renews_at or renews_at

        return strategy.preview(subscription.current_seats, new_quantity, renews_at)
