"""
Subscription Data Access Object (DAO).

WHAT: DAO for subscription rows, including the versioned compare-and-swap
used for every seat-field write.

WHY: The seat manager, the webhook handler and the pending-change job can
all write the same row. Instead of locking, each write names the version
it read; a write against a stale version affects zero rows and the caller
re-reads and decides whether to retry.

HOW: Seat fields are never assigned on ORM instances. Writers call
compare_and_set(), then read the row back with get_fresh(), which
overwrites whatever the identity map held.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.dao.base import BaseDAO
from seatsync.models.subscription import (
    Subscription,
    SEAT_CHANGE_STATUSES,
    SYNCABLE_STATUSES,
)


class SubscriptionDAO(BaseDAO[Subscription]):
    """Data Access Object for Subscription model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Subscription, session)

    async def get_fresh(self, subscription_id: int) -> Optional[Subscription]:
        """
        Re-read a subscription from the database.

        WHY: populate_existing replaces stale identity-map state, which
        matters right after a compare-and-swap issued as a bulk UPDATE.
        """
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.id == subscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_by_org(self, organization_id: int) -> Optional[Subscription]:
        """
        Get the organization's subscription that can still change seats.

        Statuses considered: active, on_trial, paused, past_due. When an
        organization has several (a plan migration in flight), the newest
        wins.
        """
        result = await self.session.execute(
            select(Subscription)
            .where(
                and_(
                    Subscription.organization_id == organization_id,
                    Subscription.status.in_(SEAT_CHANGE_STATUSES),
                )
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_provider_subscription_id(
        self, provider_subscription_id: str
    ) -> Optional[Subscription]:
        """Look up a subscription by its LemonSqueezy id (webhooks)."""
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.provider_subscription_id == provider_subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def get_pending_sync_candidates(
        self, window_start: datetime, window_end: datetime
    ) -> List[Subscription]:
        """
        Subscriptions whose deferred seat change must reach the provider now.

        Eligible rows have a pending seat count that was not pushed yet,
        are active or on trial, and renew strictly inside the window.
        """
        result = await self.session.execute(
            select(Subscription)
            .where(
                and_(
                    Subscription.pending_seats.is_not(None),
                    Subscription.quantity_synced.is_(False),
                    Subscription.status.in_(SYNCABLE_STATUSES),
                    Subscription.renews_at > window_start,
                    Subscription.renews_at < window_end,
                )
            )
            .order_by(Subscription.renews_at.asc(), Subscription.id.asc())
        )
        return list(result.scalars().all())

    async def get_reconcilable(self) -> List[Subscription]:
        """Active or trialing subscriptions that exist on the provider."""
        result = await self.session.execute(
            select(Subscription)
            .where(
                and_(
                    Subscription.status.in_(SYNCABLE_STATUSES),
                    Subscription.provider_subscription_id.is_not(None),
                )
            )
            .order_by(Subscription.id.asc())
        )
        return list(result.scalars().all())

    async def compare_and_set(
        self, subscription_id: int, expected_version: int, **values: Any
    ) -> bool:
        """
        Write ``values`` only if the row is still at ``expected_version``.

        The version is bumped by one on success.

        Args:
            subscription_id: Row to update
            expected_version: Version the caller read before deciding
            **values: Column values to write

        Returns:
            True if the row was updated, False on a version conflict
        """
        result = await self.session.execute(
            update(Subscription)
            .where(
                and_(
                    Subscription.id == subscription_id,
                    Subscription.version == expected_version,
                )
            )
            .values(**values, version=expected_version + 1, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_item_id(self, subscription_id: int, item_id: str) -> Optional[Subscription]:
        """
        Persist a lazily fetched provider subscription item id.

        WHY: The item id is not a seat field and the provider value is the
        same for every writer, so no version check is needed.
        """
        await self.session.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(provider_subscription_item_id=item_id)
            .execution_options(synchronize_session=False)
        )
        return await self.get_fresh(subscription_id)

