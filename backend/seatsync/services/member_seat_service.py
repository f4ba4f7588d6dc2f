"""
Grace-period member seat management.

WHAT: Removes and reactivates organization members and schedules the
seat count they imply as a pending change for the next renewal.

WHY: A removed member keeps access until the paid period ends, so the
seat reduction is deferred rather than applied through the seat manager.
The pending count reaches the provider through the pending changes job
shortly before renewal, and the renewal payment webhook promotes it and
archives the members pending removal.

HOW (per operation):
1. Load the organization's active subscription and the member
2. Move the member's status
3. Count active members: that is the seat count wanted at renewal
4. Compare-and-swap ``pending_seats`` (and ``quantity_synced = False``)
   onto the subscription, retrying on a version conflict
5. Commit the member and subscription writes together; a failure rolls
   both back

``pending_seats`` never equals ``current_seats``: a target equal to the
current count clears the pending change instead. Legacy volume
subscriptions cannot change seats in place, so for them only the member
status moves.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.config import settings
from seatsync.core.exceptions import (
    AppException,
    ConcurrentModificationError,
    MembershipNotFoundError,
    SubscriptionNotFoundError,
    ValidationError,
)
from seatsync.dao.membership import MembershipDAO
from seatsync.dao.subscription import SubscriptionDAO
from seatsync.middleware.request_context import new_correlation_id
from seatsync.models.membership import Membership, MembershipStatus
from seatsync.models.subscription import Subscription

logger = logging.getLogger(__name__)

MIN_SEATS = 1

REACTIVATABLE_STATUSES = (MembershipStatus.PENDING_REMOVAL, MembershipStatus.ARCHIVED)


@dataclass
class MemberSeatChange:
    """Outcome of a member status move and the seat change it scheduled."""

    membership_id: int
    organization_id: int
    subscription_id: int
    previous_status: MembershipStatus
    member_status: MembershipStatus
    current_seats: int
    pending_seats: Optional[int]
    renews_at: Optional[datetime]
    correlation_id: str
    message: str


class MemberSeatService:
    """
    Moves members through grace-period removal and reactivation.

    Args:
        session: Database session; the service commits its own writes
        max_retries: Compare-and-swap attempts before giving up
    """

    def __init__(self, session: AsyncSession, max_retries: Optional[int] = None):
        self.session = session
        self.subscription_dao = SubscriptionDAO(session)
        self.membership_dao = MembershipDAO(session)
        self.max_retries = max_retries or settings.SEAT_WRITE_MAX_RETRIES

    async def remove_member(self, organization_id: int, membership_id: int) -> MemberSeatChange:
        """
        Mark an active member for removal at the next renewal.

        Raises:
            SubscriptionNotFoundError: Organization has no active subscription
            MembershipNotFoundError: Member is not in the organization
            ValidationError: Member is not active
            ConcurrentModificationError: Subscription write lost every retry
        """
        subscription, member = await self._load(organization_id, membership_id)
        if member.status != MembershipStatus.ACTIVE:
            raise ValidationError(
                message=f"Member is already {member.status.value}",
                membership_id=membership_id,
                status=member.status.value,
            )
        return await self._move(subscription, member, MembershipStatus.PENDING_REMOVAL)

    async def reactivate_member(self, organization_id: int, membership_id: int) -> MemberSeatChange:
        """
        Bring a member back: cancel a pending removal or restore an archived member.

        Raises:
            SubscriptionNotFoundError: Organization has no active subscription
            MembershipNotFoundError: Member is not in the organization
            ValidationError: Member is already active
            ConcurrentModificationError: Subscription write lost every retry
        """
        subscription, member = await self._load(organization_id, membership_id)
        if member.status not in REACTIVATABLE_STATUSES:
            raise ValidationError(
                message=f"Cannot reactivate member with status: {member.status.value}",
                membership_id=membership_id,
                status=member.status.value,
            )
        return await self._move(subscription, member, MembershipStatus.ACTIVE)

    async def schedule_seat_change(
        self, subscription: Subscription, target_seats: int, correlation_id: str
    ) -> Subscription:
        """
        Record ``target_seats`` as the seat count to apply at renewal.

        The change is marked unsynced so the pending changes job pushes it.
        Does not commit.

        Raises:
            SubscriptionNotFoundError: Row disappeared during a retry
            ConcurrentModificationError: Retry budget exhausted
        """
        subscription_id = subscription.id
        expected_version = subscription.version
        current_seats = subscription.current_seats

        for attempt in range(1, self.max_retries + 1):
            pending_seats = None if target_seats == current_seats else target_seats
            if await self.subscription_dao.compare_and_set(
                subscription_id,
                expected_version,
                pending_seats=pending_seats,
                quantity_synced=False,
            ):
                return await self.subscription_dao.get_fresh(subscription_id)

            logger.warning(
                f"[{correlation_id}] Version conflict scheduling seats on subscription "
                f"{subscription_id} (attempt {attempt}/{self.max_retries})"
            )
            latest = await self.subscription_dao.get_fresh(subscription_id)
            if latest is None:
                raise SubscriptionNotFoundError(subscription_id=subscription_id)
            expected_version = latest.version
            current_seats = latest.current_seats

        raise ConcurrentModificationError(
            subscription_id=subscription_id,
            correlation_id=correlation_id,
        )

    async def _load(
        self, organization_id: int, membership_id: int
    ) -> Tuple[Subscription, Membership]:
        subscription = await self.subscription_dao.get_active_by_org(organization_id)
        if not subscription:
            raise SubscriptionNotFoundError(organization_id=organization_id)

        member = await self.membership_dao.get_in_organization(membership_id, organization_id)
        if not member:
            raise MembershipNotFoundError(
                membership_id=membership_id, organization_id=organization_id
            )
        return subscription, member

    async def _move(
        self,
        subscription: Subscription,
        member: Membership,
        new_status: MembershipStatus,
    ) -> MemberSeatChange:
        organization_id = subscription.organization_id
        previous_status = member.status
        action = "remove" if new_status == MembershipStatus.PENDING_REMOVAL else "reactivate"
        correlation_id = new_correlation_id(f"member-{action}-{organization_id}")

        try:
            await self.membership_dao.update(member.id, status=new_status)
            if subscription.is_legacy:
                logger.info(
                    f"[{correlation_id}] Legacy subscription {subscription.id}: "
                    f"member status changed, no seat change scheduled"
                )
            else:
                active = await self.membership_dao.count_with_status(
                    organization_id, [MembershipStatus.ACTIVE]
                )
                subscription = await self.schedule_seat_change(
                    subscription, max(MIN_SEATS, active), correlation_id
                )
            await self.session.commit()
        except AppException:
            await self.session.rollback()
            raise

        logger.info(
            f"[{correlation_id}] Member {member.id} {previous_status.value} -> {new_status.value}; "
            f"subscription {subscription.id} seats current={subscription.current_seats} "
            f"pending={subscription.pending_seats}"
        )
        return MemberSeatChange(
            membership_id=member.id,
            organization_id=organization_id,
            subscription_id=subscription.id,
            previous_status=previous_status,
            member_status=new_status,
            current_seats=subscription.current_seats,
            pending_seats=subscription.pending_seats,
            renews_at=subscription.renews_at,
            correlation_id=correlation_id,
            message=_describe(new_status, subscription),
        )


def _describe(new_status: MembershipStatus, subscription: Subscription) -> str:
    renewal = (
        f"on {subscription.renews_at:%Y-%m-%d}" if subscription.renews_at else "at the next renewal"
    )
    if new_status == MembershipStatus.PENDING_REMOVAL:
        return f"Member keeps access until the subscription renews {renewal}"
    if subscription.pending_seats is None:
        return "Member reactivated; no seat change pending"
    return f"Member reactivated; seats change to {subscription.pending_seats} {renewal}"
