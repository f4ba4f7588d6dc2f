"""
Seat information service.

WHAT: Builds an organization's seat snapshot (total, used, available
seats) together with its subscription's billing state.

WHY: The snapshot is derived on every read from live counts and a freshly
evaluated override, so it can never show a cached ceiling after an
override lapsed.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.exceptions import OrganizationNotFoundError
from seatsync.dao.membership import InvitationDAO, MembershipDAO
from seatsync.dao.organization import OrganizationDAO
from seatsync.dao.subscription import SubscriptionDAO
from seatsync.models.subscription import Subscription
from seatsync.services.seat_calculator import (
    SeatSnapshot,
    seat_snapshot,
    seat_status,
    seat_status_message,
)


@dataclass
class SeatInfo:
    organization_id: int
    snapshot: SeatSnapshot
    status: str
    status_message: str
    subscription: Optional[Subscription]


class SeatInfoService:
    """Reads seat usage for one organization."""

    def __init__(self, session: AsyncSession):
        self.organization_dao = OrganizationDAO(session)
        self.subscription_dao = SubscriptionDAO(session)
        self.membership_dao = MembershipDAO(session)
        self.invitation_dao = InvitationDAO(session)

    async def get_seat_info(self, organization_id: int) -> SeatInfo:
        """
        Raises:
            OrganizationNotFoundError: Unknown organization
        """
        organization = await self.organization_dao.get_by_id(organization_id)
        if not organization:
            raise OrganizationNotFoundError(organization_id=organization_id)

        active_members = await self.membership_dao.count_seated(organization_id)
        pending_invitations = await self.invitation_dao.count_pending(organization_id)

        snapshot = seat_snapshot(
            paid_seats=organization.paid_seats,
            active_members=active_members,
            pending_invitations=pending_invitations,
            override_seats=organization.billing_override_seats,
            override_expires_at=organization.billing_override_expires_at,
        )

        return SeatInfo(
            organization_id=organization_id,
            snapshot=snapshot,
            status=seat_status(
                snapshot.used_seats, organization.paid_seats, snapshot.total_seats
            ),
            status_message=seat_status_message(
                snapshot.used_seats, organization.paid_seats, snapshot.total_seats
            ),
            subscription=await self.subscription_dao.get_active_by_org(organization_id),
        )
