"""
Membership and invitation DAOs.

WHY: Seat usage is a count over these tables. Member status changes made
during seat management (grace-period removal, reactivation, archival at
renewal) also live here.
"""

from typing import Iterable, Optional

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.dao.base import BaseDAO
from seatsync.models.membership import (
    Membership,
    MembershipStatus,
    Invitation,
    InvitationStatus,
    SEAT_HOLDING_STATUSES,
)


class MembershipDAO(BaseDAO[Membership]):
    """Data Access Object for Membership model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Membership, session)

    async def get_in_organization(
        self, membership_id: int, organization_id: int
    ) -> Optional[Membership]:
        """Membership by id, only if it belongs to the organization."""
        result = await self.session.execute(
            select(Membership).where(
                and_(
                    Membership.id == membership_id,
                    Membership.organization_id == organization_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def count_with_status(
        self, organization_id: int, statuses: Iterable[MembershipStatus]
    ) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Membership)
            .where(
                and_(
                    Membership.organization_id == organization_id,
                    Membership.status.in_(list(statuses)),
                )
            )
        )
        return int(result.scalar_one())

    async def count_seated(self, organization_id: int) -> int:
        """
        Members currently occupying a seat.

        A member pending removal keeps the seat until the subscription renews.
        """
        return await self.count_with_status(organization_id, SEAT_HOLDING_STATUSES)

    async def archive_pending_removals(self, organization_id: int) -> int:
        """
        Archive every member whose removal takes effect at renewal.

        Returns:
            Number of members archived
        """
        result = await self.session.execute(
            update(Membership)
            .where(
                and_(
                    Membership.organization_id == organization_id,
                    Membership.status == MembershipStatus.PENDING_REMOVAL,
                )
            )
            .values(status=MembershipStatus.ARCHIVED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class InvitationDAO(BaseDAO[Invitation]):
    """Data Access Object for Invitation model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Invitation, session)

    async def count_pending(self, organization_id: int) -> int:
        """Invitations still holding a seat."""
        return await self.count(
            organization_id=organization_id, status=InvitationStatus.PENDING
        )
