"""Unit tests for the seat information service."""

from datetime import datetime, timedelta

import pytest

from seatsync.core.exceptions import OrganizationNotFoundError
from seatsync.models.membership import InvitationStatus, MembershipStatus
from seatsync.models.subscription import SubscriptionStatus
from seatsync.services.seat_calculator import SEAT_STATUS_FULL, SEAT_STATUS_WARNING
from seatsync.services.seat_info_service import SeatInfoService
from tests.factories import MembershipFactory, OrganizationFactory, SubscriptionFactory


class TestSeatInfoService:
    @pytest.mark.asyncio
    async def test_counts_active_members_and_pending_invitations(self, db_session):
        org = await OrganizationFactory.create(db_session, paid_seats=2)
        await MembershipFactory.create_members(db_session, org.id, 3)
        await MembershipFactory.create_members(
            db_session, org.id, 2, status=MembershipStatus.ARCHIVED
        )
        await MembershipFactory.create_invitations(db_session, org.id, 1)
        await MembershipFactory.create_invitations(
            db_session, org.id, 4, status=InvitationStatus.EXPIRED
        )

        info = await SeatInfoService(db_session).get_seat_info(org.id)

        assert info.snapshot.total_seats == 5
        assert info.snapshot.used_seats == 4
        assert info.snapshot.available_seats == 1
        assert info.status == SEAT_STATUS_WARNING
        assert info.status_message == "1 seat remaining. Consider upgrading soon."
        assert info.subscription is None

    @pytest.mark.asyncio
    async def test_members_pending_removal_keep_their_seat(self, db_session):
        org = await OrganizationFactory.create(db_session, paid_seats=2)
        await MembershipFactory.create_members(db_session, org.id, 2)
        await MembershipFactory.create_members(
            db_session, org.id, 2, status=MembershipStatus.PENDING_REMOVAL
        )

        info = await SeatInfoService(db_session).get_seat_info(org.id)

        assert info.snapshot.used_seats == 4
        assert info.snapshot.available_seats == 1

    @pytest.mark.asyncio
    async def test_includes_active_subscription(self, db_session):
        org = await OrganizationFactory.create(db_session)
        await SubscriptionFactory.create(
            db_session, organization_id=org.id, status=SubscriptionStatus.CANCELLED
        )
        active = await SubscriptionFactory.create(db_session, organization_id=org.id)

        info = await SeatInfoService(db_session).get_seat_info(org.id)

        assert info.subscription.id == active.id

    @pytest.mark.asyncio
    async def test_expired_override_not_applied(self, db_session):
        org = await OrganizationFactory.create(
            db_session,
            paid_seats=0,
            billing_override_seats=50,
            billing_override_expires_at=datetime.utcnow() - timedelta(hours=1),
        )
        await MembershipFactory.create_members(db_session, org.id, 3)

        info = await SeatInfoService(db_session).get_seat_info(org.id)

        assert info.snapshot.override_active is False
        assert info.snapshot.total_seats == 3
        assert info.status == SEAT_STATUS_FULL

    @pytest.mark.asyncio
    async def test_unknown_organization(self, db_session):
        with pytest.raises(OrganizationNotFoundError):
            await SeatInfoService(db_session).get_seat_info(404)
