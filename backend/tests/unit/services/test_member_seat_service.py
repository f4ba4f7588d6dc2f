"""
Unit tests for grace-period member seat management.

WHAT: Tests member removal and reactivation and the pending seat change
they schedule on the subscription.

WHY: This is where deferred seat reductions come from. The pending count
must match the members who stay after renewal, must never equal the
current count, and must be left unsynced so the pending changes job
pushes it.
"""

from datetime import datetime, timedelta

import pytest

from seatsync.core.exceptions import (
    ConcurrentModificationError,
    MembershipNotFoundError,
    SubscriptionNotFoundError,
    ValidationError,
)
from seatsync.dao.membership import MembershipDAO
from seatsync.dao.subscription import SubscriptionDAO
from seatsync.models.membership import MembershipStatus
from seatsync.models.subscription import BillingType, SubscriptionStatus
from seatsync.services.member_seat_service import MemberSeatService
from seatsync.services.pending_changes_job import PendingChangesJob
from tests.factories import MembershipFactory, OrganizationFactory, SubscriptionFactory

NOW = datetime(2026, 3, 1, 12, 0, 0)


async def _org_with_members(db_session, seats=3, members=3, **subscription_kwargs):
    org = await OrganizationFactory.create(db_session)
    subscription = await SubscriptionFactory.create(
        db_session, organization_id=org.id, current_seats=seats, **subscription_kwargs
    )
    memberships = []
    for index in range(members):
        memberships.append(
            await MembershipFactory.create(db_session, org.id, email=f"person{index}@example.com")
        )
    return org, subscription, memberships


async def _reload(db_session, subscription_id):
    return await SubscriptionDAO(db_session).get_fresh(subscription_id)


class TestRemoveMember:
    @pytest.mark.asyncio
    async def test_schedules_reduction_for_renewal(self, db_session):
        org, subscription, members = await _org_with_members(db_session, seats=3, members=3)

        change = await MemberSeatService(db_session).remove_member(org.id, members[0].id)

        assert change.previous_status == MembershipStatus.ACTIVE
        assert change.member_status == MembershipStatus.PENDING_REMOVAL
        assert change.current_seats == 3
        assert change.pending_seats == 2
        assert change.correlation_id.startswith(f"member-remove-{org.id}-")

        fresh = await _reload(db_session, subscription.id)
        assert fresh.current_seats == 3
        assert fresh.pending_seats == 2
        assert fresh.quantity_synced is False
        assert fresh.version == 2

        # Still holding a seat until renewal
        assert await MembershipDAO(db_session).count_seated(org.id) == 3

    @pytest.mark.asyncio
    async def test_second_removal_lowers_pending_count(self, db_session):
        org, subscription, members = await _org_with_members(db_session, seats=4, members=4)
        service = MemberSeatService(db_session)

        await service.remove_member(org.id, members[0].id)
        change = await service.remove_member(org.id, members[1].id)

        assert change.pending_seats == 2

    @pytest.mark.asyncio
    async def test_target_equal_to_current_clears_pending(self, db_session):
        # Five paid seats, six members: removing one leaves exactly five
        org, subscription, members = await _org_with_members(
            db_session, seats=5, members=6, pending_seats=6
        )

        change = await MemberSeatService(db_session).remove_member(org.id, members[0].id)

        assert change.pending_seats is None
        fresh = await _reload(db_session, subscription.id)
        assert fresh.pending_seats is None
        assert fresh.pending_seats != fresh.current_seats

    @pytest.mark.asyncio
    async def test_never_schedules_below_one_seat(self, db_session):
        org, subscription, members = await _org_with_members(db_session, seats=2, members=1)

        change = await MemberSeatService(db_session).remove_member(org.id, members[0].id)

        assert change.pending_seats == 1

    @pytest.mark.asyncio
    async def test_member_must_be_active(self, db_session):
        org, subscription, _ = await _org_with_members(db_session, members=0)
        archived = await MembershipFactory.create(
            db_session, org.id, status=MembershipStatus.ARCHIVED
        )

        with pytest.raises(ValidationError) as exc_info:
            await MemberSeatService(db_session).remove_member(org.id, archived.id)

        assert exc_info.value.context["status"] == "archived"
        assert (await _reload(db_session, subscription.id)).version == 1

    @pytest.mark.asyncio
    async def test_member_of_other_organization(self, db_session):
        org, _, _ = await _org_with_members(db_session, members=0)
        other_org, _, other_members = await _org_with_members(db_session, members=1)

        with pytest.raises(MembershipNotFoundError):
            await MemberSeatService(db_session).remove_member(org.id, other_members[0].id)

    @pytest.mark.asyncio
    async def test_requires_active_subscription(self, db_session):
        org, _, members = await _org_with_members(
            db_session, members=1, status=SubscriptionStatus.CANCELLED
        )

        with pytest.raises(SubscriptionNotFoundError):
            await MemberSeatService(db_session).remove_member(org.id, members[0].id)

    @pytest.mark.asyncio
    async def test_legacy_subscription_moves_member_only(self, db_session):
        org, subscription, members = await _org_with_members(
            db_session, seats=3, members=3, billing_type=BillingType.LEGACY_VOLUME
        )

        change = await MemberSeatService(db_session).remove_member(org.id, members[0].id)

        assert change.member_status == MembershipStatus.PENDING_REMOVAL
        assert change.pending_seats is None
        assert (await _reload(db_session, subscription.id)).version == 1

    @pytest.mark.asyncio
    async def test_conflict_exhaustion_rolls_back_member(self, db_session, monkeypatch):
        org, subscription, members = await _org_with_members(db_session, seats=3, members=3)
        member_id = members[0].id
        service = MemberSeatService(db_session, max_retries=2)

        async def always_conflicts(*args, **kwargs):
            return False

        monkeypatch.setattr(service.subscription_dao, "compare_and_set", always_conflicts)

        with pytest.raises(ConcurrentModificationError):
            await service.remove_member(org.id, member_id)

        member = await MembershipDAO(db_session).get_by_id(member_id)
        assert member.status == MembershipStatus.ACTIVE


class TestReactivateMember:
    @pytest.mark.asyncio
    async def test_cancelling_only_removal_clears_pending(self, db_session):
        org, subscription, members = await _org_with_members(db_session, seats=3, members=3)
        service = MemberSeatService(db_session)
        await service.remove_member(org.id, members[0].id)

        change = await service.reactivate_member(org.id, members[0].id)

        assert change.previous_status == MembershipStatus.PENDING_REMOVAL
        assert change.member_status == MembershipStatus.ACTIVE
        assert change.pending_seats is None
        assert change.message == "Member reactivated; no seat change pending"

    @pytest.mark.asyncio
    async def test_other_removal_still_pending(self, db_session):
        org, subscription, members = await _org_with_members(db_session, seats=3, members=3)
        service = MemberSeatService(db_session)
        await service.remove_member(org.id, members[0].id)
        await service.remove_member(org.id, members[1].id)

        change = await service.reactivate_member(org.id, members[0].id)

        assert change.pending_seats == 2

    @pytest.mark.asyncio
    async def test_archived_member_adds_seat_at_renewal(self, db_session):
        org, subscription, _ = await _org_with_members(db_session, seats=2, members=2)
        archived = await MembershipFactory.create(
            db_session, org.id, email="back@example.com", status=MembershipStatus.ARCHIVED
        )

        change = await MemberSeatService(db_session).reactivate_member(org.id, archived.id)

        assert change.previous_status == MembershipStatus.ARCHIVED
        assert change.pending_seats == 3
        assert change.message.startswith("Member reactivated; seats change to 3")

    @pytest.mark.asyncio
    async def test_active_member_rejected(self, db_session):
        org, _, members = await _org_with_members(db_session, members=1)

        with pytest.raises(ValidationError):
            await MemberSeatService(db_session).reactivate_member(org.id, members[0].id)


class TestScheduleSeatChange:
    @pytest.mark.asyncio
    async def test_retries_against_latest_current_seats(self, db_session):
        org, subscription, _ = await _org_with_members(db_session, seats=5, members=0)
        stale_version = subscription.version

        # Another writer lands first and moves current_seats to the target;
        # the in-memory subscription still carries the old version
        dao = SubscriptionDAO(db_session)
        assert await dao.compare_and_set(subscription.id, stale_version, current_seats=4)
        await db_session.commit()

        fresh = await MemberSeatService(db_session).schedule_seat_change(
            subscription, 4, "member-remove-test"
        )

        assert fresh.current_seats == 4
        assert fresh.pending_seats is None
        assert fresh.version == 3

    @pytest.mark.asyncio
    async def test_scheduled_removal_feeds_pending_changes_job(self, db_session, provider_client):
        org, subscription, members = await _org_with_members(
            db_session, seats=3, members=3, renews_at=NOW + timedelta(hours=30)
        )
        await MemberSeatService(db_session).remove_member(org.id, members[0].id)
        job = PendingChangesJob(session=db_session, client=provider_client, delay_seconds=0)

        summary = await job.run(now=NOW)

        assert summary["processed"] == 1
        args, kwargs = provider_client.update_subscription_item.call_args
        assert args[1] == 2
        assert kwargs["disable_prorations"] is True
