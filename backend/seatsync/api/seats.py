"""
Seat API endpoints.

WHAT:
1. POST /organizations/{org_id}/subscription/seats - Change seat count
2. POST /organizations/{org_id}/subscription/seats/preview - Price a change
3. GET /organizations/{org_id}/seat-info - Seat snapshot
4. POST /organizations/{org_id}/members/{membership_id}/remove - Grace-period removal
5. POST /organizations/{org_id}/members/{membership_id}/reactivate - Undo a removal

WHY: Seat changes are requested by other internal services (member
management, the billing UI backend), so the write endpoints require the
internal bearer token. Errors are raised as AppException subclasses and
rendered by the global handlers:
- 404 no subscription that can change seats
- 400 legacy volume subscription (with legacy_subscription/action_required)
- 502/504 provider failure or timeout
- 409 local write lost every compare-and-swap retry
"""

import logging
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.deps import get_provider_client_factory, verify_internal_token
from seatsync.core.exceptions import SubscriptionNotFoundError
from seatsync.dao.subscription import SubscriptionDAO
from seatsync.db.session import get_db
from seatsync.middleware.request_context import new_correlation_id
from seatsync.schemas.seats import (
    MemberSeatChangeResponse,
    ProrationPreviewRequest,
    ProrationPreviewResponse,
    SeatInfoResponse,
    SeatUpdateRequest,
    SeatUpdateResponse,
    SubscriptionSeatState,
)
from seatsync.services.lemonsqueezy_client import LemonSqueezyClient
from seatsync.services.member_seat_service import MemberSeatChange, MemberSeatService
from seatsync.services.seat_info_service import SeatInfoService
from seatsync.services.seat_manager import SeatManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organizations", tags=["Seats"])


async def _active_subscription_id(db: AsyncSession, org_id: int) -> int:
    subscription = await SubscriptionDAO(db).get_active_by_org(org_id)
    if not subscription:
        raise SubscriptionNotFoundError(organization_id=org_id)
    return subscription.id


@router.post(
    "/{org_id}/subscription/seats",
    response_model=SeatUpdateResponse,
    dependencies=[Depends(verify_internal_token)],
    summary="Update subscription seat count",
)
async def update_seats(
    org_id: int,
    request: SeatUpdateRequest,
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[], LemonSqueezyClient] = Depends(get_provider_client_factory),
):
    """
    Set the organization's seat count, billing it per the subscription's model.

    WHY: Queued invitations are stored with the new seat count and echoed
    back; the caller sends them only after a successful response, so a
    failed provider call never leaves invitations without seats.
    """
    subscription_id = await _active_subscription_id(db, org_id)
    correlation_id = new_correlation_id(f"seat-update-{org_id}")

    manager = SeatManager(db, client_factory=client_factory)
    result = await manager.change_seats(
        subscription_id,
        request.new_quantity,
        queued_invitations=[inv.model_dump(mode="json") for inv in request.queued_invitations],
        invoice_immediately=request.invoice_immediately,
        correlation_id=correlation_id,
    )

    return SeatUpdateResponse(
        changed=result.changed,
        subscription_id=result.subscription_id,
        billing_type=result.billing_type,
        previous_seats=result.previous_seats,
        current_seats=result.current_seats,
        charged_at=result.charged_at,
        message=result.message,
        correlation_id=result.correlation_id,
        proration_amount=result.proration_amount,
        days_remaining=result.days_remaining,
        queued_invitations=result.queued_invitations,
    )


@router.post(
    "/{org_id}/subscription/seats/preview",
    response_model=ProrationPreviewResponse,
    dependencies=[Depends(verify_internal_token)],
    summary="Preview the cost of a seat change",
)
async def preview_seat_change(
    org_id: int,
    request: ProrationPreviewRequest,
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[], LemonSqueezyClient] = Depends(get_provider_client_factory),
):
    """Prorated charge for quantity-based plans; not applicable otherwise."""
    subscription_id = await _active_subscription_id(db, org_id)
    preview = await SeatManager(db, client_factory=client_factory).preview_proration(
        subscription_id, request.new_quantity
    )
    return ProrationPreviewResponse(
        applicable=preview.applicable,
        amount=preview.amount,
        days_remaining=preview.days_remaining,
        seats_added=preview.seats_added,
        message=preview.message,
        yearly_price_per_seat=preview.yearly_price_per_seat,
    )


@router.get(
    "/{org_id}/seat-info",
    response_model=SeatInfoResponse,
    dependencies=[Depends(verify_internal_token)],
    summary="Get seat usage for an organization",
)
async def get_seat_info(org_id: int, db: AsyncSession = Depends(get_db)):
    info = await SeatInfoService(db).get_seat_info(org_id)
    snapshot = info.snapshot
    return SeatInfoResponse(
        organization_id=info.organization_id,
        total_seats=snapshot.total_seats,
        paid_seats=snapshot.paid_seats,
        free_seats=snapshot.free_seats,
        active_members=snapshot.active_members,
        pending_invitations=snapshot.pending_invitations,
        used_seats=snapshot.used_seats,
        available_seats=snapshot.available_seats,
        utilization_percent=snapshot.utilization_percent,
        override_active=snapshot.override_active,
        can_add_more=snapshot.can_add_more,
        status=info.status,
        status_message=info.status_message,
        subscription=(
            SubscriptionSeatState.model_validate(info.subscription)
            if info.subscription
            else None
        ),
    )


def _member_change_response(change: MemberSeatChange) -> MemberSeatChangeResponse:
    return MemberSeatChangeResponse(
        membership_id=change.membership_id,
        organization_id=change.organization_id,
        subscription_id=change.subscription_id,
        previous_status=change.previous_status,
        member_status=change.member_status,
        current_seats=change.current_seats,
        pending_seats=change.pending_seats,
        renews_at=change.renews_at,
        correlation_id=change.correlation_id,
        message=change.message,
    )


@router.post(
    "/{org_id}/members/{membership_id}/remove",
    response_model=MemberSeatChangeResponse,
    dependencies=[Depends(verify_internal_token)],
    summary="Remove a member at the next renewal",
)
async def remove_member(org_id: int, membership_id: int, db: AsyncSession = Depends(get_db)):
    """
    Start a member's grace period.

    WHY: The member keeps access until renewal; the lower seat count is
    scheduled as a pending change instead of being billed now.
    """
    change = await MemberSeatService(db).remove_member(org_id, membership_id)
    return _member_change_response(change)


@router.post(
    "/{org_id}/members/{membership_id}/reactivate",
    response_model=MemberSeatChangeResponse,
    dependencies=[Depends(verify_internal_token)],
    summary="Reactivate a removed or archived member",
)
async def reactivate_member(org_id: int, membership_id: int, db: AsyncSession = Depends(get_db)):
    change = await MemberSeatService(db).reactivate_member(org_id, membership_id)
    return _member_change_response(change)
