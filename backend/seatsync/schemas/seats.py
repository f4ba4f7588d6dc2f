"""
Seat schemas for API request/response validation.

WHAT: Pydantic schemas for seat updates, proration previews, member
removal and reactivation, and the seat information read model.

WHY: The seat-update surface is called by other services, so requests are
validated strictly (quantity at least one, typed invitations) and
responses carry the correlation id for tracing a change across logs and
alerts.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from seatsync.models.membership import MembershipStatus
from seatsync.models.subscription import BillingType, SubscriptionStatus


class QueuedInvitation(BaseModel):
    """An invitation to send once the seat change has been confirmed."""

    email: EmailStr = Field(description="Invitee email address")
    role: str = Field(default="employee", max_length=50, description="Role granted on acceptance")


class SeatUpdateRequest(BaseModel):
    """
    Request to set the subscription's seat count.

    WHY: invoice_immediately only affects quantity-based subscriptions;
    usage-based ones are always charged at the end of the period.
    """

    new_quantity: int = Field(ge=1, description="Target total number of seats")
    invoice_immediately: bool = Field(
        default=True,
        description="Charge the prorated amount now (quantity-based billing only)",
    )
    queued_invitations: List[QueuedInvitation] = Field(
        default_factory=list,
        description="Invitations to send after the change succeeds",
    )


class SeatUpdateResponse(BaseModel):
    """Outcome of a seat update. ``changed`` is False when nothing was done."""

    success: bool = True
    changed: bool
    subscription_id: int
    billing_type: BillingType
    previous_seats: int
    current_seats: int
    charged_at: Optional[str] = Field(
        default=None, description="'immediately', 'end_of_period' or null for a no-op"
    )
    message: str
    correlation_id: str
    proration_amount: Optional[Decimal] = None
    days_remaining: Optional[int] = None
    queued_invitations: List[QueuedInvitation] = Field(default_factory=list)


class ProrationPreviewRequest(BaseModel):
    new_quantity: int = Field(ge=1, description="Seat count to price")


class ProrationPreviewResponse(BaseModel):
    """Price of a seat change before it is made."""

    applicable: bool
    amount: Decimal
    days_remaining: int
    seats_added: int
    message: str
    yearly_price_per_seat: Optional[Decimal] = None


class SubscriptionSeatState(BaseModel):
    """Billing-side seat state of the organization's subscription."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    billing_type: BillingType
    status: SubscriptionStatus
    current_seats: int
    pending_seats: Optional[int] = None
    quantity_synced: bool
    renews_at: Optional[datetime] = None


class SeatInfoResponse(BaseModel):
    """
    Seat snapshot of an organization.

    WHY: Computed on every request; the override is evaluated at read time
    so an expired override never inflates total_seats.
    """

    organization_id: int
    total_seats: int
    paid_seats: int
    free_seats: int
    active_members: int
    pending_invitations: int
    used_seats: int
    available_seats: int
    utilization_percent: int
    override_active: bool
    can_add_more: bool
    status: str = Field(description="safe, warning, full or over")
    status_message: str
    subscription: Optional[SubscriptionSeatState] = None


class MemberSeatChangeResponse(BaseModel):
    """
    Result of removing or reactivating a member.

    pending_seats is the seat count scheduled for the next renewal, or
    None when no change is pending.
    """

    success: bool = True
    membership_id: int
    organization_id: int
    subscription_id: int
    previous_status: MembershipStatus
    member_status: MembershipStatus
    current_seats: int
    pending_seats: Optional[int] = None
    renews_at: Optional[datetime] = None
    correlation_id: str
    message: str
