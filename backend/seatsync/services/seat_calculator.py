"""
Seat calculation.

WHAT: Pure functions over seat counts: totals, remaining seats, status,
invitation checks and the derived seat snapshot.

WHY: The same numbers are shown on the seat-info endpoint, used to gate
invitations and used to size upgrades. Keeping them here, free of I/O,
gives every caller one definition.

Pricing model: FREE_SEATS seats are free and paid seats are added on top,
so ``total = paid + FREE_SEATS``. An active billing override replaces that
total with the override ceiling.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from seatsync.services.billing_override import check_override

FREE_SEATS = 3
WARNING_UTILIZATION_PERCENT = 80

SEAT_STATUS_SAFE = "safe"
SEAT_STATUS_WARNING = "warning"
SEAT_STATUS_FULL = "full"
SEAT_STATUS_OVER = "over"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def _percent(part: int, whole: int) -> int:
    """Percentage rounded half up, 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    return (part * 200 + whole) // (whole * 2)


def required_paid_seats(employee_count: int) -> int:
    """Paid seats needed so every employee has a seat."""
    return max(0, employee_count - FREE_SEATS)


def total_seats(paid_seats: int) -> int:
    return paid_seats + FREE_SEATS


def remaining_seats(paid_seats: int, employee_count: int) -> int:
    """Seats still free; never negative."""
    return max(0, total_seats(paid_seats) - employee_count)


def seat_utilization(employee_count: int, paid_seats: int, total: Optional[int] = None) -> int:
    """Integer utilization percent of the seat total (paid-seat total by default)."""
    return _percent(employee_count, total if total is not None else total_seats(paid_seats))


def seat_status(employee_count: int, paid_seats: int, total: Optional[int] = None) -> str:
    """
    Classify seat usage as safe, warning, full or over.

    Exactly at the total is ``full`` (not ``warning``); one above is
    ``over``; otherwise ``warning`` from 80% utilization. ``total`` replaces
    the paid-seat total, e.g. with an override ceiling.
    """
    if total is None:
        total = total_seats(paid_seats)
    if employee_count > total:
        return SEAT_STATUS_OVER
    if employee_count == total:
        return SEAT_STATUS_FULL
    if seat_utilization(employee_count, paid_seats, total) >= WARNING_UTILIZATION_PERCENT:
        return SEAT_STATUS_WARNING
    return SEAT_STATUS_SAFE


def seat_status_message(employee_count: int, paid_seats: int, total: Optional[int] = None) -> str:
    """Human-readable status line for the seat-info surface."""
    if total is None:
        total = total_seats(paid_seats)
    status = seat_status(employee_count, paid_seats, total)
    remaining = max(0, total - employee_count)

    if status == SEAT_STATUS_OVER:
        overage = employee_count - total
        return f"Over capacity by {_plural(overage, 'seat')}. Upgrade required."
    if status == SEAT_STATUS_FULL:
        return "At full capacity. Upgrade to add more employees."
    if status == SEAT_STATUS_WARNING:
        return f"{_plural(remaining, 'seat')} remaining. Consider upgrading soon."
    return f"{_plural(remaining, 'seat')} available."


def effective_seat_limit(
    paid_seats: int,
    override_seats: Optional[int] = None,
    override_expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Seat ceiling after applying an override.

    The override is evaluated on every call so a lapsed override falls back
    to the paid-seat total immediately.
    """
    override = check_override(override_seats, override_expires_at, now=now)
    if override.is_active and override.effective_seats:
        return override.effective_seats
    return total_seats(paid_seats)


@dataclass(frozen=True)
class InvitationCheck:
    """Outcome of validate_invitation."""

    can_invite: bool
    available_seats: int
    seat_limit: int
    total_after_invite: int
    reason: Optional[str] = None

    @property
    def available_after_invite(self) -> int:
        return max(0, self.seat_limit - self.total_after_invite)


def validate_invitation(
    current_employees: int,
    paid_seats: int,
    new_invitations: int = 1,
    override_seats: Optional[int] = None,
    override_expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> InvitationCheck:
    """
    Check whether ``new_invitations`` more people fit under the seat ceiling.

    ``current_employees`` should already include pending invitations.
    """
    seat_limit = effective_seat_limit(
        paid_seats, override_seats, override_expires_at, now=now
    )
    total_after = current_employees + new_invitations
    available = max(0, seat_limit - current_employees)
    can_invite = total_after <= seat_limit

    reason = None
    if not can_invite:
        if available == 0:
            reason = "No available seats. Upgrade required to invite more employees."
        else:
            reason = (
                f"Only {_plural(available, 'seat')} available. "
                f"Cannot invite {_plural(new_invitations, 'employee')}."
            )

    return InvitationCheck(
        can_invite=can_invite,
        available_seats=available,
        seat_limit=seat_limit,
        total_after_invite=total_after,
        reason=reason,
    )


@dataclass(frozen=True)
class BillingImpact:
    needs_upgrade: bool
    required_paid_seats: int
    additional_seats: int

    @property
    def can_add_without_upgrade(self) -> bool:
        return self.additional_seats == 0


def billing_impact(
    current_employees: int, new_employees: int, current_paid_seats: int
) -> BillingImpact:
    """How many more paid seats adding ``new_employees`` would need."""
    required = required_paid_seats(current_employees + new_employees)
    additional = max(0, required - current_paid_seats)
    return BillingImpact(
        needs_upgrade=required > current_paid_seats,
        required_paid_seats=required,
        additional_seats=additional,
    )


@dataclass(frozen=True)
class SeatSnapshot:
    """
    Derived seat state of an organization. Never persisted.

    used_seats counts active members plus pending invitations.
    """

    total_seats: int
    paid_seats: int
    free_seats: int
    active_members: int
    pending_invitations: int
    used_seats: int
    available_seats: int
    utilization_percent: int
    override_active: bool

    @property
    def can_add_more(self) -> bool:
        return self.available_seats > 0


def seat_snapshot(
    paid_seats: int,
    active_members: int,
    pending_invitations: int,
    override_seats: Optional[int] = None,
    override_expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> SeatSnapshot:
    """Compute the seat snapshot for one read."""
    override = check_override(override_seats, override_expires_at, now=now)
    limit = effective_seat_limit(paid_seats, override_seats, override_expires_at, now=now)
    used = active_members + pending_invitations

    return SeatSnapshot(
        total_seats=limit,
        paid_seats=paid_seats,
        free_seats=FREE_SEATS,
        active_members=active_members,
        pending_invitations=pending_invitations,
        used_seats=used,
        available_seats=max(0, limit - used),
        utilization_percent=_percent(used, limit),
        override_active=override.is_active,
    )
