"""
Billing override evaluation.

WHAT: Decides whether an administrator's manual seat ceiling applies right
now.

WHY: Overrides are time-bounded and lapse silently. Evaluating them on
every call (instead of caching a flag) means an expired override stops
counting the moment it expires, with no job needed to clear it.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class OverrideStatus:
    """
    Result of evaluating an override.

    effective_seats is the override ceiling while active, otherwise None.
    """

    is_active: bool
    is_expired: bool
    effective_seats: Optional[int]


INACTIVE_OVERRIDE = OverrideStatus(is_active=False, is_expired=False, effective_seats=None)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def check_override(
    seats: Optional[int],
    expires_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> OverrideStatus:
    """
    Evaluate a billing override at ``now`` (defaults to the current time).

    - No seats, or seats <= 0: inactive, not expired.
    - Expiry in the past: expired, contributes no seats.
    - No expiry: active indefinitely.

    Naive datetimes are treated as UTC.
    """
    if not seats or seats <= 0:
        return INACTIVE_OVERRIDE

    current = _as_naive_utc(now) if now is not None else datetime.utcnow()
    is_expired = expires_at is not None and _as_naive_utc(expires_at) < current

    return OverrideStatus(
        is_active=not is_expired,
        is_expired=is_expired,
        effective_seats=None if is_expired else seats,
    )
