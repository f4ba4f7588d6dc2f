"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from seatsync.models.base import Base, TimestampMixin, PrimaryKeyMixin
from seatsync.models.organization import Organization
from seatsync.models.subscription import (
    Subscription,
    BillingType,
    SubscriptionStatus,
    SEAT_CHANGE_STATUSES,
    SYNCABLE_STATUSES,
)
from seatsync.models.membership import (
    Membership,
    MembershipStatus,
    Invitation,
    InvitationStatus,
)
from seatsync.models.alert import Alert, AlertSeverity
from seatsync.models.billing_event import BillingEvent, BillingEventStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "Organization",
    "Subscription",
    "BillingType",
    "SubscriptionStatus",
    "SEAT_CHANGE_STATUSES",
    "SYNCABLE_STATUSES",
    "Membership",
    "MembershipStatus",
    "Invitation",
    "InvitationStatus",
    "Alert",
    "AlertSeverity",
    "BillingEvent",
    "BillingEventStatus",
]
