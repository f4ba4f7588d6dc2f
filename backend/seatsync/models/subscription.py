"""
Subscription model for seat-based billing.

WHY: The subscription row is the single shared mutable resource of the
billing engine. Four actors write or read it concurrently:
1. The seat manager (API-driven seat changes)
2. The webhook handler (provider-confirmed state)
3. The pending-change job (pre-renewal pushes)
4. The reconciliation job (read-only audit)

CONCURRENCY:
- ``version`` is an optimistic lock counter. Seat writes are
  compare-and-swap updates on it (see SubscriptionDAO.compare_and_set),
  and it is also mapped as the ORM ``version_id_col`` so any plain ORM
  flush is version-checked as well.

LIFECYCLE:
1. Checkout -> subscription_created webhook -> row created
2. Seat changes -> current_seats / pending_seats
3. Renewal -> pending_seats moves into current_seats
4. subscription_cancelled / subscription_expired webhook -> retired
"""

import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Enum,
    ForeignKey,
    DateTime,
    Boolean,
    JSON,
)

from seatsync.models.base import Base, TimestampMixin, PrimaryKeyMixin, enum_values


class BillingType(str, enum.Enum):
    """
    Billing model of a subscription. Immutable once set.

    - USAGE_BASED: monthly plans; seats reported as usage records and
      charged at the end of the period
    - QUANTITY_BASED: annual plans; item quantity patched with proration
    - LEGACY_VOLUME: old volume pricing; cannot be changed in place
    """

    USAGE_BASED = "usage_based"
    QUANTITY_BASED = "quantity_based"
    LEGACY_VOLUME = "legacy_volume"


class SubscriptionStatus(str, enum.Enum):
    """Subscription status values (mirrors LemonSqueezy statuses)."""

    ON_TRIAL = "on_trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# WHY: Paused and past-due subscriptions can still change seats; the
# background jobs only touch subscriptions that will actually renew.
SEAT_CHANGE_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.ON_TRIAL,
    SubscriptionStatus.PAUSED,
    SubscriptionStatus.PAST_DUE,
)
SYNCABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.ON_TRIAL)


class Subscription(Base, PrimaryKeyMixin, TimestampMixin):
    """
    One subscription of an organization on the billing provider.

    Invariant: ``pending_seats``, when set, differs from ``current_seats``.
    """

    __tablename__ = "subscriptions"

    organization_id = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Provider identifiers
    # WHY: The item id is only needed for seat changes, so it may be
    # missing on old rows and is fetched lazily on first use.
    provider_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    provider_subscription_item_id = Column(String(255), nullable=True)
    variant_id = Column(String(255), nullable=True)

    billing_type = Column(
        Enum(BillingType, values_callable=enum_values, name="billing_type"),
        nullable=False,
        default=BillingType.USAGE_BASED,
    )
    status = Column(
        Enum(SubscriptionStatus, values_callable=enum_values, name="subscription_status"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )

    # Seat state
    current_seats = Column(Integer, nullable=False, default=0)
    pending_seats = Column(Integer, nullable=True)
    quantity_synced = Column(Boolean, nullable=False, default=False)
    renews_at = Column(DateTime, nullable=True, index=True)

    # Invitations waiting for a confirmed seat change; dispatched by the caller
    queued_invitations = Column(JSON, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, organization_id={self.organization_id}, "
            f"billing_type={self.billing_type.value}, status={self.status.value}, "
            f"current_seats={self.current_seats}, version={self.version})>"
        )

    @property
    def is_legacy(self) -> bool:
        return self.billing_type == BillingType.LEGACY_VOLUME

    @property
    def has_unsynced_change(self) -> bool:
        """A pending seat count exists that the provider has not seen yet."""
        return self.pending_seats is not None and not self.quantity_synced
