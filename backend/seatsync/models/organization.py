"""
Organization model.

WHY: Organizations are the billing tenants. Each one owns its seat
entitlement (paid seats plus an optional time-bounded override) and zero
or one active subscription.
"""

from sqlalchemy import Column, DateTime, Integer, String, Boolean

from seatsync.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Organization(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Organization owning seats and a subscription.

    Seat fields:
    - paid_seats: seats purchased beyond the free tier
    - billing_override_seats / billing_override_expires_at: manual ceiling
      set by an administrator; ignored once expired
    """

    __tablename__ = "organizations"

    name = Column(String(255), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    paid_seats = Column(Integer, nullable=False, default=0)

    # WHY: Override expiry is evaluated on every read, never precomputed.
    billing_override_seats = Column(Integer, nullable=True)
    billing_override_expires_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name}, paid_seats={self.paid_seats})>"
