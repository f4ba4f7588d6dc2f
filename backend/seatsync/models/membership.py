"""
Membership and invitation models.

WHY: Used seats are ``seated members + pending invitations``. These tables
are owned by the people-management side of the product; the billing
engine counts rows in them and moves members through the grace-period
removal that defers a seat reduction to renewal.
"""

import enum

from sqlalchemy import Column, Integer, String, Enum, ForeignKey, DateTime

from seatsync.models.base import Base, TimestampMixin, PrimaryKeyMixin, enum_values


class MembershipStatus(str, enum.Enum):
    """
    ACTIVE and PENDING_REMOVAL members occupy a seat.

    A removed member stays PENDING_REMOVAL (keeping access) until the
    subscription renews, then becomes ARCHIVED.
    """

    ACTIVE = "active"
    PENDING_REMOVAL = "pending_removal"
    ARCHIVED = "archived"


SEAT_HOLDING_STATUSES = (MembershipStatus.ACTIVE, MembershipStatus.PENDING_REMOVAL)


class InvitationStatus(str, enum.Enum):
    """Only PENDING invitations reserve a seat."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Membership(Base, PrimaryKeyMixin, TimestampMixin):
    """A person occupying a seat in an organization."""

    __tablename__ = "memberships"

    organization_id = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="employee")
    status = Column(
        Enum(MembershipStatus, values_callable=enum_values, name="membership_status"),
        nullable=False,
        default=MembershipStatus.ACTIVE,
    )

    def __repr__(self) -> str:
        return f"<Membership(id={self.id}, organization_id={self.organization_id}, status={self.status.value})>"


class Invitation(Base, PrimaryKeyMixin, TimestampMixin):
    """An outstanding invitation holding a seat until accepted or cancelled."""

    __tablename__ = "invitations"

    organization_id = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="employee")
    status = Column(
        Enum(InvitationStatus, values_callable=enum_values, name="invitation_status"),
        nullable=False,
        default=InvitationStatus.PENDING,
    )
    expires_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Invitation(id={self.id}, organization_id={self.organization_id}, status={self.status.value})>"
