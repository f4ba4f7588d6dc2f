"""
Billing event model: idempotency ledger for provider webhooks.

WHY: The provider retries deliveries it believes failed. Recording each
``meta.event_id`` lets the webhook handler acknowledge a redelivery
without applying it twice.
"""

import enum

from sqlalchemy import Column, String, Text, Enum, JSON

from seatsync.models.base import Base, TimestampMixin, PrimaryKeyMixin, enum_values


class BillingEventStatus(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class BillingEvent(Base, PrimaryKeyMixin, TimestampMixin):
    """One received provider webhook event."""

    __tablename__ = "billing_events"

    event_id = Column(String(255), nullable=False, unique=True, index=True)
    event_name = Column(String(100), nullable=False)
    status = Column(
        Enum(BillingEventStatus, values_callable=enum_values, name="billing_event_status"),
        nullable=False,
    )
    payload = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<BillingEvent(event_id={self.event_id}, event_name={self.event_name}, status={self.status.value})>"
