"""
Alert model: the persisted channel of the alert sink.

WHY: Every alert is written here regardless of severity, so the table is
a complete audit of what the billing jobs decided and why, even when
Slack or email delivery failed.
"""

import enum

from sqlalchemy import Column, String, Text, Enum, JSON, Boolean

from seatsync.models.base import Base, TimestampMixin, PrimaryKeyMixin, enum_values


class AlertSeverity(str, enum.Enum):
    """
    Alert severities and their delivery channels.

    - INFO: database only
    - WARNING: database + Slack
    - CRITICAL: database + Slack + email
    """

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class Alert(Base, PrimaryKeyMixin, TimestampMixin):
    """A persisted billing alert."""

    __tablename__ = "alerts"

    severity = Column(
        Enum(AlertSeverity, values_callable=enum_values, name="alert_severity"),
        nullable=False,
        index=True,
    )
    message = Column(Text, nullable=False)
    context = Column(JSON, nullable=False, default=dict)
    job = Column(String(100), nullable=True, index=True)
    correlation_id = Column(String(255), nullable=True, index=True)
    resolved = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Alert(id={self.id}, severity={self.severity.value}, job={self.job})>"
