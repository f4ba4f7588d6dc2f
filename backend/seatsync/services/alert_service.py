"""
Alert Service.

WHAT: Multi-channel alert sink for the billing engine.

WHY: Billing problems have very different urgency. A successful
pre-renewal push is worth a record; a failed provider call needs a look
soon; seat drift may mean we are charging the wrong amount. Severity picks
the channels:
- info: database
- warning: database + Slack
- critical: database + Slack + email

HOW: Each channel is attempted independently. A channel failure is logged
and reported in the result, never raised, so an alert can't break the job
that sent it. The database record is added to the caller's session; the
caller commits it with the rest of its unit of work.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.config import settings
from seatsync.core.exceptions import SlackNotificationError
from seatsync.dao.alert import AlertDAO
from seatsync.middleware.request_context import get_correlation_id
from seatsync.models.alert import AlertSeverity
from seatsync.services.email import EmailService, get_email_service
from seatsync.services.slack_service import SlackService, build_billing_alert_message

logger = logging.getLogger(__name__)


@dataclass
class AlertResult:
    """Outcome of one alert; success means at least one channel delivered."""

    success: bool
    channels: Dict[str, bool] = field(
        default_factory=lambda: {"database": False, "slack": False, "email": False}
    )
    error: Optional[str] = None


def _json_safe(context: Dict[str, Any]) -> Dict[str, Any]:
    """Make context storable in a JSON column (datetimes, Decimals)."""
    return json.loads(json.dumps(context, default=str))


class AlertService:
    """
    Sends billing alerts to the channels of their severity.

    Args:
        session: Session the database alert is written into
        slack_service: Slack channel (defaults to settings)
        email_service: Email channel (defaults to the global service)
    """

    def __init__(
        self,
        session: AsyncSession,
        slack_service: Optional[SlackService] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.session = session
        self.alert_dao = AlertDAO(session)
        self.slack_service = slack_service or SlackService()
        self.email_service = email_service or get_email_service()

    async def send_info(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        *,
        job: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> AlertResult:
        """Routine confirmation; persisted only."""
        return await self._send(AlertSeverity.INFO, message, context, job, correlation_id)

    async def send_warning(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        *,
        job: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> AlertResult:
        """Operational hiccup; persisted and posted to Slack."""
        return await self._send(AlertSeverity.WARNING, message, context, job, correlation_id)

    async def send_critical(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        *,
        job: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> AlertResult:
        """Financial-integrity risk; persisted, posted to Slack and emailed."""
        return await self._send(AlertSeverity.CRITICAL, message, context, job, correlation_id)

    async def _send(
        self,
        severity: AlertSeverity,
        message: str,
        context: Optional[Dict[str, Any]],
        job: Optional[str],
        correlation_id: Optional[str],
    ) -> AlertResult:
        correlation_id = correlation_id or get_correlation_id()
        full_context = _json_safe(
            {
                **(context or {}),
                "job": job,
                "correlation_id": correlation_id,
                "timestamp": datetime.utcnow().isoformat(),
            }
        )

        log = logger.critical if severity == AlertSeverity.CRITICAL else (
            logger.warning if severity == AlertSeverity.WARNING else logger.info
        )
        log(f"[{severity.value.upper()}] {message}", extra={"alert_context": full_context})

        result = AlertResult(success=False)
        result.channels["database"] = await self._store(
            severity, message, full_context, job, correlation_id
        )
        if severity in (AlertSeverity.WARNING, AlertSeverity.CRITICAL):
            result.channels["slack"] = await self._post_to_slack(severity, message, full_context)
        if severity == AlertSeverity.CRITICAL:
            result.channels["email"] = await self._email(severity, message, full_context)

        result.success = any(result.channels.values())
        if not result.success:
            result.error = "All alert channels failed"
            logger.error(f"Alert could not be delivered on any channel: {message}")
        return result

    async def _store(
        self,
        severity: AlertSeverity,
        message: str,
        context: Dict[str, Any],
        job: Optional[str],
        correlation_id: Optional[str],
    ) -> bool:
        try:
            await self.alert_dao.create(
                severity=severity,
                message=message,
                context=context,
                job=job,
                correlation_id=correlation_id,
                resolved=False,
            )
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to store alert: {e}", exc_info=True)
            return False

    async def _post_to_slack(
        self, severity: AlertSeverity, message: str, context: Dict[str, Any]
    ) -> bool:
        if not self.slack_service.is_configured:
            logger.debug("Slack not configured, skipping alert")
            return False

        text, blocks = build_billing_alert_message(
            severity.value, message, context, environment=settings.ENVIRONMENT
        )
        try:
            return await self.slack_service.send_message(text, blocks=blocks)
        except SlackNotificationError as e:
            logger.error(f"Slack alert failed: {e.message}")
            return False

    async def _email(
        self, severity: AlertSeverity, message: str, context: Dict[str, Any]
    ) -> bool:
        result = await self.email_service.send_billing_alert_email(
            severity.value, message, context
        )
        return result.success
