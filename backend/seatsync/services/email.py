"""
Email service for billing alert escalation.

WHAT: Sends critical billing alerts to the operations mailbox.

WHY: Critical alerts mean money may be wrong (seat drift, a provider
change that could not be recorded locally). Email is the escalation
channel that reaches someone even when nobody watches Slack.

HOW: Uses the Resend API over httpx. Without an API key a mock provider
logs the email instead, so development and tests never send mail.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from html import escape
from typing import Optional, Dict, Any, List

import httpx

from seatsync.core.config import settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailType(str, Enum):
    """Types of email this service sends."""

    BILLING_ALERT = "billing_alert"


@dataclass
class EmailMessage:
    """An email to be sent."""

    to_email: str
    subject: str
    html_content: str
    text_content: Optional[str] = None
    from_email: Optional[str] = None
    email_type: EmailType = EmailType.BILLING_ALERT
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class EmailResult:
    """Result of an email send operation."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None


# ============================================================================
# Email Provider Interface
# ============================================================================


class EmailProvider(ABC):
    """Abstract base class for email providers."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """Send an email message."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """True if API keys/credentials are present."""
        pass


class ResendProvider(EmailProvider):
    """Resend email provider implementation."""

    def __init__(self, api_key: Optional[str] = None, timeout: float = 30.0):
        self._api_key = api_key or settings.RESEND_API_KEY
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send email via Resend API.

        Failures are returned as an unsuccessful EmailResult, never raised,
        so the alert service can report the channel as failed.
        """
        if not self.is_configured():
            return EmailResult(
                success=False,
                error="Resend API key not configured",
                provider="resend",
            )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    RESEND_API_URL,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": message.from_email or settings.ALERT_EMAIL_FROM,
                        "to": [message.to_email],
                        "subject": message.subject,
                        "html": message.html_content,
                        "text": message.text_content,
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Resend send error: {e}")
            return EmailResult(success=False, error=str(e), provider="resend")

        if response.status_code in (200, 201):
            data = response.json()
            return EmailResult(success=True, message_id=data.get("id"), provider="resend")

        return EmailResult(
            success=False,
            error=f"Resend API error: {response.status_code} - {response.text}",
            provider="resend",
        )


class MockEmailProvider(EmailProvider):
    """
    Mock email provider for testing and development.

    Logs emails instead of sending them and keeps them in ``sent_emails``.
    """

    sent_emails: List[EmailMessage] = []

    def is_configured(self) -> bool:
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        logger.info(
            f"[MOCK EMAIL] To: {message.to_email}, "
            f"Subject: {message.subject}, "
            f"Type: {message.email_type.value}"
        )
        MockEmailProvider.sent_emails.append(message)

        return EmailResult(
            success=True,
            message_id=f"mock-{datetime.utcnow().timestamp()}",
            provider="mock",
        )

    @classmethod
    def clear_sent_emails(cls):
        """Clear sent emails list (for test cleanup)."""
        cls.sent_emails = []


# ============================================================================
# Email Service
# ============================================================================


class EmailService:
    """
    High-level email service.

    Picks Resend when RESEND_API_KEY is set, otherwise the mock provider.
    """

    def __init__(self, provider: Optional[EmailProvider] = None):
        if provider:
            self._provider = provider
        elif settings.RESEND_API_KEY:
            self._provider = ResendProvider()
        else:
            logger.warning("No email provider configured, using mock provider")
            self._provider = MockEmailProvider()

    async def send_email(self, message: EmailMessage) -> EmailResult:
        """Send an email message using the configured provider."""
        logger.info(
            f"Sending {message.email_type.value} email to {message.to_email}",
            extra={"email_type": message.email_type.value, "to": message.to_email},
        )

        result = await self._provider.send(message)

        if result.success:
            logger.info(
                f"Email sent successfully: {result.message_id}",
                extra={"message_id": result.message_id, "provider": result.provider},
            )
        else:
            logger.error(
                f"Email send failed: {result.error}",
                extra={"email_type": message.email_type.value, "error": result.error},
            )

        return result

    async def send_billing_alert_email(
        self,
        severity: str,
        alert_message: str,
        context: Dict[str, Any],
        to_email: Optional[str] = None,
    ) -> EmailResult:
        """
        Email a billing alert with its full context.

        Args:
            severity: Alert severity (normally critical)
            alert_message: Alert text, used in the subject
            context: Structured alert context, rendered as JSON
            to_email: Recipient (defaults to ALERT_EMAIL_TO)

        Returns:
            EmailResult; unsuccessful when no recipient is configured
        """
        recipient = to_email or settings.ALERT_EMAIL_TO
        if not recipient:
            logger.warning("ALERT_EMAIL_TO not configured, skipping alert email")
            return EmailResult(success=False, error="No alert recipient configured")

        context_json = json.dumps(context, indent=2, default=str)
        subject = f"[{severity.upper()}] [{settings.ENVIRONMENT}] {alert_message}"[:200]

        html = (
            f"<h2>Billing alert: {escape(severity.upper())}</h2>"
            f"<p>{escape(alert_message)}</p>"
            f"<pre>{escape(context_json)}</pre>"
        )
        text = f"Billing alert: {severity.upper()}\n\n{alert_message}\n\n{context_json}"

        return await self.send_email(
            EmailMessage(
                to_email=recipient,
                subject=subject,
                html_content=html,
                text_content=text,
                email_type=EmailType.BILLING_ALERT,
                metadata={"severity": severity},
            )
        )


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get or create the global email service instance."""
    global _email_service

    if _email_service is None:
        _email_service = EmailService()

    return _email_service
