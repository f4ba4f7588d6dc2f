"""
Slack Webhook Integration Service.

WHAT: Sends billing alerts to a Slack channel via an incoming webhook.

WHY: Warnings and critical alerts (provider failures, seat drift) need a
human to look at them soon. Slack is the lower-urgency channel; critical
alerts also go out by email.

HOW: Uses Slack's Incoming Webhooks API to post messages with Block Kit
formatting.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from seatsync.core.config import settings
from seatsync.core.exceptions import SlackNotificationError

logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    "info": ":information_source:",
    "warning": ":warning:",
    "critical": ":rotating_light:",
}

# Context keys shown as fields; everything else goes in a code block
HIGHLIGHTED_FIELDS = (
    "subscription_id",
    "organization_id",
    "database_quantity",
    "provider_quantity",
    "difference",
    "previous_seats",
    "new_seats",
    "pending_seats",
)


class SlackService:
    """
    Service for sending messages to Slack via webhooks.

    Attributes:
        webhook_url: Slack Incoming Webhook URL
        enabled: Whether Slack notifications are enabled
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize SlackService.

        Args:
            webhook_url: Slack webhook URL (defaults to settings)
            enabled: Whether notifications are enabled (defaults to settings)
            timeout: HTTP request timeout in seconds
        """
        self.webhook_url = webhook_url or settings.SLACK_WEBHOOK_URL
        self.enabled = enabled if enabled is not None else settings.SLACK_WEBHOOK_ENABLED
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.webhook_url)

    async def send_message(
        self,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> bool:
        """
        Send a message to Slack.

        Args:
            text: Plain text message (also used as fallback for blocks)
            blocks: Optional Block Kit blocks for rich formatting

        Returns:
            True if the message was sent, False if Slack is disabled

        Raises:
            SlackNotificationError: If the webhook call fails
        """
        if not self.enabled:
            logger.debug("Slack notifications disabled, skipping message")
            return False

        if not self.webhook_url:
            logger.warning("Slack webhook URL not configured")
            return False

        payload: Dict[str, Any] = {"text": text}
        if blocks:
            payload["blocks"] = blocks

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload)

                # Slack returns "ok" for successful messages
                if response.status_code == 200 and response.text == "ok":
                    logger.info("Slack message sent successfully")
                    return True

                logger.error(
                    f"Slack webhook returned error: {response.status_code} - {response.text}"
                )
                raise SlackNotificationError(
                    message="Slack webhook returned an error",
                    upstream_status=response.status_code,
                    response_text=response.text,
                )

        except httpx.TimeoutException as e:
            logger.error(f"Slack webhook timeout: {e}")
            raise SlackNotificationError(
                message="Slack webhook request timed out",
                timeout=self.timeout,
            ) from e

        except httpx.RequestError as e:
            logger.error(f"Slack webhook request error: {e}")
            raise SlackNotificationError(
                message="Failed to connect to Slack webhook",
                error=str(e),
            ) from e


# ============================================================================
# Block Kit Builders
# ============================================================================


def build_header_block(text: str) -> Dict[str, Any]:
    """Header block; Slack truncates headers at 150 characters."""
    return {
        "type": "header",
        "text": {
            "type": "plain_text",
            "text": text[:150],
            "emoji": True,
        },
    }


def build_section_block(text: str) -> Dict[str, Any]:
    """Markdown section block."""
    return {
        "type": "section",
        "text": {
            "type": "mrkdwn",
            "text": text,
        },
    }


def build_fields_block(fields: List[Dict[str, str]]) -> Dict[str, Any]:
    """
    Build a section block with only fields (no text).

    Args:
        fields: List of dicts with 'label' and 'value' keys
    """
    return {
        "type": "section",
        "fields": [
            {"type": "mrkdwn", "text": f"*{f['label']}:*\n{f['value']}"}
            for f in fields
        ],
    }


def build_context_block(text: str) -> Dict[str, Any]:
    return {
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": text},
        ],
    }


def build_divider_block() -> Dict[str, Any]:
    return {"type": "divider"}


# ============================================================================
# Pre-built Message Templates
# ============================================================================


def _label(key: str) -> str:
    return key.replace("_", " ").capitalize()


def build_billing_alert_message(
    severity: str,
    message: str,
    context: Dict[str, Any],
    environment: Optional[str] = None,
) -> tuple[str, List[Dict[str, Any]]]:
    """
    Build Slack message for a billing alert.

    WHAT: Severity header, the alert text, the key seat numbers as
    fields, and the full context as JSON.

    WHY: The on-call reader must be able to act on the alert without
    opening the database, so every value that triggered it is shown.

    Args:
        severity: info, warning or critical
        message: Alert message
        context: Structured alert context
        environment: Deployment name shown in the footer

    Returns:
        Tuple of (fallback text, Block Kit blocks)
    """
    emoji = SEVERITY_EMOJI.get(severity, "")
    text = f"[{severity.upper()}] {message}"

    blocks = [
        build_header_block(f"{emoji} Billing alert: {severity.upper()}"),
        build_section_block(message),
    ]

    fields = [
        {"label": _label(key), "value": str(context[key])}
        for key in HIGHLIGHTED_FIELDS
        if context.get(key) is not None
    ]
    if fields:
        blocks.append(build_fields_block(fields))

    blocks.append(build_divider_block())
    blocks.append(
        build_section_block(f"```{json.dumps(context, indent=2, default=str)[:2800]}```")
    )

    footer = [f"Job: {context.get('job') or 'n/a'}"]
    if context.get("correlation_id"):
        footer.append(f"Correlation: {context['correlation_id']}")
    if environment:
        footer.append(f"Env: {environment}")
    blocks.append(build_context_block(" | ".join(footer)))

    return text, blocks
