"""
Unit tests for SlackService.

WHAT: Tests Slack webhook integration and the billing alert message.

WHY: Ensures alerts are posted correctly and errors surface as
SlackNotificationError for the alert service to absorb.

HOW: Uses mocked HTTP client to verify webhook calls.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch, MagicMock

from seatsync.services.slack_service import (
    SlackService,
    build_billing_alert_message,
    build_fields_block,
    build_header_block,
)
from seatsync.core.exceptions import SlackNotificationError


class TestSlackService:
    """Tests for SlackService class."""

    @pytest.fixture
    def slack_service(self):
        """Create SlackService with test configuration."""
        return SlackService(
            webhook_url="https://hooks.slack.com/services/test/test/test",
            enabled=True,
        )

    @pytest.mark.asyncio
    async def test_send_message_success(self, slack_service):
        """Test successful message sending."""
        with patch("seatsync.services.slack_service.httpx.AsyncClient") as mock_client:
            mock_response = MagicMock()
            mock_response.status_code = 200
            mock_response.text = "ok"
            mock_post = AsyncMock(return_value=mock_response)
            mock_client.return_value.__aenter__.return_value.post = mock_post

            result = await slack_service.send_message("Test message", blocks=[{"type": "divider"}])

            assert result is True
            payload = mock_post.call_args.kwargs["json"]
            assert payload == {"text": "Test message", "blocks": [{"type": "divider"}]}

    @pytest.mark.asyncio
    async def test_send_message_disabled(self):
        """Test message not sent when disabled."""
        service = SlackService(webhook_url="https://hooks.slack.com/x", enabled=False)
        assert service.is_configured is False
        assert await service.send_message("Test message") is False

    @pytest.mark.asyncio
    async def test_send_message_no_webhook_url(self, monkeypatch):
        """Test message not sent when no webhook URL."""
        from seatsync.core import config

        monkeypatch.setattr(config.settings, "SLACK_WEBHOOK_URL", None)
        service = SlackService(webhook_url=None, enabled=True)
        assert await service.send_message("Test message") is False

    @pytest.mark.asyncio
    async def test_send_message_error_response(self, slack_service):
        """Test error response raises SlackNotificationError."""
        with patch("seatsync.services.slack_service.httpx.AsyncClient") as mock_client:
            mock_response = MagicMock()
            mock_response.status_code = 404
            mock_response.text = "no_service"
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=mock_response
            )

            with pytest.raises(SlackNotificationError) as exc_info:
                await slack_service.send_message("Test message")

            assert exc_info.value.context["upstream_status"] == 404

    @pytest.mark.asyncio
    async def test_send_message_timeout(self, slack_service):
        """Test timeout raises SlackNotificationError."""
        with patch("seatsync.services.slack_service.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                side_effect=httpx.TimeoutException("Timeout")
            )

            with pytest.raises(SlackNotificationError) as exc_info:
                await slack_service.send_message("Test message")

            assert "timed out" in exc_info.value.message


class TestBlockBuilders:
    def test_header_truncated(self):
        block = build_header_block("x" * 200)
        assert len(block["text"]["text"]) == 150

    def test_fields_block(self):
        block = build_fields_block([{"label": "Difference", "value": "2"}])
        assert block["fields"] == [{"type": "mrkdwn", "text": "*Difference:*\n2"}]


class TestBillingAlertMessage:
    """Tests for build_billing_alert_message."""

    def test_highlights_seat_numbers(self):
        context = {
            "subscription_id": 12,
            "database_quantity": 8,
            "provider_quantity": 6,
            "difference": 2,
            "job": "reconcile_subscriptions",
            "correlation_id": "reconcile-abc",
        }

        text, blocks = build_billing_alert_message(
            "critical", "Subscription sub_1 out of sync!", context, environment="production"
        )

        assert text == "[CRITICAL] Subscription sub_1 out of sync!"
        assert blocks[0]["type"] == "header"
        assert ":rotating_light:" in blocks[0]["text"]["text"]

        field_texts = [field["text"] for field in blocks[2]["fields"]]
        assert "*Database quantity:*\n8" in field_texts
        assert "*Provider quantity:*\n6" in field_texts
        assert "*Difference:*\n2" in field_texts

        footer = blocks[-1]["elements"][0]["text"]
        assert footer == "Job: reconcile_subscriptions | Correlation: reconcile-abc | Env: production"

    def test_without_highlighted_fields(self):
        _, blocks = build_billing_alert_message("info", "Run complete", {"checked": 3})

        assert [block["type"] for block in blocks] == [
            "header",
            "section",
            "divider",
            "section",
            "context",
        ]
        assert blocks[-1]["elements"][0]["text"] == "Job: n/a"
