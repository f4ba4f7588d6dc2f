"""
LemonSqueezy webhook endpoint.

WHAT: POST /webhooks/lemonsqueezy

SECURITY:
- The signature is checked against the raw body before anything is parsed
- No bearer token; the provider authenticates through the signature

WHY: A 2xx response stops redelivery, so duplicates and unsupported events
are acknowledged with 200. A processing failure returns an error status
and the provider retries it later.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.config import settings
from seatsync.core.exceptions import ConfigurationError, ValidationError, WebhookSignatureError
from seatsync.db.session import get_db
from seatsync.schemas.webhooks import WebhookResponse
from seatsync.services.webhook_service import WebhookService, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/lemonsqueezy",
    response_model=WebhookResponse,
    summary="LemonSqueezy subscription webhook",
)
async def lemonsqueezy_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
):
    if not settings.LEMONSQUEEZY_WEBHOOK_SECRET:
        raise ConfigurationError(
            message="LEMONSQUEEZY_WEBHOOK_SECRET is not configured",
            setting="LEMONSQUEEZY_WEBHOOK_SECRET",
        )

    raw_body = await request.body()
    if not verify_signature(raw_body, x_signature, settings.LEMONSQUEEZY_WEBHOOK_SECRET):
        logger.warning("Webhook signature verification failed")
        raise WebhookSignatureError()

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise ValidationError(message="Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError(message="Webhook body must be a JSON object")

    result = await WebhookService(db).process(payload)
    return WebhookResponse(
        event_name=result.event_name,
        event_id=result.event_id,
        status=result.status,
        message=result.message,
        duplicate=result.duplicate,
        subscription_id=result.subscription_id,
    )
