"""Webhook acknowledgement schema."""

from typing import Optional

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    """
    Acknowledgement returned to the provider.

    WHY: Any 2xx stops the provider from redelivering, so duplicates and
    unsupported events are acknowledged too; ``status`` tells them apart.
    """

    received: bool = True
    event_name: str
    event_id: str
    status: str = Field(description="processed or skipped")
    message: str
    duplicate: bool = False
    subscription_id: Optional[int] = None
