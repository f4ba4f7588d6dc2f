"""Billing event Data Access Object (DAO)."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.dao.base import BaseDAO
from seatsync.models.billing_event import BillingEvent


class BillingEventDAO(BaseDAO[BillingEvent]):
    """Data Access Object for BillingEvent model."""

    def __init__(self, session: AsyncSession):
        super().__init__(BillingEvent, session)

    async def get_by_event_id(self, event_id: str) -> Optional[BillingEvent]:
        return await self.get_by_field("event_id", event_id)
