"""Alert Data Access Object (DAO)."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.dao.base import BaseDAO
from seatsync.models.alert import Alert, AlertSeverity


class AlertDAO(BaseDAO[Alert]):
    """Data Access Object for Alert model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Alert, session)

    async def list_recent(
        self,
        severity: Optional[AlertSeverity] = None,
        job: Optional[str] = None,
        limit: int = 50,
    ) -> List[Alert]:
        """Newest alerts first, optionally filtered by severity and job."""
        query = select(Alert)
        if severity is not None:
            query = query.where(Alert.severity == severity)
        if job is not None:
            query = query.where(Alert.job == job)
        query = query.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())
