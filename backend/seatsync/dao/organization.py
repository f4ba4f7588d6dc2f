"""Organization Data Access Object (DAO)."""

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.dao.base import BaseDAO
from seatsync.models.organization import Organization


class OrganizationDAO(BaseDAO[Organization]):
    """Data Access Object for Organization model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Organization, session)
