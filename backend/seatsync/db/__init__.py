"""Database package"""

from seatsync.db.session import AsyncSessionLocal, engine, get_db
from seatsync.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
