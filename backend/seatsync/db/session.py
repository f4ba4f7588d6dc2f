"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Request handlers get a session per request; background jobs open their own
through AsyncSessionLocal.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from seatsync.core.config import settings


# WHY: pool_pre_ping recycles stale connections. Pool sizing only applies
# to server databases; SQLite engines pick their own pool class.
_engine_kwargs = {"echo": settings.DEBUG, "pool_pre_ping": True}
if settings.async_database_url.startswith("postgresql"):
    _engine_kwargs.update(pool_size=10, max_overflow=20)

engine = create_async_engine(settings.async_database_url, **_engine_kwargs)

# WHY: expire_on_commit=False lets jobs keep reading plain attributes of a
# subscription after committing it, without an implicit async reload.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    Commits when the request handler returns and rolls back when it raises.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
