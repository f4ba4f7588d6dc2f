"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

# Settings are read at import time; these must be set before seatsync loads.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("INTERNAL_API_TOKEN", "test-internal-token")
os.environ.setdefault("LEMONSQUEEZY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("RECONCILIATION_DELAY_SECONDS", "0")
os.environ.setdefault("PENDING_SYNC_DELAY_SECONDS", "0")

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from seatsync.main import app
from seatsync.models.base import Base
from seatsync.db.session import get_db
from seatsync.core.deps import get_provider_client_factory
from seatsync.services import email as email_module
from seatsync.services.lemonsqueezy_client import LemonSqueezyClient, ProviderSubscription


# WHY: In-memory SQLite removes the external database dependency.
# StaticPool keeps every session of a test on the same connection.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session.

    Services under test commit on this session, so each test's engine is
    discarded rather than rolled back.
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def provider_client() -> MagicMock:
    """
    Fake LemonSqueezy client.

    WHY: Seat manager and job tests assert on the provider calls made,
    never on HTTP. Client HTTP behaviour is tested separately with a
    patched httpx.AsyncClient.
    """
    client = MagicMock(spec=LemonSqueezyClient)
    client.get_subscription = AsyncMock(
        return_value=ProviderSubscription(
            id="sub_1",
            status="active",
            quantity=5,
            subscription_item_id="item_1",
            renews_at=None,
        )
    )
    client.update_subscription_item = AsyncMock(return_value={})
    client.create_usage_record = AsyncMock(return_value={})
    return client


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, provider_client) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient over ASGITransport exercises the FastAPI app without
    running a server. The database and provider dependencies are replaced
    with the test session and the fake provider client.
    """

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_client_factory] = lambda: (lambda: provider_client)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def use_mock_email_provider(monkeypatch):
    """
    Use mock email provider for all tests.

    WHY: Tests must never send real emails. The global email service is
    reset so each test builds one from the patched settings.

    Note: Tests that assert on alert emails set ALERT_EMAIL_TO themselves.
    """
    from seatsync.core import config

    email_module.MockEmailProvider.clear_sent_emails()
    monkeypatch.setattr(config.settings, "RESEND_API_KEY", None)
    monkeypatch.setattr(config.settings, "SLACK_WEBHOOK_ENABLED", False)
    monkeypatch.setattr(email_module, "_email_service", None)

    yield

    email_module.MockEmailProvider.clear_sent_emails()
