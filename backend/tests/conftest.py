"""
Test Configuration — Fixtures for async DB, test client, and fake metrics data.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state; app code that commits only releases a savepoint.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_db, get_metrics_repository
from api.main import app
from core.config import Settings
from db.session import Base
from fakes import AGENCY_ID, TEST_DATABASE_URL, TENANT_ID, FakeMetricsRepository
from inventory.repository import Scope


@pytest.fixture
def settings():
    return Settings(
        database_url=TEST_DATABASE_URL,
        critical_alert_limit=5,
        active_alert_limit=10,
        alert_ttl_hours=None,
        component_timeout_seconds=2.0,
    )


@pytest.fixture
def scope():
    return Scope(tenant_id=TENANT_ID)


@pytest.fixture
def agency_scope():
    return Scope(tenant_id=TENANT_ID, agency_id=AGENCY_ID)


@pytest.fixture
async def test_engine():
    """Create a test database engine and build all tables."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        # Commits inside app code release a SAVEPOINT instead of ending our transaction
        session = AsyncSession(bind=conn, expire_on_commit=False, join_transaction_mode="create_savepoint")

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def fake_repository():
    return FakeMetricsRepository()


@pytest.fixture
async def client(test_db, fake_repository):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_metrics_repository():
        return fake_repository

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_metrics_repository] = override_get_metrics_repository

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
