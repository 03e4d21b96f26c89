"""Pytest configuration and fixtures for BananaBill tests.

Provides reusable fixtures for the database, sequence store, a seeded
farmer, the HTTP client and Redis.
"""

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import bananabill.models  # noqa: F401  (registers every table on Base.metadata)
from bananabill.config import settings
from bananabill.database import Base, get_db
from bananabill.main import app
from bananabill.models.farmer import Farmer
from bananabill.services.calculation import BillInputs
from bananabill.services.sequence import (
    BillNumberer,
    DatabaseSequenceStore,
    get_bill_numberer,
)


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """File-backed SQLite engine; one real connection per session."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def sequence_store(session_factory) -> DatabaseSequenceStore:
    return DatabaseSequenceStore(session_factory)


@pytest.fixture
def numberer(sequence_store) -> BillNumberer:
    return BillNumberer(sequence_store)


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def farmer(db_session: AsyncSession) -> Farmer:
    """Create test farmer."""
    farmer = Farmer(
        id="farmer-001",
        name="Ramesh Patil",
        mobile_number="9876543210",
        village="Jalgaon",
    )
    db_session.add(farmer)
    await db_session.commit()
    return farmer


@pytest.fixture
def worked_example() -> BillInputs:
    """gross 100, patti 5, 10 boxes, tut 2, rate 50, majuri 500."""
    return BillInputs(
        gross_weight=Decimal("100.00"),
        patti_weight=Decimal("5.00"),
        box_count=10,
        tut_wastage=Decimal("2.00"),
        rate_per_kg=Decimal("50.00"),
        majuri=Decimal("500.00"),
    )


@pytest_asyncio.fixture
async def client(session_factory, numberer) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden database and numbering dependencies."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_bill_numberer():
        return numberer

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_bill_numberer] = override_get_bill_numberer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Redis Fixtures ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis_client():
    """Redis client for tests; skips when no server is reachable."""
    import redis.asyncio as redis
    from redis.exceptions import ConnectionError as RedisConnectionError

    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except (RedisConnectionError, OSError):
        await client.aclose()
        pytest.skip("Redis not available")

    yield client

    keys = await client.keys("bananabill-test:*")
    if keys:
        await client.delete(*keys)
    await client.aclose()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "concurrency: Concurrent access tests")
    config.addinivalue_line("markers", "redis: Tests needing a Redis server")
