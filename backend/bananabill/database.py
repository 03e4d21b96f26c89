"""Database engine, session factory, and declarative base.

One DeclarativeBase for every table (sequences, bills, payment_history,
farmers).  PostgreSQL via asyncpg in production; SQLite via aiosqlite is
accepted for local runs and tests.

Session dependency for FastAPI:
  - get_db()  → commits on success, rolls back on any exception
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from bananabill.config import settings


def build_engine(url: str, echo: bool = False):
    """Create an async engine, skipping pool sizing for SQLite."""
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
    )


engine = build_engine(settings.database_url, echo=settings.debug)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Base class ──────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# ── Session dependency ──────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a session for one request."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
