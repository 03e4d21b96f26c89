"""Atomic sequence generation and bill numbering.

Bill numbers look like ``BB`` + YYMM + 5-digit sequence, e.g. BB260100042.
The sequence for each month lives under key ``bill_YYMM`` and is advanced
with a single store-side increment-or-create:

  - DatabaseSequenceStore  INSERT .. ON CONFLICT DO UPDATE .. RETURNING,
                           committed in its own short transaction
  - RedisSequenceStore     INCR

Neither store caches values in-process: every service instance shares the
same counter, and no two callers can ever be handed the same value.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bananabill.config import settings
from bananabill.exceptions import PersistenceUnavailable, SequenceExhausted
from bananabill.models.sequence import Sequence

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SequenceStore(ABC):
    """Durable counters keyed by an arbitrary string."""

    @abstractmethod
    async def next_value(self, key: str) -> int:
        """Increment ``key`` (creating it at 1) and return the new value."""

    @abstractmethod
    async def current_value(self, key: str) -> int | None:
        """Read the last issued value without advancing it."""


class DatabaseSequenceStore(SequenceStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def next_value(self, key: str) -> int:
        try:
            async with self._session_factory() as session:
                dialect = session.bind.dialect.name
                insert = _UPSERT_DIALECTS.get(dialect)
                if insert is None:
                    raise RuntimeError(f"No atomic upsert for dialect {dialect!r}")

                stmt = insert(Sequence).values(key=key, value=1)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Sequence.key],
                    set_={"value": Sequence.value + 1},
                ).returning(Sequence.value)

                value = (await session.execute(stmt)).scalar_one()
                await session.commit()
                return value
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.error("Sequence store unavailable for key %s: %s", key, exc)
            raise PersistenceUnavailable(
                "Unable to generate bill number. Database unavailable."
            ) from exc

    async def current_value(self, key: str) -> int | None:
        async with self._session_factory() as session:
            return await session.scalar(select(Sequence.value).where(Sequence.key == key))

    async def list_sequences(self, prefix: str = "") -> list[Sequence]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Sequence)
                .where(Sequence.key.like(f"{prefix}%"))
                .order_by(Sequence.key)
            )
            return list(result.scalars().all())


class RedisSequenceStore(SequenceStore):
    def __init__(self, client, namespace: str = "bananabill:seq"):
        self._client = client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def next_value(self, key: str) -> int:
        try:
            return int(await self._client.incr(self._key(key)))
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.error("Redis unavailable for sequence %s: %s", key, exc)
            raise PersistenceUnavailable(
                "Unable to generate bill number. Sequence store unavailable."
            ) from exc

    async def current_value(self, key: str) -> int | None:
        value = await self._client.get(self._key(key))
        return int(value) if value is not None else None


class BillNumberer:
    """Turns the next sequence value for the current month into a bill number."""

    def __init__(
        self,
        store: SequenceStore,
        prefix: str = "BB",
        ceiling: int = 99999,
        width: int = 5,
    ):
        self.store = store
        self.prefix = prefix
        self.ceiling = ceiling
        self.width = width

    @staticmethod
    def period_code(now: datetime) -> str:
        return now.strftime("%y%m")

    @staticmethod
    def sequence_key(period: str) -> str:
        return f"bill_{period}"

    async def next_bill_number(self, now: datetime | None = None) -> str:
        """Issue the next number, e.g. BB260100001.

        Raises SequenceExhausted once the month passes the ceiling; the
        caller must not create a bill in that case.
        """
        period = self.period_code(now or datetime.utcnow())
        value = await self.store.next_value(self.sequence_key(period))
        if value > self.ceiling:
            logger.error("Bill sequence for %s exhausted at %d", period, value)
            raise SequenceExhausted(period, self.ceiling)
        return f"{self.prefix}{period}{value:0{self.width}d}"


# ── Factories ────────────────────────────────────────────────

async def get_sequence_store() -> SequenceStore:
    """Build the store selected by ``settings.sequence_backend``."""
    if settings.sequence_backend == "redis":
        from bananabill.utils.redis_pool import get_redis

        return RedisSequenceStore(await get_redis())
    if settings.sequence_backend == "database":
        from bananabill.database import async_session

        return DatabaseSequenceStore(async_session)
    raise ValueError(f"Unknown sequence backend: {settings.sequence_backend!r}")


async def get_bill_numberer() -> BillNumberer:
    """FastAPI dependency: numberer over the configured store."""
    return BillNumberer(
        await get_sequence_store(),
        prefix=settings.bill_number_prefix,
        ceiling=settings.max_bills_per_month,
    )
