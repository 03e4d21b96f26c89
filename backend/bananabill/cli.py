"""Management CLI for the ledger database.

Usage:
    python -m bananabill.cli init-db                   # Create tables from the ORM metadata
    python -m bananabill.cli list-sequences [prefix]   # Show issued counters
    python -m bananabill.cli show-bill <bill_number>   # Bill plus payment history
"""

import asyncio
import sys

import bananabill.models  # noqa: F401
from bananabill.database import Base, async_session, engine
from bananabill.services.bills import get_bill_by_number
from bananabill.services.payments import get_payment_history
from bananabill.services.sequence import DatabaseSequenceStore


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print(f"Created {len(Base.metadata.tables)} table(s)")


async def list_sequences(prefix: str = "bill_"):
    store = DatabaseSequenceStore(async_session)
    sequences = await store.list_sequences(prefix)
    for seq in sequences:
        print(f"  {seq.key:<16} {seq.value:>6}")
    print(f"\n{len(sequences)} sequence(s)")


async def show_bill(bill_number: str):
    async with async_session() as db:
        bill = await get_bill_by_number(db, bill_number)
        print(f"  {bill.bill_number}  v{bill.version}  {bill.payment_status.value}")
        print(f"  chargeable {bill.chargeable_weight} kg @ {bill.rate_per_kg}")
        print(f"  net {bill.net_amount}  paid {bill.paid_amount}  advance {bill.advance_amount}")
        history = await get_payment_history(db, bill.id)
        for entry in history:
            print(
                f"    {entry.created_at:%Y-%m-%d %H:%M}  {entry.payment_type.value:<8} "
                f"{entry.amount:>10}  {entry.previous_paid_amount} -> {entry.new_paid_amount}"
            )


async def _run(coro):
    try:
        await coro
    finally:
        await engine.dispose()


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "init-db":
        asyncio.run(_run(init_db()))
    elif cmd == "list-sequences":
        asyncio.run(_run(list_sequences(*sys.argv[2:3])))
    elif cmd == "show-bill" and len(sys.argv) > 2:
        asyncio.run(_run(show_bill(sys.argv[2])))
    else:
        print("Usage: python -m bananabill.cli [init-db|list-sequences [prefix]|show-bill <bill_number>]")
