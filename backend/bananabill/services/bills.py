"""Bill aggregate service — create, update, delete and query bills.

Handles the write side of a bill's life:
  - Resolving the farmer and embedding a display snapshot
  - Running the calculation pipeline over the inputs
  - Taking a fresh bill number (never reused, even after deletion)
  - Writing with an optimistic version check

Every mutator commits its own write.  A caller holding a stale version gets
ConcurrencyConflict and is expected to reload and retry; nothing here
retries on its behalf.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from bananabill.exceptions import (
    ConcurrencyConflict,
    NotFoundError,
    PersistenceUnavailable,
    ValidationError,
)
from bananabill.models.bill import Bill, PaymentStatus
from bananabill.services.calculation import (
    BillCalculation,
    BillInputs,
    BillingRules,
    calculate_bill,
)
from bananabill.services.farmers import FarmerDirectory, FarmerSummary
from bananabill.services.sequence import BillNumberer

logger = logging.getLogger(__name__)


# ── Versioned persistence helpers ────────────────────────────

async def load_bill(db: AsyncSession, bill_id: str) -> Bill:
    """Fetch the current row, bypassing any stale copy in the session."""
    bill = (
        await db.execute(
            select(Bill)
            .where(Bill.id == bill_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not bill:
        raise NotFoundError("Bill", bill_id)
    return bill


def check_version(bill: Bill, expected_version: int | None) -> None:
    if expected_version is not None and bill.version != expected_version:
        raise ConcurrencyConflict(bill.id, expected_version, bill.version)


async def commit_bill(db: AsyncSession, bill: Bill, read_version: int) -> Bill:
    """Commit pending changes as version ``read_version + 1``.

    The flush runs ``UPDATE .. WHERE version = read_version``; if another
    writer got there first no row matches and the write is refused.

    Rollback expires ``bill``, so the error paths only use ``bill_id``.
    """
    bill_id = bill.id
    bill.version = read_version + 1
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        logger.info("Version conflict on bill %s at version %d", bill_id, read_version)
        raise ConcurrencyConflict(bill_id, read_version) from exc
    except (OperationalError, InterfaceError) as exc:
        await db.rollback()
        logger.error("Database unavailable while saving bill %s: %s", bill_id, exc)
        raise PersistenceUnavailable() from exc
    return bill


def _apply_calculation(bill: Bill, calc: BillCalculation) -> None:
    bill.gross_weight = calc.gross_weight
    bill.patti_weight = calc.patti_weight
    bill.box_count = calc.box_count
    bill.tut_wastage = calc.tut_wastage
    bill.rate_per_kg = calc.rate_per_kg
    bill.majuri = calc.majuri
    bill.base_net_weight = calc.base_net_weight
    bill.danda_weight = calc.danda_weight
    bill.chargeable_weight = calc.chargeable_weight
    bill.total_amount = calc.total_amount
    bill.net_amount = calc.net_amount


# ── Create / update / delete ─────────────────────────────────

async def create_bill(
    db: AsyncSession,
    inputs: BillInputs,
    farmer_id: str,
    *,
    user_id: str | None,
    numberer: BillNumberer,
    vehicle_number: str | None = None,
    farmers: FarmerDirectory | None = None,
    rules: BillingRules | None = None,
) -> Bill:
    """Create a new bill with all derived fields computed server-side.

    Raises:
        NotFoundError       farmer does not resolve
        ValidationError     missing or negative inputs
        SequenceExhausted   month's number range used up
        PersistenceUnavailable  no number could be issued
    """
    farmers = farmers or FarmerDirectory(db)
    farmer = await farmers.resolve(farmer_id)

    # Validate before numbering so bad input never burns a number
    calc = calculate_bill(inputs, rules)

    bill_number = await numberer.next_bill_number()

    bill = Bill(
        bill_number=bill_number,
        version=0,
        farmer_id=farmer.id,
        farmer_snapshot=farmer.snapshot(),
        vehicle_number=vehicle_number,
        payment_status=PaymentStatus.UNPAID,
        paid_amount=Decimal("0.00"),
        advance_amount=Decimal("0.00"),
        created_by=user_id,
        created_at=datetime.utcnow(),
    )
    _apply_calculation(bill, calc)
    db.add(bill)
    try:
        await db.commit()
    except (OperationalError, InterfaceError) as exc:
        await db.rollback()
        logger.error("Database unavailable while creating bill %s: %s", bill_number, exc)
        raise PersistenceUnavailable() from exc

    logger.info(
        "Created bill %s for farmer %s by user %s (net %s)",
        bill_number, farmer.id, user_id, calc.net_amount,
    )
    return bill


async def update_bill(
    db: AsyncSession,
    bill_id: str,
    inputs: BillInputs,
    farmer_id: str,
    expected_version: int,
    *,
    user_id: str | None,
    vehicle_number: str | None = None,
    farmers: FarmerDirectory | None = None,
    rules: BillingRules | None = None,
) -> Bill:
    """Replace a bill's inputs and recompute everything derived from them.

    The bill number and payment state are left untouched.
    """
    bill = await load_bill(db, bill_id)
    check_version(bill, expected_version)

    farmers = farmers or FarmerDirectory(db)
    farmer = await farmers.resolve(farmer_id)
    calc = calculate_bill(inputs, rules)

    bill.farmer_id = farmer.id
    bill.farmer_snapshot = farmer.snapshot()
    bill.vehicle_number = vehicle_number
    _apply_calculation(bill, calc)
    bill.updated_at = datetime.utcnow()
    bill.updated_by = user_id

    await commit_bill(db, bill, expected_version)
    logger.info("Bill %s updated to version %d by user %s", bill.bill_number, bill.version, user_id)
    return bill


async def delete_bill(
    db: AsyncSession,
    bill_id: str,
    *,
    user_id: str | None,
    expected_version: int | None = None,
) -> None:
    """Remove a bill.  Its number stays consumed."""
    bill = await load_bill(db, bill_id)
    check_version(bill, expected_version)
    bill_number = bill.bill_number
    read_version = bill.version

    await db.delete(bill)
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConcurrencyConflict(bill_id, read_version) from exc

    logger.warning("Bill %s deleted by user %s", bill_number, user_id)


async def set_due_date(
    db: AsyncSession,
    bill_id: str,
    due_date: datetime | None,
    *,
    user_id: str | None,
    expected_version: int | None = None,
) -> Bill:
    bill = await load_bill(db, bill_id)
    check_version(bill, expected_version)
    read_version = bill.version

    bill.due_date = due_date
    bill.updated_at = datetime.utcnow()
    bill.updated_by = user_id
    return await commit_bill(db, bill, read_version)


async def mark_reminder_sent(db: AsyncSession, bill_id: str) -> Bill:
    """Stamp the time a payment reminder went out for this bill."""
    bill = await load_bill(db, bill_id)
    read_version = bill.version
    bill.last_reminder_sent = datetime.utcnow()
    return await commit_bill(db, bill, read_version)


# ── Queries ──────────────────────────────────────────────────

def _parse_status(value, *, allow_all: bool = False) -> PaymentStatus | None:
    """Case-insensitive status filter; None (or "ALL" in reports) means no filter."""
    if value is None or value == "":
        return None
    if isinstance(value, PaymentStatus):
        return value
    text = str(value).strip().upper()
    if allow_all and text == "ALL":
        return None
    try:
        return PaymentStatus(text)
    except ValueError:
        raise ValidationError("paymentStatus", f"unknown status {value!r}")


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    """[start of ``day``, start of the next day)"""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


async def get_bill(db: AsyncSession, bill_id: str) -> Bill:
    return await load_bill(db, bill_id)


async def get_bill_by_number(db: AsyncSession, bill_number: str) -> Bill:
    bill = (
        await db.execute(select(Bill).where(Bill.bill_number == bill_number))
    ).scalar_one_or_none()
    if not bill:
        raise NotFoundError("Bill", bill_number)
    return bill


async def list_bills(
    db: AsyncSession,
    *,
    payment_status: PaymentStatus | str | None = None,
    farmer_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Bill], int]:
    """Newest-first page of bills plus the total matching count."""
    base_stmt = select(Bill)
    status = _parse_status(payment_status)
    if status is not None:
        base_stmt = base_stmt.where(Bill.payment_status == status)
    if farmer_id:
        base_stmt = base_stmt.where(Bill.farmer_id == farmer_id)

    count_stmt = select(func.count()).select_from(base_stmt.subquery())
    total = await db.scalar(count_stmt) or 0

    items_stmt = base_stmt.order_by(Bill.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(items_stmt)
    return list(result.scalars().all()), total


async def list_overdue_bills(db: AsyncSession, now: datetime | None = None) -> list[Bill]:
    """Bills past their due date that are not fully paid."""
    now = now or datetime.utcnow()
    result = await db.execute(
        select(Bill)
        .where(
            Bill.due_date.is_not(None),
            Bill.due_date < now,
            Bill.payment_status != PaymentStatus.PAID,
        )
        .order_by(Bill.due_date.asc())
    )
    return list(result.scalars().all())


async def list_bills_by_farmer_mobile(
    db: AsyncSession,
    mobile_number: str,
    *,
    farmers: FarmerDirectory | None = None,
) -> list[Bill]:
    """Every bill of the farmer registered under ``mobile_number``, newest first."""
    farmers = farmers or FarmerDirectory(db)
    farmer = await farmers.resolve_by_mobile(mobile_number)
    result = await db.execute(
        select(Bill)
        .where(Bill.farmer_id == farmer.id)
        .order_by(Bill.created_at.desc())
    )
    return list(result.scalars().all())


async def list_bills_by_date_range(
    db: AsyncSession,
    start_date: date,
    end_date: date,
) -> list[Bill]:
    """Bills created from the start of ``start_date`` to the end of ``end_date``."""
    if end_date < start_date:
        raise ValidationError("endDate", "must not be before startDate")
    start, _ = _day_bounds(start_date)
    _, end = _day_bounds(end_date)
    result = await db.execute(
        select(Bill)
        .where(Bill.created_at >= start, Bill.created_at < end)
        .order_by(Bill.created_at.desc())
    )
    return list(result.scalars().all())


# ── Dashboard counters ───────────────────────────────────────

async def count_today_bills(db: AsyncSession, now: datetime | None = None) -> int:
    start, end = _day_bounds((now or datetime.utcnow()).date())
    return await db.scalar(
        select(func.count())
        .select_from(Bill)
        .where(Bill.created_at >= start, Bill.created_at < end)
    ) or 0


async def count_bills(db: AsyncSession) -> int:
    return await db.scalar(select(func.count()).select_from(Bill)) or 0


async def count_unpaid_bills(db: AsyncSession) -> int:
    """Bills nothing has been paid on yet (PARTIAL is not counted)."""
    return await db.scalar(
        select(func.count())
        .select_from(Bill)
        .where(Bill.payment_status == PaymentStatus.UNPAID)
    ) or 0


async def total_unpaid_amount(db: AsyncSession, rules: BillingRules | None = None) -> Decimal:
    """Sum of net_amount over UNPAID bills."""
    rules = rules or BillingRules.from_settings()
    total = await db.scalar(
        select(func.coalesce(func.sum(Bill.net_amount), 0))
        .where(Bill.payment_status == PaymentStatus.UNPAID)
    )
    return rules.scale_money(Decimal(str(total or 0)))


# ── Farmer report ────────────────────────────────────────────

@dataclass
class FarmerReport:
    farmer: FarmerSummary | None
    bills: list[Bill]
    total_bills_unfiltered: int
    is_filtered: bool
    total_amount: Decimal
    total_weight: Decimal
    unpaid_amount: Decimal
    unpaid_bills: int

    @property
    def total_bills(self) -> int:
        return len(self.bills)


def _sum(values) -> Decimal:
    return sum((v for v in values if v is not None), Decimal("0.00"))


async def farmer_report(
    db: AsyncSession,
    farmer_id: str,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    payment_status: PaymentStatus | str | None = None,
    farmers: FarmerDirectory | None = None,
) -> FarmerReport:
    """Bills and totals for one farmer, optionally narrowed by date and status.

    An unknown farmer yields an empty report with ``farmer=None``.
    ``payment_status`` accepts "ALL" for no filter.  Unpaid totals cover
    everything not PAID, partial payments included.  ``total_weight`` is
    the sum of chargeable weight.
    """
    farmers = farmers or FarmerDirectory(db)
    farmer = await farmers.find(farmer_id)
    status = _parse_status(payment_status, allow_all=True)

    total_unfiltered = await db.scalar(
        select(func.count()).select_from(Bill).where(Bill.farmer_id == farmer_id)
    ) or 0

    stmt = select(Bill).where(Bill.farmer_id == farmer_id)
    if start_date is not None:
        stmt = stmt.where(Bill.created_at >= _day_bounds(start_date)[0])
    if end_date is not None:
        stmt = stmt.where(Bill.created_at < _day_bounds(end_date)[1])
    if status is not None:
        stmt = stmt.where(Bill.payment_status == status)
    result = await db.execute(stmt.order_by(Bill.created_at.desc()))
    bills = list(result.scalars().all())

    unpaid = [b for b in bills if b.payment_status != PaymentStatus.PAID]
    return FarmerReport(
        farmer=farmer,
        bills=bills,
        total_bills_unfiltered=total_unfiltered,
        is_filtered=start_date is not None or end_date is not None or status is not None,
        total_amount=_sum(b.net_amount for b in bills),
        total_weight=_sum(b.chargeable_weight for b in bills),
        unpaid_amount=_sum(b.net_amount for b in unpaid),
        unpaid_bills=len(unpaid),
    )
