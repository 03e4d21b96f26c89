"""Bill aggregate tests: create, update, delete, queries and versioning."""

import asyncio
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from bananabill.exceptions import (
    ConcurrencyConflict,
    NotFoundError,
    SequenceExhausted,
    ValidationError,
)
from bananabill.models.bill import Bill, PaymentStatus
from bananabill.models.farmer import Farmer
from bananabill.services import bills as bill_service
from bananabill.services import payments as payment_service
from bananabill.services.calculation import BillInputs
from bananabill.services.sequence import BillNumberer


def _current_key() -> str:
    return BillNumberer.sequence_key(BillNumberer.period_code(datetime.utcnow()))


async def _create(db, inputs, numberer, farmer_id="farmer-001", **kwargs):
    return await bill_service.create_bill(
        db, inputs, farmer_id, user_id="user-1", numberer=numberer, **kwargs
    )


async def _bill_count(db) -> int:
    return await db.scalar(select(func.count()).select_from(Bill))


async def _backdate(db, bill, when: datetime) -> None:
    await db.execute(update(Bill).where(Bill.id == bill.id).values(created_at=when))
    await db.commit()


@pytest.mark.asyncio
@pytest.mark.integration
class TestCreateBill:
    async def test_create_computes_and_numbers(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer, vehicle_number="MH19 AB 1234")

        period = BillNumberer.period_code(datetime.utcnow())
        assert bill.bill_number == f"BB{period}00001"
        assert bill.version == 0
        assert bill.payment_status == PaymentStatus.UNPAID
        assert bill.paid_amount == Decimal("0.00")
        assert bill.advance_amount == Decimal("0.00")
        assert bill.net_amount == Decimal("4147.50")
        assert bill.chargeable_weight == Decimal("92.95")
        assert bill.vehicle_number == "MH19 AB 1234"
        assert bill.created_by == "user-1"

    async def test_farmer_snapshot_embedded(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        assert bill.farmer_id == "farmer-001"
        assert bill.farmer_snapshot == {
            "name": "Ramesh Patil",
            "mobile_number": "9876543210",
            "village": "Jalgaon",
        }

    async def test_persisted_values_read_back(self, db_session, session_factory, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)

        async with session_factory() as other:
            stored = await bill_service.get_bill(other, bill.id)
        assert stored.bill_number == bill.bill_number
        assert stored.net_amount == Decimal("4147.50")
        assert stored.danda_weight == Decimal("5.95")
        assert stored.version == 0

    async def test_numbers_increase(self, db_session, farmer, numberer, worked_example):
        first = await _create(db_session, worked_example, numberer)
        second = await _create(db_session, worked_example, numberer)
        assert int(second.bill_number[6:]) == int(first.bill_number[6:]) + 1

    async def test_unknown_farmer_consumes_no_number(self, db_session, farmer, numberer, sequence_store, worked_example):
        with pytest.raises(NotFoundError) as exc_info:
            await _create(db_session, worked_example, numberer, farmer_id="nobody")
        assert exc_info.value.error_code == "NOT_FOUND"
        assert await sequence_store.current_value(_current_key()) is None
        assert await _bill_count(db_session) == 0

    async def test_inactive_farmer_not_resolved(self, db_session, farmer, numberer, worked_example):
        farmer.is_active = False
        await db_session.commit()

        with pytest.raises(NotFoundError):
            await _create(db_session, worked_example, numberer)

    async def test_invalid_inputs_consume_no_number(self, db_session, farmer, numberer, sequence_store):
        bad = BillInputs(gross_weight=None, rate_per_kg=Decimal("50"))
        with pytest.raises(ValidationError):
            await _create(db_session, bad, numberer)
        assert await sequence_store.current_value(_current_key()) is None

    async def test_exhausted_sequence_creates_nothing(self, db_session, farmer, sequence_store, worked_example):
        numberer = BillNumberer(sequence_store, ceiling=1)
        await _create(db_session, worked_example, numberer)

        with pytest.raises(SequenceExhausted):
            await _create(db_session, worked_example, numberer)
        assert await _bill_count(db_session) == 1

    async def test_deleted_number_not_reused(self, db_session, farmer, numberer, worked_example):
        await _create(db_session, worked_example, numberer)
        second = await _create(db_session, worked_example, numberer)
        await bill_service.delete_bill(db_session, second.id, user_id="user-1")

        third = await _create(db_session, worked_example, numberer)
        assert third.bill_number.endswith("00003")
        with pytest.raises(NotFoundError):
            await bill_service.get_bill(db_session, second.id)


@pytest.mark.asyncio
@pytest.mark.integration
class TestUpdateBill:
    async def test_update_recomputes_and_bumps_version(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        number = bill.bill_number

        new_inputs = BillInputs(
            gross_weight=Decimal("200.00"),
            rate_per_kg=Decimal("12.50"),
        )
        updated = await bill_service.update_bill(
            db_session, bill.id, new_inputs, "farmer-001", 0, user_id="user-2",
        )
        assert updated.version == 1
        assert updated.bill_number == number
        assert updated.net_amount == Decimal("2675.00")
        assert updated.box_count == 0
        assert updated.updated_by == "user-2"

    async def test_update_keeps_payment_state(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        await payment_service.record_payment(db_session, bill.id, Decimal("1000"))

        updated = await bill_service.update_bill(
            db_session, bill.id, worked_example, "farmer-001", 1, user_id="user-1",
        )
        assert updated.paid_amount == Decimal("1000.00")
        assert updated.payment_status == PaymentStatus.PARTIAL
        assert updated.version == 2

    async def test_stale_version_rejected(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        await bill_service.update_bill(
            db_session, bill.id, worked_example, "farmer-001", 0, user_id="user-1",
        )

        with pytest.raises(ConcurrencyConflict) as exc_info:
            await bill_service.update_bill(
                db_session, bill.id, worked_example, "farmer-001", 0, user_id="user-1",
            )
        assert exc_info.value.error_code == "CONCURRENCY_CONFLICT"

        stored = await bill_service.get_bill(db_session, bill.id)
        assert stored.version == 1

    async def test_update_missing_bill(self, db_session, farmer, worked_example):
        with pytest.raises(NotFoundError):
            await bill_service.update_bill(
                db_session, "missing", worked_example, "farmer-001", 0, user_id="user-1",
            )

    async def test_update_validates_inputs(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        bad = BillInputs(gross_weight=Decimal("100"), rate_per_kg=Decimal("50"), box_count=-1)
        with pytest.raises(ValidationError):
            await bill_service.update_bill(
                db_session, bill.id, bad, "farmer-001", 0, user_id="user-1",
            )

    async def test_delete_with_stale_version(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        with pytest.raises(ConcurrencyConflict):
            await bill_service.delete_bill(db_session, bill.id, user_id="user-1", expected_version=3)
        assert await _bill_count(db_session) == 1


@pytest.mark.asyncio
@pytest.mark.concurrency
class TestConcurrentUpdates:
    async def test_exactly_one_writer_wins(self, session_factory, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)

        async def update(gross: str):
            async with session_factory() as session:
                inputs = BillInputs(gross_weight=Decimal(gross), rate_per_kg=Decimal("50"))
                return await bill_service.update_bill(
                    session, bill.id, inputs, "farmer-001", 0, user_id="user-1",
                )

        results = await asyncio.gather(update("150"), update("160"), return_exceptions=True)

        winners = [r for r in results if isinstance(r, Bill)]
        conflicts = [r for r in results if isinstance(r, ConcurrencyConflict)]
        assert len(winners) == 1
        assert len(conflicts) == 1

        async with session_factory() as session:
            stored = await bill_service.get_bill(session, bill.id)
        assert stored.version == 1
        assert stored.gross_weight == winners[0].gross_weight


@pytest.mark.asyncio
@pytest.mark.integration
class TestBillQueries:
    async def test_get_by_number(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        found = await bill_service.get_bill_by_number(db_session, bill.bill_number)
        assert found.id == bill.id

        with pytest.raises(NotFoundError):
            await bill_service.get_bill_by_number(db_session, "BB000000000")

    async def test_list_newest_first_with_total(self, db_session, farmer, numberer, worked_example):
        created = [await _create(db_session, worked_example, numberer) for _ in range(3)]

        items, total = await bill_service.list_bills(db_session, limit=2)
        assert total == 3
        assert [b.id for b in items] == [created[2].id, created[1].id]

    async def test_list_filters_by_status(self, db_session, farmer, numberer, worked_example):
        paid = await _create(db_session, worked_example, numberer)
        await _create(db_session, worked_example, numberer)
        await payment_service.mark_as_paid(db_session, paid.id)

        items, total = await bill_service.list_bills(db_session, payment_status="PAID")
        assert total == 1
        assert items[0].id == paid.id

        items, total = await bill_service.list_bills(db_session, payment_status=PaymentStatus.UNPAID)
        assert total == 1

    async def test_list_filters_by_farmer(self, db_session, farmer, numberer, worked_example):
        await _create(db_session, worked_example, numberer)
        items, total = await bill_service.list_bills(db_session, farmer_id="someone-else")
        assert total == 0
        assert items == []

    async def test_list_rejects_unknown_status(self, db_session):
        with pytest.raises(ValidationError):
            await bill_service.list_bills(db_session, payment_status="SETTLED")

    async def test_overdue_excludes_paid_and_future(self, db_session, farmer, numberer, worked_example):
        now = datetime.utcnow()
        late = await _create(db_session, worked_example, numberer)
        settled = await _create(db_session, worked_example, numberer)
        upcoming = await _create(db_session, worked_example, numberer)
        await _create(db_session, worked_example, numberer)

        await bill_service.set_due_date(db_session, late.id, now - timedelta(days=3), user_id="user-1")
        await bill_service.set_due_date(db_session, settled.id, now - timedelta(days=5), user_id="user-1")
        await bill_service.set_due_date(db_session, upcoming.id, now + timedelta(days=5), user_id="user-1")
        await payment_service.mark_as_paid(db_session, settled.id)

        overdue = await bill_service.list_overdue_bills(db_session, now=now)
        assert [b.id for b in overdue] == [late.id]

    async def test_set_due_date_bumps_version(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        due = datetime(2026, 3, 1)
        updated = await bill_service.set_due_date(
            db_session, bill.id, due, user_id="user-1", expected_version=0,
        )
        assert updated.due_date == due
        assert updated.version == 1

        with pytest.raises(ConcurrencyConflict):
            await bill_service.set_due_date(
                db_session, bill.id, None, user_id="user-1", expected_version=0,
            )

    async def test_mark_reminder_sent(self, db_session, farmer, numberer, worked_example):
        bill = await _create(db_session, worked_example, numberer)
        assert bill.last_reminder_sent is None

        updated = await bill_service.mark_reminder_sent(db_session, bill.id)
        assert updated.last_reminder_sent is not None
        assert updated.version == 1


@pytest.mark.asyncio
@pytest.mark.integration
class TestReportQueries:
    async def test_bills_by_farmer_mobile(self, db_session, farmer, numberer, worked_example):
        db_session.add(Farmer(id="farmer-002", name="Suresh Jadhav", mobile_number="9000000002"))
        await db_session.commit()
        older = await _create(db_session, worked_example, numberer)
        await _create(db_session, worked_example, numberer, farmer_id="farmer-002")
        newer = await _create(db_session, worked_example, numberer)
        await _backdate(db_session, older, datetime(2026, 1, 1))
        await _backdate(db_session, newer, datetime(2026, 1, 2))

        bills = await bill_service.list_bills_by_farmer_mobile(db_session, "9876543210")
        assert [b.id for b in bills] == [newer.id, older.id]

    async def test_unknown_mobile(self, db_session, farmer):
        with pytest.raises(NotFoundError):
            await bill_service.list_bills_by_farmer_mobile(db_session, "0000000000")

    async def test_date_range_is_inclusive(self, db_session, farmer, numberer, worked_example):
        before = await _create(db_session, worked_example, numberer)
        first_day = await _create(db_session, worked_example, numberer)
        last_day = await _create(db_session, worked_example, numberer)
        after = await _create(db_session, worked_example, numberer)
        await _backdate(db_session, before, datetime(2026, 1, 9, 23, 59))
        await _backdate(db_session, first_day, datetime(2026, 1, 10, 0, 0))
        await _backdate(db_session, last_day, datetime(2026, 1, 12, 23, 59))
        await _backdate(db_session, after, datetime(2026, 1, 13, 0, 0))

        bills = await bill_service.list_bills_by_date_range(
            db_session, date(2026, 1, 10), date(2026, 1, 12),
        )
        assert [b.id for b in bills] == [last_day.id, first_day.id]

    async def test_date_range_end_before_start(self, db_session):
        with pytest.raises(ValidationError):
            await bill_service.list_bills_by_date_range(
                db_session, date(2026, 1, 12), date(2026, 1, 10),
            )

    async def test_counters(self, db_session, farmer, numberer, worked_example):
        earlier = await _create(db_session, worked_example, numberer)
        partial = await _create(db_session, worked_example, numberer)
        paid = await _create(db_session, worked_example, numberer)
        await _create(db_session, worked_example, numberer)
        await _backdate(db_session, earlier, datetime.utcnow() - timedelta(days=2))
        await payment_service.record_payment(db_session, partial.id, Decimal("100"))
        await payment_service.mark_as_paid(db_session, paid.id)

        assert await bill_service.count_bills(db_session) == 4
        assert await bill_service.count_today_bills(db_session) == 3
        # PARTIAL is outstanding but not counted as unpaid
        assert await bill_service.count_unpaid_bills(db_session) == 2
        assert await bill_service.total_unpaid_amount(db_session) == Decimal("8295.00")

    async def test_counters_on_empty_ledger(self, db_session):
        assert await bill_service.count_bills(db_session) == 0
        assert await bill_service.count_unpaid_bills(db_session) == 0
        assert await bill_service.total_unpaid_amount(db_session) == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.integration
class TestFarmerReport:
    async def test_totals(self, db_session, farmer, numberer, worked_example):
        partial = await _create(db_session, worked_example, numberer)
        paid = await _create(db_session, worked_example, numberer)
        await _create(db_session, worked_example, numberer)
        await payment_service.record_payment(db_session, partial.id, Decimal("100"))
        await payment_service.mark_as_paid(db_session, paid.id)

        report = await bill_service.farmer_report(db_session, "farmer-001")
        assert report.farmer.name == "Ramesh Patil"
        assert report.total_bills == 3
        assert report.total_bills_unfiltered == 3
        assert report.is_filtered is False
        assert report.total_amount == Decimal("12442.50")
        assert report.total_weight == Decimal("278.85")
        assert report.unpaid_bills == 2
        assert report.unpaid_amount == Decimal("8295.00")

    async def test_status_filter(self, db_session, farmer, numberer, worked_example):
        paid = await _create(db_session, worked_example, numberer)
        await _create(db_session, worked_example, numberer)
        await payment_service.mark_as_paid(db_session, paid.id)

        report = await bill_service.farmer_report(db_session, "farmer-001", payment_status="paid")
        assert [b.id for b in report.bills] == [paid.id]
        assert report.total_bills_unfiltered == 2
        assert report.is_filtered is True
        assert report.unpaid_bills == 0
        assert report.unpaid_amount == Decimal("0.00")

        everything = await bill_service.farmer_report(db_session, "farmer-001", payment_status="ALL")
        assert everything.total_bills == 2
        assert everything.is_filtered is False

    async def test_date_filter(self, db_session, farmer, numberer, worked_example):
        january = await _create(db_session, worked_example, numberer)
        february = await _create(db_session, worked_example, numberer)
        await _backdate(db_session, january, datetime(2026, 1, 20, 9, 0))
        await _backdate(db_session, february, datetime(2026, 2, 1, 0, 0))

        report = await bill_service.farmer_report(
            db_session, "farmer-001",
            start_date=date(2026, 1, 1), end_date=date(2026, 1, 31),
        )
        assert [b.id for b in report.bills] == [january.id]
        assert report.total_bills_unfiltered == 2
        assert report.is_filtered is True

    async def test_unknown_farmer_gives_empty_report(self, db_session):
        report = await bill_service.farmer_report(db_session, "nobody")
        assert report.farmer is None
        assert report.bills == []
        assert report.total_amount == Decimal("0.00")
        assert report.unpaid_bills == 0

    async def test_unknown_status_rejected(self, db_session):
        with pytest.raises(ValidationError):
            await bill_service.farmer_report(db_session, "farmer-001", payment_status="SETTLED")
