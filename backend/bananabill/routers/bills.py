"""Bill router — thin HTTP surface over the billing ledger.

Endpoints:
    POST   /api/bills                          Create a bill
    GET    /api/bills                          List bills (status / farmer filters)
    GET    /api/bills/overdue                  Unpaid bills past their due date
    GET    /api/bills/stats/today              Bills created today
    GET    /api/bills/stats/total              All bills
    GET    /api/bills/stats/unpaid             UNPAID count and outstanding amount
    GET    /api/bills/filter                   Bills created within a date range
    GET    /api/bills/farmer/{mobile_number}   Bills of the farmer with that mobile
    GET    /api/bills/farmer-report/{farmer_id} Totals for one farmer
    GET    /api/bills/number/{bill_number}     Lookup by bill number
    GET    /api/bills/{bill_id}                Single bill
    PUT    /api/bills/{bill_id}                Replace inputs (version-checked)
    DELETE /api/bills/{bill_id}                Delete a bill
    PATCH  /api/bills/{bill_id}/due-date       Set or clear the due date
    POST   /api/bills/{bill_id}/payments       Record a payment (additive)
    GET    /api/bills/{bill_id}/payments       Payment history, newest first
    POST   /api/bills/{bill_id}/mark-paid      Settle in full (overwrite)
    PATCH  /api/bills/{bill_id}/payment-status Administrative override

The acting user comes from the ``X-User-Id`` header set by the gateway.
"""

from datetime import date

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bananabill.database import get_db
from bananabill.models.bill import PaymentStatus
from bananabill.schemas.bill import BillCreate, BillOut, BillUpdate, DueDateUpdate
from bananabill.schemas.common import PaginatedResponse
from bananabill.schemas.payment import PaymentCreate, PaymentHistoryOut, PaymentStatusUpdate
from bananabill.schemas.report import (
    CountOut,
    DateRangeBillsOut,
    FarmerOut,
    FarmerReportOut,
    UnpaidStatsOut,
)
from bananabill.services import bills as bill_service
from bananabill.services import payments as payment_service
from bananabill.services.sequence import BillNumberer, get_bill_numberer

router = APIRouter()


# ── Bills ────────────────────────────────────────────────────

@router.post("", response_model=BillOut, status_code=status.HTTP_201_CREATED)
async def create_bill(
    body: BillCreate,
    db: AsyncSession = Depends(get_db),
    numberer: BillNumberer = Depends(get_bill_numberer),
    x_user_id: str | None = Header(None),
):
    """Create a bill; number and derived amounts are assigned server-side."""
    bill = await bill_service.create_bill(
        db,
        body.to_inputs(),
        body.farmer_id,
        user_id=x_user_id,
        numberer=numberer,
        vehicle_number=body.vehicle_number,
    )
    return BillOut.model_validate(bill)


@router.get("", response_model=PaginatedResponse[BillOut])
async def list_bills(
    payment_status: PaymentStatus | None = Query(None),
    farmer_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    items, total = await bill_service.list_bills(
        db,
        payment_status=payment_status,
        farmer_id=farmer_id,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse(
        items=[BillOut.model_validate(b) for b in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/overdue", response_model=list[BillOut])
async def list_overdue_bills(db: AsyncSession = Depends(get_db)):
    bills = await bill_service.list_overdue_bills(db)
    return [BillOut.model_validate(b) for b in bills]


# ── Reports ──────────────────────────────────────────────────

@router.get("/stats/today", response_model=CountOut)
async def count_today_bills(db: AsyncSession = Depends(get_db)):
    return CountOut(count=await bill_service.count_today_bills(db))


@router.get("/stats/total", response_model=CountOut)
async def count_bills(db: AsyncSession = Depends(get_db)):
    return CountOut(count=await bill_service.count_bills(db))


@router.get("/stats/unpaid", response_model=UnpaidStatsOut)
async def unpaid_stats(db: AsyncSession = Depends(get_db)):
    return UnpaidStatsOut(
        count=await bill_service.count_unpaid_bills(db),
        total_amount=await bill_service.total_unpaid_amount(db),
    )


@router.get("/filter", response_model=DateRangeBillsOut)
async def list_bills_by_date_range(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Bills created between the two dates, both days inclusive."""
    bills = await bill_service.list_bills_by_date_range(db, start_date, end_date)
    return DateRangeBillsOut(
        bills=[BillOut.model_validate(b) for b in bills],
        count=len(bills),
    )


@router.get("/farmer/{mobile_number}", response_model=list[BillOut])
async def list_bills_by_farmer_mobile(mobile_number: str, db: AsyncSession = Depends(get_db)):
    bills = await bill_service.list_bills_by_farmer_mobile(db, mobile_number)
    return [BillOut.model_validate(b) for b in bills]


@router.get("/farmer-report/{farmer_id}", response_model=FarmerReportOut)
async def farmer_report(
    farmer_id: str,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    payment_status: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Bills and totals for one farmer; ``payment_status`` also takes ALL."""
    report = await bill_service.farmer_report(
        db,
        farmer_id,
        start_date=start_date,
        end_date=end_date,
        payment_status=payment_status,
    )
    return FarmerReportOut(
        farmer=FarmerOut.model_validate(report.farmer) if report.farmer else None,
        bills=[BillOut.model_validate(b) for b in report.bills],
        total_bills=report.total_bills,
        total_bills_unfiltered=report.total_bills_unfiltered,
        is_filtered=report.is_filtered,
        total_amount=report.total_amount,
        total_weight=report.total_weight,
        unpaid_amount=report.unpaid_amount,
        unpaid_bills=report.unpaid_bills,
    )


@router.get("/number/{bill_number}", response_model=BillOut)
async def get_bill_by_number(bill_number: str, db: AsyncSession = Depends(get_db)):
    return BillOut.model_validate(await bill_service.get_bill_by_number(db, bill_number))


@router.get("/{bill_id}", response_model=BillOut)
async def get_bill(bill_id: str, db: AsyncSession = Depends(get_db)):
    return BillOut.model_validate(await bill_service.get_bill(db, bill_id))


@router.put("/{bill_id}", response_model=BillOut)
async def update_bill(
    bill_id: str,
    body: BillUpdate,
    db: AsyncSession = Depends(get_db),
    x_user_id: str | None = Header(None),
):
    """Replace a bill's inputs; 409 if ``expected_version`` is stale."""
    bill = await bill_service.update_bill(
        db,
        bill_id,
        body.to_inputs(),
        body.farmer_id,
        body.expected_version,
        user_id=x_user_id,
        vehicle_number=body.vehicle_number,
    )
    return BillOut.model_validate(bill)


@router.delete("/{bill_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bill(
    bill_id: str,
    expected_version: int | None = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    x_user_id: str | None = Header(None),
):
    await bill_service.delete_bill(
        db, bill_id, user_id=x_user_id, expected_version=expected_version,
    )


@router.patch("/{bill_id}/due-date", response_model=BillOut)
async def set_due_date(
    bill_id: str,
    body: DueDateUpdate,
    db: AsyncSession = Depends(get_db),
    x_user_id: str | None = Header(None),
):
    bill = await bill_service.set_due_date(
        db, bill_id, body.due_date,
        user_id=x_user_id, expected_version=body.expected_version,
    )
    return BillOut.model_validate(bill)


# ── Payments ─────────────────────────────────────────────────

@router.post("/{bill_id}/payments", response_model=BillOut)
async def record_payment(
    bill_id: str,
    body: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    x_user_id: str | None = Header(None),
):
    bill = await payment_service.record_payment(
        db,
        bill_id,
        body.amount,
        user_id=x_user_id,
        payment_method=body.payment_method,
        transaction_ref=body.transaction_ref,
        notes=body.notes,
        expected_version=body.expected_version,
    )
    return BillOut.model_validate(bill)


@router.get("/{bill_id}/payments", response_model=list[PaymentHistoryOut])
async def get_payment_history(bill_id: str, db: AsyncSession = Depends(get_db)):
    history = await payment_service.get_payment_history(db, bill_id)
    return [PaymentHistoryOut.model_validate(h) for h in history]


@router.post("/{bill_id}/mark-paid", response_model=BillOut)
async def mark_as_paid(
    bill_id: str,
    expected_version: int | None = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    x_user_id: str | None = Header(None),
):
    bill = await payment_service.mark_as_paid(
        db, bill_id, user_id=x_user_id, expected_version=expected_version,
    )
    return BillOut.model_validate(bill)


@router.patch("/{bill_id}/payment-status", response_model=BillOut)
async def update_payment_status(
    bill_id: str,
    body: PaymentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    x_user_id: str | None = Header(None),
):
    bill = await payment_service.update_payment_status(
        db, bill_id, body.status, body.paid_amount,
        user_id=x_user_id, expected_version=body.expected_version,
    )
    return BillOut.model_validate(bill)
