"""Payment ledger — money recorded against bills.

Three deliberately different mutators:
  - record_payment()         additive; tracks overpayment as advance
  - mark_as_paid()           overwrites paid_amount with net_amount
  - update_payment_status()  administrative override of status/paid_amount

Only record_payment() appends a PaymentHistory row.  That append is a
second, independent commit made after the bill write: if it fails the
error is logged and the payment still stands.
"""

import decimal
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bananabill.config import settings
from bananabill.exceptions import AlreadyPaid, InvalidPaymentAmount, ValidationError
from bananabill.models.bill import Bill, PaymentStatus
from bananabill.models.payment_history import PaymentHistory, PaymentType
from bananabill.services.bills import check_version, commit_bill, load_bill
from bananabill.services.calculation import ZERO, BillingRules

logger = logging.getLogger(__name__)


def _to_amount(value, rules: BillingRules) -> Decimal:
    if value is None:
        raise InvalidPaymentAmount("Payment amount must be positive and non-null")
    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (decimal.InvalidOperation, TypeError, ValueError):
        raise InvalidPaymentAmount("Payment amount must be a number")
    if not amount.is_finite():
        raise InvalidPaymentAmount("Payment amount must be a finite number")
    return rules.scale_money(amount)


def _determine_status(bill: Bill, new_paid: Decimal, net_amount: Decimal) -> None:
    if new_paid >= net_amount:
        bill.payment_status = PaymentStatus.PAID
        if new_paid > net_amount and settings.track_overpayment:
            # Cumulative excess over what the bill is worth
            bill.advance_amount = new_paid - net_amount
            logger.info("Bill %s overpaid by %s; tracked as advance", bill.bill_number, bill.advance_amount)
    elif new_paid > 0:
        bill.payment_status = PaymentStatus.PARTIAL


async def _append_history(
    db: AsyncSession,
    bill: Bill,
    *,
    amount: Decimal,
    previous_paid: Decimal,
    new_paid: Decimal,
    payment_type: PaymentType,
    user_id: str | None,
    payment_method: str | None = None,
    transaction_ref: str | None = None,
    notes: str | None = None,
) -> PaymentHistory | None:
    """Best-effort audit write; never raises."""
    bill_number = bill.bill_number
    snapshot = bill.farmer_snapshot or {}
    entry = PaymentHistory(
        bill_id=bill.id,
        bill_number=bill_number,
        farmer_id=bill.farmer_id,
        farmer_name=snapshot.get("name"),
        amount=amount,
        previous_paid_amount=previous_paid,
        new_paid_amount=new_paid,
        bill_net_amount=bill.net_amount,
        payment_type=payment_type,
        payment_method=payment_method,
        transaction_ref=transaction_ref,
        notes=notes,
        created_by=user_id,
        created_at=datetime.utcnow(),
    )
    try:
        db.add(entry)
        await db.commit()
        logger.debug("Payment history recorded for bill %s", bill_number)
        return entry
    except Exception:
        await db.rollback()
        logger.exception(
            "Failed to record payment history for bill %s. Payment was recorded successfully.",
            bill_number,
        )
        return None


async def record_payment(
    db: AsyncSession,
    bill_id: str,
    amount,
    *,
    user_id: str | None = None,
    payment_method: str | None = None,
    transaction_ref: str | None = None,
    notes: str | None = None,
    expected_version: int | None = None,
    rules: BillingRules | None = None,
) -> Bill:
    """Add ``amount`` to what has been paid on the bill.

    Repeated calls accumulate.  Status becomes PAID once the running total
    reaches net_amount (PARTIAL before that); any excess is carried in
    advance_amount when overpayment tracking is on.
    """
    rules = rules or BillingRules.from_settings()
    amount = _to_amount(amount, rules)
    if amount <= 0:
        raise InvalidPaymentAmount("Payment amount must be positive and non-null")

    bill = await load_bill(db, bill_id)
    check_version(bill, expected_version)
    read_version = bill.version

    if bill.payment_status == PaymentStatus.PAID and not settings.allow_payment_after_paid:
        raise AlreadyPaid(bill.bill_number)

    current_paid = bill.paid_amount if bill.paid_amount is not None else ZERO
    new_paid = rules.scale_money(current_paid + amount)
    net_amount = bill.net_amount if bill.net_amount is not None else ZERO

    now = datetime.utcnow()
    bill.paid_amount = new_paid
    bill.payment_date = now
    bill.updated_at = now
    bill.updated_by = user_id
    _determine_status(bill, new_paid, net_amount)

    await commit_bill(db, bill, read_version)
    logger.info(
        "Payment of %s recorded for bill %s. Status: %s",
        amount, bill.bill_number, bill.payment_status.value,
    )

    # Detach so a failed history write cannot expire the committed bill
    db.expunge(bill)
    await _append_history(
        db, bill,
        amount=amount,
        previous_paid=current_paid,
        new_paid=new_paid,
        payment_type=PaymentType.PAYMENT,
        user_id=user_id,
        payment_method=payment_method,
        transaction_ref=transaction_ref,
        notes=notes,
    )
    return bill


async def mark_as_paid(
    db: AsyncSession,
    bill_id: str,
    *,
    user_id: str | None = None,
    expected_version: int | None = None,
) -> Bill:
    """Settle the bill in one step: paid_amount is SET to net_amount.

    Whatever was paid before is overwritten, not added to.
    """
    bill = await load_bill(db, bill_id)
    check_version(bill, expected_version)
    read_version = bill.version

    now = datetime.utcnow()
    bill.payment_status = PaymentStatus.PAID
    bill.paid_amount = bill.net_amount
    bill.payment_date = now
    bill.updated_at = now
    bill.updated_by = user_id

    await commit_bill(db, bill, read_version)
    logger.info("Bill %s marked as paid by user %s", bill.bill_number, user_id)
    return bill


async def update_payment_status(
    db: AsyncSession,
    bill_id: str,
    status: PaymentStatus | str,
    paid_amount=None,
    *,
    user_id: str | None = None,
    expected_version: int | None = None,
    rules: BillingRules | None = None,
) -> Bill:
    """Administrative override of status and, optionally, paid_amount.

    No advance/overpayment computation happens here.
    """
    rules = rules or BillingRules.from_settings()
    try:
        status = PaymentStatus(status)
    except ValueError:
        raise ValidationError("status", f"unknown payment status {status!r}")

    if paid_amount is not None:
        paid_amount = _to_amount(paid_amount, rules)
        if paid_amount < 0:
            raise InvalidPaymentAmount("Paid amount cannot be negative")

    bill = await load_bill(db, bill_id)
    check_version(bill, expected_version)
    read_version = bill.version

    now = datetime.utcnow()
    bill.payment_status = status
    if paid_amount is not None:
        bill.paid_amount = paid_amount
    if status == PaymentStatus.PAID:
        bill.payment_date = now
    bill.updated_at = now
    bill.updated_by = user_id

    await commit_bill(db, bill, read_version)
    logger.info("Bill %s payment status set to %s by user %s", bill.bill_number, status.value, user_id)
    return bill


async def get_payment_history(db: AsyncSession, bill_id: str) -> list[PaymentHistory]:
    """All history rows for a bill, newest first.

    Rows sharing a timestamp are ordered by id so the listing is stable.
    """
    result = await db.execute(
        select(PaymentHistory)
        .where(PaymentHistory.bill_id == bill_id)
        .order_by(PaymentHistory.created_at.desc(), PaymentHistory.id.desc())
    )
    return list(result.scalars().all())
