"""PaymentHistory — append-only audit trail of money moving against bills.

Rows are inserted once and never updated or deleted.  ``bill_id`` is not
a foreign key: the trail outlives a deleted bill.  ``bills.paid_amount``
stays the source of truth; summing this table is advisory only.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum as SAEnum, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bananabill.database import Base


class PaymentType(str, enum.Enum):
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"
    ADVANCE_USED = "ADVANCE_USED"


class PaymentHistory(Base):
    __tablename__ = "payment_history"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    bill_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    bill_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    farmer_id: Mapped[str | None] = mapped_column(String(36))
    farmer_name: Mapped[str | None] = mapped_column(String(255))

    # ── Amounts ──────────────────────────────────────────────
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    previous_paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    new_paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    bill_net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payment_type: Mapped[PaymentType] = mapped_column(
        SAEnum(PaymentType), default=PaymentType.PAYMENT, nullable=False
    )
    # CASH | UPI | BANK_TRANSFER | CHEQUE ...
    payment_method: Mapped[str | None] = mapped_column(String(30))
    # UPI id, cheque number, etc.
    transaction_ref: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
