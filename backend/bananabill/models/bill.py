"""Bill — the versioned aggregate for one weighment and its settlement.

Inputs come from the weighbridge (gross, patti, boxes, tut) and the trade
(rate per kg, majuri).  Derived weights and amounts are written only by
``bananabill.services.calculation``.

``version`` is the optimistic-concurrency token: the ORM emits
``UPDATE .. WHERE id = :id AND version = :loaded_version`` on every
flush and the service layer bumps it explicitly, so two writers holding
the same version can never both commit.

Payment lifecycle:  UNPAID → PARTIAL → PAID
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum as SAEnum, Integer, JSON, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from bananabill.database import Base


class PaymentStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class Bill(Base):
    __tablename__ = "bills"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # BB + YYMM + 5-digit sequence, assigned once at creation
    bill_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Farmer ───────────────────────────────────────────────
    farmer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # Display copy taken at creation/update: {"name": .., "mobile_number": .., "village": ..}
    farmer_snapshot: Mapped[dict | None] = mapped_column(JSON)
    vehicle_number: Mapped[str | None] = mapped_column(String(20))

    # ── Weighment inputs (kg) ────────────────────────────────
    gross_weight: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    patti_weight: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    box_count: Mapped[int] = mapped_column(Integer, default=0)
    tut_wastage: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    # ── Pricing inputs ───────────────────────────────────────
    rate_per_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    majuri: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    # ── Derived ──────────────────────────────────────────────
    base_net_weight: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    danda_weight: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    chargeable_weight: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # ── Payment state ────────────────────────────────────────
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus), default=PaymentStatus.UNPAID, index=True
    )
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    # Overpayment carried forward (paid beyond net_amount)
    advance_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    payment_date: Mapped[datetime | None] = mapped_column(DateTime)
    due_date: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    last_reminder_sent: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Audit ────────────────────────────────────────────────
    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_by: Mapped[str | None] = mapped_column(String(36))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }
