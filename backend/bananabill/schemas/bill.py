"""Pydantic schemas for bill creation, update and output.

Only inputs are accepted from callers; derived weights and amounts are
always recomputed server-side.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from bananabill.models.bill import PaymentStatus
from bananabill.services.calculation import BillInputs


class BillCreate(BaseModel):
    farmer_id: str = Field(..., min_length=1)
    vehicle_number: str | None = Field(None, max_length=20)

    gross_weight: Decimal = Field(..., gt=0, le=Decimal("99999.99"))
    patti_weight: Decimal = Field(Decimal("0"), ge=0)
    box_count: int = Field(0, ge=0, le=9999)
    tut_wastage: Decimal = Field(Decimal("0"), ge=0)
    rate_per_kg: Decimal = Field(..., gt=0, le=Decimal("9999.99"))
    majuri: Decimal = Field(Decimal("0"), ge=0)

    def to_inputs(self) -> BillInputs:
        return BillInputs(
            gross_weight=self.gross_weight,
            rate_per_kg=self.rate_per_kg,
            patti_weight=self.patti_weight,
            box_count=self.box_count,
            tut_wastage=self.tut_wastage,
            majuri=self.majuri,
        )


class BillUpdate(BillCreate):
    """Full replacement of inputs, guarded by the version the caller read."""
    expected_version: int = Field(..., ge=0)


class BillOut(BaseModel):
    id: str
    bill_number: str
    version: int
    farmer_id: str
    farmer_snapshot: dict | None = None
    vehicle_number: str | None = None

    gross_weight: Decimal
    patti_weight: Decimal
    box_count: int
    tut_wastage: Decimal
    rate_per_kg: Decimal
    majuri: Decimal

    base_net_weight: Decimal
    danda_weight: Decimal
    chargeable_weight: Decimal
    total_amount: Decimal
    net_amount: Decimal

    payment_status: PaymentStatus
    paid_amount: Decimal
    advance_amount: Decimal
    payment_date: datetime | None = None
    due_date: datetime | None = None

    created_by: str | None = None
    created_at: datetime
    updated_by: str | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class DueDateUpdate(BaseModel):
    due_date: datetime | None
    expected_version: int | None = Field(None, ge=0)
