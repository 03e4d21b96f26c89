"""Dashboard and report schemas."""

from decimal import Decimal

from pydantic import BaseModel

from bananabill.schemas.bill import BillOut


class CountOut(BaseModel):
    count: int


class UnpaidStatsOut(BaseModel):
    count: int
    total_amount: Decimal


class DateRangeBillsOut(BaseModel):
    bills: list[BillOut]
    count: int


class FarmerOut(BaseModel):
    id: str
    name: str
    mobile_number: str | None = None
    village: str | None = None

    model_config = {"from_attributes": True}


class FarmerReportOut(BaseModel):
    """Per-farmer totals; ``farmer`` is null when the id is unknown."""
    farmer: FarmerOut | None = None
    bills: list[BillOut]
    total_bills: int
    total_bills_unfiltered: int
    is_filtered: bool
    total_amount: Decimal
    total_weight: Decimal
    unpaid_amount: Decimal
    unpaid_bills: int

    model_config = {"from_attributes": True}
