"""Pydantic schemas for payments against bills."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from bananabill.models.bill import PaymentStatus
from bananabill.models.payment_history import PaymentType


class PaymentCreate(BaseModel):
    # Sign is checked by the ledger so a bad amount maps to INVALID_PAYMENT_AMOUNT
    amount: Decimal
    payment_method: str | None = Field(None, max_length=30)
    transaction_ref: str | None = Field(None, max_length=100)
    notes: str | None = None
    expected_version: int | None = Field(None, ge=0)


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus
    paid_amount: Decimal | None = None
    expected_version: int | None = Field(None, ge=0)


class PaymentHistoryOut(BaseModel):
    id: str
    bill_id: str
    bill_number: str
    farmer_id: str | None = None
    farmer_name: str | None = None
    amount: Decimal
    previous_paid_amount: Decimal
    new_paid_amount: Decimal
    bill_net_amount: Decimal
    payment_type: PaymentType
    payment_method: str | None = None
    transaction_ref: str | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
