"""Aggregate model imports so Base.metadata sees every table."""

from bananabill.models.sequence import Sequence
from bananabill.models.farmer import Farmer
from bananabill.models.bill import Bill, PaymentStatus
from bananabill.models.payment_history import PaymentHistory, PaymentType

__all__ = [
    "Sequence", "Farmer",
    "Bill", "PaymentStatus",
    "PaymentHistory", "PaymentType",
]
