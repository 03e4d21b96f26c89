"""Sequence — one durable counter row per period key.

Rows are only ever touched through an atomic increment-or-create
(see ``bananabill.services.sequence``).  Values never go down and rows are
never deleted while bills carry numbers issued from them.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from bananabill.database import Base


class Sequence(Base):
    __tablename__ = "sequences"

    # e.g. "bill_2601" for January 2026
    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
