"""Farmer directory — resolves farmer ids for the bill aggregate."""

from dataclasses import asdict, dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bananabill.exceptions import NotFoundError
from bananabill.models.farmer import Farmer


@dataclass(frozen=True)
class FarmerSummary:
    id: str
    name: str
    mobile_number: str | None = None
    village: str | None = None

    @classmethod
    def from_row(cls, farmer: Farmer) -> "FarmerSummary":
        return cls(
            id=farmer.id,
            name=farmer.name,
            mobile_number=farmer.mobile_number,
            village=farmer.village,
        )

    def snapshot(self) -> dict:
        """Display copy embedded into a bill (not authoritative)."""
        data = asdict(self)
        data.pop("id")
        return data


class FarmerDirectory:
    """Looks farmers up in the ``farmers`` table of the current session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, farmer_id: str) -> FarmerSummary:
        farmer = (
            await self.db.execute(
                select(Farmer).where(Farmer.id == farmer_id, Farmer.is_active == True)  # noqa: E712
            )
        ).scalar_one_or_none()
        if not farmer:
            raise NotFoundError("Farmer", farmer_id)
        return FarmerSummary.from_row(farmer)

    async def resolve_by_mobile(self, mobile_number: str) -> FarmerSummary:
        farmer = (
            await self.db.execute(
                select(Farmer).where(
                    Farmer.mobile_number == mobile_number,
                    Farmer.is_active == True,  # noqa: E712
                )
            )
        ).scalar_one_or_none()
        if not farmer:
            raise NotFoundError("Farmer", mobile_number)
        return FarmerSummary.from_row(farmer)

    async def find(self, farmer_id: str) -> FarmerSummary | None:
        """Lookup for reports; inactive farmers still have history."""
        farmer = await self.db.get(Farmer, farmer_id)
        return FarmerSummary.from_row(farmer) if farmer else None
