"""Bill calculation — pure fixed-point arithmetic, no I/O.

DOMAIN FORMULA (agricultural commodity billing):
  1. base_net_weight   = max(0, gross - patti - box_count × box_weight)
  2. danda_weight      = round(base_net_weight × danda_percentage)
  3. chargeable_weight = base_net_weight + danda_weight + tut_wastage
  4. total_amount      = round(chargeable_weight × rate_per_kg)
  5. net_amount        = max(0, total_amount - majuri)

Danda and tut are ADDED into the chargeable weight.  That is the trade
rule, not a sign error.

All values are ``Decimal``; rounding uses the configured scale and mode
(two places, ROUND_HALF_UP by default).
"""

from __future__ import annotations

import decimal
from dataclasses import dataclass
from decimal import Decimal

from bananabill.config import settings
from bananabill.exceptions import ValidationError

ZERO = Decimal("0")


@dataclass(frozen=True)
class BillingRules:
    """Configurable constants of the calculation pipeline."""
    box_weight_kg: Decimal = Decimal("1.0")
    danda_percentage: Decimal = Decimal("0.07")
    weight_scale: int = 2
    money_scale: int = 2
    rounding: str = decimal.ROUND_HALF_UP

    @classmethod
    def from_settings(cls) -> "BillingRules":
        return cls(
            box_weight_kg=Decimal(settings.box_weight_kg),
            danda_percentage=Decimal(settings.danda_percentage),
            weight_scale=settings.weight_scale,
            money_scale=settings.money_scale,
            rounding=getattr(decimal, settings.rounding_mode),
        )

    def scale_weight(self, value: Decimal) -> Decimal:
        return value.quantize(Decimal(1).scaleb(-self.weight_scale), rounding=self.rounding)

    def scale_money(self, value: Decimal) -> Decimal:
        return value.quantize(Decimal(1).scaleb(-self.money_scale), rounding=self.rounding)


@dataclass(frozen=True)
class BillInputs:
    """Raw weighment and pricing inputs.

    ``gross_weight`` and ``rate_per_kg`` are required; the rest default
    to zero when absent.
    """
    gross_weight: Decimal | None
    rate_per_kg: Decimal | None
    patti_weight: Decimal | None = None
    box_count: int | None = None
    tut_wastage: Decimal | None = None
    majuri: Decimal | None = None


@dataclass(frozen=True)
class BillCalculation:
    """Validated inputs plus every derived field, produced together."""
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


def _to_decimal(value, field: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except decimal.InvalidOperation:
            raise ValidationError(field, "must be a number")
    elif isinstance(value, float):
        # Go through str() so 0.1 stays 0.1 rather than its binary expansion
        result = Decimal(str(value))
    else:
        raise ValidationError(field, "must be a number")
    if not result.is_finite():
        raise ValidationError(field, "must be a finite number")
    return result


def _required(value, field: str) -> Decimal:
    if value is None:
        raise ValidationError(field, "cannot be null")
    return _non_negative(_to_decimal(value, field), field)


def _optional(value, field: str) -> Decimal:
    if value is None:
        return ZERO
    return _non_negative(_to_decimal(value, field), field)


def _non_negative(value: Decimal, field: str) -> Decimal:
    if value < 0:
        raise ValidationError(field, "cannot be negative")
    return value


def _clamp_non_negative(value: Decimal) -> Decimal:
    return max(value, ZERO)


def validate_inputs(inputs: BillInputs, rules: BillingRules) -> dict:
    """Check and normalise inputs; raises ValidationError before any math."""
    gross = _required(inputs.gross_weight, "grossWeight")
    rate = _required(inputs.rate_per_kg, "ratePerKg")
    patti = _optional(inputs.patti_weight, "pattiWeight")
    tut = _optional(inputs.tut_wastage, "tutWastage")
    majuri = _optional(inputs.majuri, "majuri")

    box_count = inputs.box_count if inputs.box_count is not None else 0
    if isinstance(box_count, bool) or not isinstance(box_count, int):
        raise ValidationError("boxCount", "must be a whole number")
    if box_count < 0:
        raise ValidationError("boxCount", "cannot be negative")

    return {
        "gross_weight": rules.scale_weight(gross),
        "patti_weight": rules.scale_weight(patti),
        "box_count": box_count,
        "tut_wastage": rules.scale_weight(tut),
        "rate_per_kg": rules.scale_money(rate),
        "majuri": rules.scale_money(majuri),
    }


def calculate_bill(inputs: BillInputs, rules: BillingRules | None = None) -> BillCalculation:
    """Run the full pipeline and return all five derived values at once."""
    rules = rules or BillingRules.from_settings()
    v = validate_inputs(inputs, rules)

    box_weight = rules.box_weight_kg * v["box_count"]
    base_net_weight = rules.scale_weight(
        _clamp_non_negative(v["gross_weight"] - v["patti_weight"] - box_weight)
    )
    danda_weight = rules.scale_weight(base_net_weight * rules.danda_percentage)
    # ADD, not subtract
    chargeable_weight = base_net_weight + danda_weight + v["tut_wastage"]
    total_amount = rules.scale_money(chargeable_weight * v["rate_per_kg"])
    net_amount = rules.scale_money(_clamp_non_negative(total_amount - v["majuri"]))

    return BillCalculation(
        **v,
        base_net_weight=base_net_weight,
        danda_weight=danda_weight,
        chargeable_weight=chargeable_weight,
        total_amount=total_amount,
        net_amount=net_amount,
    )
