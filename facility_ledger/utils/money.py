"""Decimal helpers for currency amounts"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union
from facility_ledger.config import settings

Number = Union[Decimal, int, str, float]

ZERO = Decimal("0")


def minor_unit(places: int | None = None) -> Decimal:
    """Smallest representable currency step, e.g. Decimal('0.01')"""
    if places is None:
        places = settings.currency_minor_units
    return Decimal(1).scaleb(-places)


def to_money(value: Number, places: int | None = None) -> Decimal:
    """
    Coerce a value to a Decimal rounded half-up to the currency's minor unit.

    Floats go through str() so 0.1 becomes Decimal("0.1") and not its binary expansion.
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(minor_unit(places), rounding=ROUND_HALF_UP)


def percentage(part: Decimal, whole: Decimal, places: int = 1) -> float:
    """part / whole * 100 rounded half-up, 0.0 when whole is zero"""
    if whole <= 0:
        return 0.0
    pct = (Decimal(part) / Decimal(whole)) * 100
    return float(pct.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))
