"""Conversions between major currency units (rupees) and gateway minor units (paise)."""

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNITS_PER_MAJOR = 100
TWO_PLACES = Decimal("0.01")


def to_decimal(amount: Decimal | int | float | str) -> Decimal:
    """Normalize an amount to a 2-place Decimal.

    Floats are converted through ``str`` so 0.1 stays 0.1.
    """
    if isinstance(amount, float):
        amount = str(amount)
    return Decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Rupees to paise, e.g. 450 -> 45000."""
    return int((to_decimal(amount) * MINOR_UNITS_PER_MAJOR).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(minor_units: int) -> Decimal:
    """Paise to rupees, e.g. 45000 -> Decimal("450.00")."""
    return (Decimal(int(minor_units)) / MINOR_UNITS_PER_MAJOR).quantize(TWO_PLACES)
