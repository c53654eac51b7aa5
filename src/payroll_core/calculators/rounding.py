"""Decimal rounding helpers shared by the calculators.

Amounts are computed at full Decimal precision and rounded once, at the
point a figure becomes a persisted or reported value.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
WHOLE = Decimal("1")
ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str | float | None) -> Decimal:
    """Coerce an input amount to Decimal; missing values are zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # Go through str so 0.1 stays 0.1
        return Decimal(str(value))
    return Decimal(value)


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def round_to_whole(amount: Decimal) -> Decimal:
    """Round amount to the nearest whole currency unit, halves up."""
    return amount.quantize(WHOLE, rounding=ROUND_HALF_UP)


def truncate_to_cents(amount: Decimal) -> Decimal:
    """Drop everything below one cent."""
    return amount.quantize(CENTS, rounding=ROUND_FLOOR)


def round_up_to_step(amount: Decimal, step: Decimal) -> Decimal:
    """Round up to the next multiple of ``step`` (e.g. 0.05)."""
    steps = (amount / step).to_integral_value(rounding=ROUND_CEILING)
    return round_to_cents(steps * step)
