"""Fixed-point currency helpers. Amounts are stored as integer cents."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENTS = Decimal("0.01")


def to_cents(amount: Union[int, float, str, Decimal]) -> int:
    """
    Convert a decimal currency amount to integer cents.

    Rounds half away from zero, so -12.345 becomes -1235 and 10.005 becomes 1001.
    Floats go through their shortest repr to avoid binary artefacts
    (0.1 + 0.2 is treated as 0.30000000000000004, not 0.3000000000000000444...).
    """
    if isinstance(amount, float):
        amount = repr(amount)
    value = Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
    return int(value * 100)


def from_cents(amount_cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal"""
    return (Decimal(amount_cents) / 100).quantize(CENTS)


def within_tolerance(amount_cents: int, reference_cents: int, tolerance: float) -> bool:
    """True when amount deviates from reference by at most tolerance * |reference|"""
    allowed = Decimal(str(tolerance)) * abs(reference_cents)
    return abs(amount_cents - reference_cents) <= allowed
