"""
Monetary helpers.

All amounts are Decimal quantized to cents with half-up rounding.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyLike = Union[Decimal, int, str]


def to_money(value: MoneyLike) -> Decimal:
    """Convert to a cent-quantized Decimal. Floats are refused."""
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    if not isinstance(value, Decimal):
        value = Decimal(value)
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[MoneyLike]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return total


def percentage_of(amount: MoneyLike, percentage: MoneyLike) -> Decimal:
    """amount * percentage / 100, rounded once at the end."""
    return to_money(Decimal(amount) * Decimal(percentage) / Decimal(100))
