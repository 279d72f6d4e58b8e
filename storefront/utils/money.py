from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")

Number = Union[Decimal, float, int, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() avoids binary float noise (9.99 -> 9.9900000000000002131...)
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Number) -> Decimal:
    """Round half-up to whole cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_equal(left: Number, right: Number, tolerance: Number = CENT) -> bool:
    return abs(to_decimal(left) - to_decimal(right)) <= to_decimal(tolerance)
