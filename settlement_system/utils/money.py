# settlement_system/utils/money.py
"""
Rounding policy: every monetary output is rounded to cents, half up.
"""
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def toDecimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    """Round a monetary value to 2 decimals."""
    return toDecimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def hasAtMostCents(value) -> bool:
    value = toDecimal(value)
    return value == value.quantize(CENT)
