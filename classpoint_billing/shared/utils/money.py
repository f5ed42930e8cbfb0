from collections.abc import Iterable
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

ZERO = Decimal("0.00")


def round_money(value: Union[Decimal, float, int, str, None]) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    ``None`` is treated as zero: ledger rows may omit the amount.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(None)
        Decimal('0.00')
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_DOWN)
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Union[Decimal, float, int, str, None]]) -> Decimal:
    """Sum amounts, treating missing ones as zero."""
    return round_money(sum((round_money(v) for v in values), ZERO))


def percent_of(percent: Union[Decimal, int, float], amount: Decimal) -> Decimal:
    """``percent`` % of ``amount``, rounded to cents."""
    return round_money(Decimal(str(percent)) * amount / Decimal("100"))
