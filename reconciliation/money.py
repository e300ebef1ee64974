from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

ZERO = Decimal("0.00")
_TWO_DP = Decimal("0.01")
_HUNDRED = Decimal("100")


def to_money(amount: Decimal) -> Decimal:
    """Round to 2 dp, half-up."""
    return Decimal(amount).quantize(_TWO_DP, rounding=ROUND_HALF_UP)


def total(amounts: Iterable[Decimal]) -> Decimal:
    return to_money(sum(amounts, ZERO))


def percentage_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """``percentage`` is a percent (15 means 15 %)."""
    return to_money(amount * Decimal(percentage) / _HUNDRED)
