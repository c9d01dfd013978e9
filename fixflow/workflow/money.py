"""Fixed-point handling of monetary amounts."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from .errors import InvalidAmountError

MoneyLike = Union[Decimal, int, str, float]

# storage is NUMERIC(MONEY_PRECISION, MONEY_SCALE)
MONEY_PRECISION = 18
MONEY_SCALE = 4
MAX_AMOUNT = Decimal(10) ** (MONEY_PRECISION - MONEY_SCALE)
_QUANTUM = Decimal(1).scaleb(-MONEY_SCALE)


def to_money(value: MoneyLike) -> Decimal:
    """Coerce ``value`` to a finite, non-negative ``Decimal``.

    Floats are converted through their shortest ``repr`` so ``1000.01`` stays
    exactly ``Decimal("1000.01")``; booleans are refused even though they are
    ints. Amounts must be storable without rounding: at most ``MONEY_SCALE``
    fractional digits and below ``MAX_AMOUNT``.
    """

    if isinstance(value, bool):
        raise InvalidAmountError(value)
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise InvalidAmountError(value) from exc
    else:
        raise InvalidAmountError(value)

    if not amount.is_finite() or amount < 0:
        raise InvalidAmountError(value)
    if amount >= MAX_AMOUNT:
        raise InvalidAmountError(value, detail=f"Amount {value!r} must be below {MAX_AMOUNT}")
    if amount.quantize(_QUANTUM) != amount:
        raise InvalidAmountError(
            value, detail=f"Amount {value!r} has more than {MONEY_SCALE} fractional digits"
        )
    return amount


def to_positive_money(value: MoneyLike) -> Decimal:
    amount = to_money(value)
    if amount <= 0:
        raise InvalidAmountError(value, detail=f"Amount must be greater than zero, got {value!r}")
    return amount
