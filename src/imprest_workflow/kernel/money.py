"""Decimal money parsing.

Amounts never pass through binary floating point arithmetic: floats are
converted via their shortest repr, and every amount is limited to two
decimal places (minor units).
"""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

from imprest_workflow.kernel.errors import InvalidAmountError

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any, *, field: str = "amount") -> Decimal:
    """Parse ``value`` as a finite decimal with at most two places.

    Rejects booleans, None, non-numeric text, NaN/Infinity and sub-cent
    precision. Sign is not checked here.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(f"{field} must be a number", field=field)
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation as e:
            raise InvalidAmountError(f"{field} must be a number", field=field) from e
    else:
        raise InvalidAmountError(f"{field} must be a number", field=field)

    if not amount.is_finite():
        raise InvalidAmountError(f"{field} must be a finite number", field=field)
    try:
        truncated = amount.quantize(MINOR_UNIT, rounding=ROUND_DOWN)
    except InvalidOperation as e:
        raise InvalidAmountError(f"{field} is out of range", field=field) from e
    if amount != truncated:
        raise InvalidAmountError(f"{field} has more than two decimal places", field=field)
    return truncated


def positive_amount(value: Any, *, field: str = "amount") -> Decimal:
    amount = to_decimal(value, field=field)
    if amount <= ZERO:
        raise InvalidAmountError(f"{field} must be greater than 0", field=field)
    return amount


def non_negative_amount(value: Any, *, field: str = "amount") -> Decimal:
    amount = to_decimal(value, field=field)
    if amount < ZERO:
        raise InvalidAmountError(f"{field} must not be negative", field=field)
    return amount


def money_str(amount: Decimal) -> str:
    return format(amount.quantize(MINOR_UNIT), "f")
