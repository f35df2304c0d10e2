"""Utilities for working with monetary values in ChoreBank."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """Convert ``value`` to a :class:`~decimal.Decimal` with two decimal places."""

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {value!r}") from exc
    else:
        raise TypeError(f"Unsupported amount type: {type(value)!r}")

    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def require_positive(amount: Decimal, *, allow_zero: bool = False) -> Decimal:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < ZERO:
            raise ValidationError("Amount must be zero or greater.")
    else:
        if amount <= ZERO:
            raise ValidationError("Amount must be greater than zero.")
    return amount


def to_cents(value: AmountLike) -> int:
    """Return ``value`` as an integer number of cents."""

    return int(to_decimal(value) * 100)


def from_cents(cents: int) -> Decimal:
    """Return the decimal amount represented by ``cents``."""

    return (Decimal(int(cents)) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount: Decimal) -> str:
    """Return ``amount`` as a currency formatted string (e.g. ``$12.34``)."""

    value = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if value < ZERO:
        return f"-${-value:,.2f}"
    return f"${value:,.2f}"


__all__ = [
    "AmountLike",
    "CENT",
    "ZERO",
    "format_currency",
    "from_cents",
    "require_positive",
    "to_cents",
    "to_decimal",
]
