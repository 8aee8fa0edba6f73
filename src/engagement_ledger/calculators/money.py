"""Fixed-point money helpers."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.000001")
ZERO = Decimal("0.00")


def to_decimal(value: object) -> Decimal:
    """Coerce a number or numeric string to Decimal without passing through binary float."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc


def quantize_money(value: object) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_hours(value: object) -> Decimal:
    """Round hours to the two places they are stored with, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_rate(value: object) -> Decimal:
    """Round an FX rate to six places."""
    return to_decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def line_total(hours: object, rate: object) -> Decimal:
    """hours x rate, rounded once at the end."""
    return quantize_money(to_decimal(hours) * to_decimal(rate))


def money_sum(values: Iterable[object]) -> Decimal:
    """Sum amounts exactly and round the result to cents."""
    total = Decimal("0")
    for value in values:
        total += to_decimal(value)
    return quantize_money(total)
