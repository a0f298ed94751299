"""Fixed-point helpers for currency values and their display form."""
from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from .settings import get_settings

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_cents(value: Number | None) -> Decimal:
    """Return ``value`` as a Decimal rounded half-up to two places.

    Floats go through ``str`` first so ``0.1`` stays ``0.10`` instead of
    carrying its binary expansion into the sum. ``None`` counts as zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip() or "0")
        except InvalidOperation as exc:
            raise ValueError(f"invalid monetary value: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"invalid monetary value: {value!r}")
    try:
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"monetary value out of range: {value!r}") from exc


def format_currency(value: Number | None) -> str:
    """Render ``value`` the way the report shows it, e.g. ``R$ 150.50``."""
    symbol = get_settings().currency_symbol
    return f"{symbol} {to_cents(value):.2f}"


def format_day(value: date) -> str:
    """Render a calendar date as day/month/year."""
    return value.strftime("%d/%m/%Y")
