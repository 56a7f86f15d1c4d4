"""Utilities for working with monetary values in KidLedger."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .exceptions import InvalidAmountError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
CURRENCY_PREFIX = "RM"
# Largest single amount; its cents fit a signed 64-bit column.
MAX_AMOUNT = Decimal("999999999.99")

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """Convert ``value`` to a :class:`~decimal.Decimal` with two decimal places."""

    if isinstance(value, bool):
        raise TypeError("Booleans are not amounts.")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        result = Decimal(value.strip())
    else:  # pragma: no cover - defensive programming branch
        raise TypeError(f"Unsupported amount type: {type(value)!r}")

    if not result.is_finite():
        raise InvalidAmountError(f"'{value}' is not a finite amount.")
    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def require_positive(amount: Decimal, *, allow_zero: bool = False) -> Decimal:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < ZERO:
            raise InvalidAmountError("Amount must be zero or greater.")
    else:
        if amount <= ZERO:
            raise InvalidAmountError("Amount must be greater than zero.")
    if amount > MAX_AMOUNT:
        raise InvalidAmountError(f"Amount must not exceed {format_currency(MAX_AMOUNT)}.")
    return amount


def parse_amount(raw: AmountLike) -> Decimal:
    """Parse user supplied input into a strictly positive amount.

    Used by the form-style entry points (``"12.50"`` typed in a dashboard
    field). Anything that is not a finite number greater than zero after
    rounding to cents raises :class:`InvalidAmountError`.
    """

    try:
        value = to_decimal(raw)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmountError(f"'{raw}' is not a valid amount.") from exc
    return require_positive(value)


def to_cents(amount: AmountLike) -> int:
    """Return ``amount`` in integer minor units."""

    return int(to_decimal(amount) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount: Decimal) -> str:
    """Return ``amount`` as a currency formatted string (e.g. ``RM 12.34``)."""

    value = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    sign = "-" if value < ZERO else ""
    return f"{sign}{CURRENCY_PREFIX} {abs(value):,.2f}"
