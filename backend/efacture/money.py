"""
Money helpers.

Amounts are stored as integer cents. Anything computed from decimal inputs
(line totals, VAT) is rounded to the cent half-away-from-zero, which is what
Decimal calls ROUND_HALF_UP.
"""

from __future__ import annotations

from decimal import Decimal, DecimalException, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
ONE = Decimal("1")

# Column limits: quantities are Numeric(12, 3), cents are signed 64-bit
MAX_QUANTITY = Decimal("999999999.999")
MAX_CENTS = 2 ** 63 - 1


class MoneyFormatError(ValueError):
    """Raised when a value cannot be read as a decimal amount."""


class AmountOutOfRangeError(MoneyFormatError):
    """Raised when an amount is a number but does not fit its column."""


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise MoneyFormatError(f"Not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        text = str(value if value is not None else "").strip().replace(" ", "")
        if not text:
            raise MoneyFormatError("Empty amount")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise MoneyFormatError(f"Not a number: {value!r}")
    if not result.is_finite():
        raise MoneyFormatError(f"Not a finite number: {value!r}")
    return result


def round_half_away(value: Decimal, exp: Decimal = ONE) -> Decimal:
    try:
        return value.quantize(exp, rounding=ROUND_HALF_UP)
    except DecimalException:
        raise AmountOutOfRangeError(f"Amount out of range: {value!r}")


def to_cents(value: Any) -> int:
    """
    Decimal currency units ("12.345", 10, 9.99) -> integer cents.

    Raises AmountOutOfRangeError when the cents do not fit MAX_CENTS.
    """
    amount = to_decimal(value)
    if amount.adjusted() > 19 or amount.copy_abs() * 100 > MAX_CENTS:
        raise AmountOutOfRangeError(f"Amount out of range: {value!r}")
    return int(round_half_away(amount * 100))


def cents_in_range(cents: int) -> bool:
    return -MAX_CENTS <= cents <= MAX_CENTS


def quantity_in_range(quantity: Decimal) -> bool:
    return quantity.copy_abs() <= MAX_QUANTITY


def line_total_cents(quantity: Decimal, unit_price_cents: int) -> int:
    try:
        return int(round_half_away(Decimal(quantity) * unit_price_cents))
    except DecimalException:
        raise AmountOutOfRangeError(f"Line total out of range: {quantity} x {unit_price_cents}")


def vat_cents_for(subtotal_cents: int, rate: Any) -> int:
    """VAT for a subtotal at a fractional rate (0.20 == 20%)."""
    try:
        return int(round_half_away(Decimal(subtotal_cents) * to_decimal(rate)))
    except DecimalException:
        raise AmountOutOfRangeError(f"VAT out of range: {subtotal_cents} x {rate}")


def format_cents(cents: int | None) -> str:
    if cents is None:
        return "0.00"
    return str((Decimal(cents) / 100).quantize(CENT))
