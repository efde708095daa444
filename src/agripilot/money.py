"""
Currency amounts in integer minor units.

Amounts are stored as ints (VND has no minor unit, USD has cents).
Conversion from fractional results uses Decimal with ROUND_HALF_UP.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union


# ISO 4217 minor-unit exponents for currencies we settle in
CURRENCY_EXPONENTS: dict[str, int] = {
    "VND": 0,
    "JPY": 0,
    "KRW": 0,
    "IDR": 2,
    "THB": 2,
    "PHP": 2,
    "INR": 2,
    "KES": 2,
    "USD": 2,
    "EUR": 2,
}

DEFAULT_EXPONENT = 2


def currency_exponent(currency: str) -> int:
    return CURRENCY_EXPONENTS.get(currency.upper(), DEFAULT_EXPONENT)


def round_minor(value: Union[Decimal, float, int]) -> int:
    """Round an amount already expressed in minor units to an int."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_minor(amount: Union[Decimal, float, int, str], currency: str) -> int:
    """
    Convert a major-unit amount to integer minor units.

    Example:
        to_minor("12.345", "USD") -> 1235
        to_minor(150000, "VND") -> 150000
    """
    scale = Decimal(10) ** currency_exponent(currency)
    return round_minor(Decimal(str(amount)) * scale)


def from_minor(amount: int, currency: str) -> Decimal:
    """Convert integer minor units back to a major-unit Decimal."""
    exponent = currency_exponent(currency)
    return (Decimal(amount) / (Decimal(10) ** exponent)).quantize(
        Decimal(1).scaleb(-exponent)
    )
