"""
Currency arithmetic between order amounts and provider minor units.

Order amounts are stored as ``Decimal`` major units. The payment provider
expects integers in the currency's smallest unit: cents for standard
currencies, whole units for zero-decimal currencies, which must never be
multiplied by 100.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "MGA",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)

TWO_PLACES = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


def is_zero_decimal(currency: str) -> bool:
    return currency.upper() in ZERO_DECIMAL_CURRENCIES


def to_decimal(value: Amount) -> Decimal:
    """Coerce a price to a two-place Decimal without binary float error."""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Amount, currency: str) -> int:
    """
    Convert a major-unit amount to provider minor units.

    Args:
        amount: Amount in major units
        currency: ISO 4217 currency code

    Returns:
        Integer amount in the currency's smallest unit

    Example:
        >>> to_minor_units(Decimal("19.99"), "usd")
        1999
        >>> to_minor_units(Decimal("1500"), "JPY")
        1500
    """
    value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    if not is_zero_decimal(currency):
        value = value * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None, currency: str) -> Decimal:
    """Convert provider minor units back to a two-place major-unit Decimal."""
    if amount is None:
        return Decimal("0.00")
    value = Decimal(amount)
    if not is_zero_decimal(currency):
        value = value / 100
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
