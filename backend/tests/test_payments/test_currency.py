"""
Tests for currency conversion between major and minor units.
"""

from decimal import Decimal

import pytest

from storefront.services.payments.currency import (
    from_minor_units,
    is_zero_decimal,
    to_decimal,
    to_minor_units,
)


class TestMinorUnits:
    """Tests for provider minor unit conversion."""

    @pytest.mark.parametrize(
        "amount, currency, expected",
        [
            (Decimal("19.99"), "usd", 1999),
            (Decimal("0.005"), "EUR", 1),
            ("12.5", "GBP", 1250),
            (Decimal("1500"), "JPY", 1500),
            (Decimal("1500.4"), "krw", 1500),
        ],
    )
    def test_to_minor_units(self, amount, currency, expected):
        """Test conversion to the currency's smallest unit."""
        assert to_minor_units(amount, currency) == expected

    @pytest.mark.parametrize(
        "amount, currency, expected",
        [
            (1999, "usd", Decimal("19.99")),
            (1500, "JPY", Decimal("1500.00")),
            (None, "usd", Decimal("0.00")),
        ],
    )
    def test_from_minor_units(self, amount, currency, expected):
        """Test conversion back to major units."""
        assert from_minor_units(amount, currency) == expected

    def test_zero_decimal_lookup_is_case_insensitive(self):
        """Test currency code normalization."""
        assert is_zero_decimal("jpy") is True
        assert is_zero_decimal("usd") is False


def test_to_decimal_avoids_float_error():
    """Test that floats are converted through their string form."""
    assert to_decimal(0.1 + 0.2) == Decimal("0.30")
    assert to_decimal(Decimal("2.675")) == Decimal("2.68")
