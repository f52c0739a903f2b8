"""Tests for money helpers."""

from decimal import Decimal

import pytest

from checkout_pricing.pricing.errors import CurrencyMismatchError, PricingError
from checkout_pricing.pricing.money import Money, clamp, round_money, sum_money, to_decimal


class TestRounding:
    """Half-up rounding to cents."""

    def test_half_rounds_away_from_zero(self):
        assert round_money(Decimal("1.305")) == Decimal("1.31")
        assert round_money(Decimal("2.675")) == Decimal("2.68")
        assert round_money(Decimal("-1.005")) == Decimal("-1.01")

    def test_float_input_does_not_leak_binary_noise(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert round_money(1.005) == Decimal("1.01")

    def test_none_is_zero(self):
        assert to_decimal(None) == Decimal("0")

    def test_custom_places(self):
        assert round_money(Decimal("12.34567"), 4) == Decimal("12.3457")


def test_clamp_with_open_bounds():
    assert clamp(Decimal("2"), Decimal("5"), None) == Decimal("5")
    assert clamp(Decimal("50"), None, Decimal("20")) == Decimal("20")
    assert clamp(Decimal("7"), None, None) == Decimal("7")


class TestMoney:
    """Currency-aware arithmetic."""

    def test_add_same_currency(self):
        total = Money("10.10", "usd") + Money(Decimal("0.90"), "USD")
        assert total == Money(Decimal("11.00"), "USD")

    def test_mismatched_currencies_raise(self):
        with pytest.raises(CurrencyMismatchError) as excinfo:
            Money(10, "USD") + Money(10, "EUR")
        assert excinfo.value.left == "USD"
        assert excinfo.value.right == "EUR"
        assert isinstance(excinfo.value, PricingError)

    def test_comparison_across_currencies_raises(self):
        with pytest.raises(CurrencyMismatchError):
            Money(1, "USD") < Money(2, "GBP")

    def test_non_negative_and_rounded(self):
        assert Money(Decimal("-3"), "USD").non_negative().amount == Decimal("0")
        assert Money(Decimal("3.14159"), "USD").rounded().amount == Decimal("3.14")

    def test_str(self):
        assert str(Money(Decimal("1234.5"), "USD")) == "1,234.50 USD"

    def test_sum_money_fails_on_other_currency(self):
        assert sum_money([Money(1, "USD"), Money(2, "USD")], "USD").amount == Decimal("3")
        with pytest.raises(CurrencyMismatchError):
            sum_money([Money(1, "USD"), Money(2, "CAD")], "USD")
