"""
Unit tests for money coercion and rounding.

Verifies:
- Float constructor prohibition
- Half-up rounding to cents
"""

from decimal import Decimal

import pytest

from amana_kernel.domain.money import round_money, to_money


class TestToMoney:

    def test_decimal_passes_through(self):
        value = Decimal("100.505")
        assert to_money(value) is value

    def test_int(self):
        assert to_money(42) == Decimal("42")

    def test_string(self):
        assert to_money("10500.00") == Decimal("10500.00")

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            to_money(0.1)

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            to_money(True)

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            to_money("ten naira")


class TestRoundMoney:

    @pytest.mark.parametrize(
        "raw, rounded",
        [("0.005", "0.01"), ("0.004", "0.00"), ("24.99975", "25.00"), ("-0.005", "-0.01"), ("100", "100.00")],
    )
    def test_half_up(self, raw, rounded):
        assert round_money(Decimal(raw)) == Decimal(rounded)
