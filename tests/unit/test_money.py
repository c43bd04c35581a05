"""
Unit tests for integer-cent money helpers.

Tests cover:
1. Dollar to cent conversion and rounding
2. Markup application
3. Commission split conservation
"""

from decimal import Decimal

import pytest

from models.money import apply_markup, split_commission, to_cents, to_dollars


# =============================================================================
# Conversion Tests
# =============================================================================


class TestConversion:
    """Tests for dollars <-> cents."""

    @pytest.mark.parametrize(
        "amount, expected",
        [
            (Decimal("12.34"), 1234),
            ("0.01", 1),
            (5, 500),
            (Decimal("10.005"), 1001),
            (Decimal("10.004"), 1000),
        ],
    )
    def test_to_cents(self, amount, expected):
        assert to_cents(amount) == expected

    def test_float_input_uses_its_decimal_repr(self):
        """0.1 + 0.2 style floats should not leak binary error."""
        assert to_cents(19.99) == 1999

    def test_to_dollars(self):
        assert to_dollars(1999) == Decimal("19.99")
        assert to_dollars(5) == Decimal("0.05")


# =============================================================================
# Markup Tests
# =============================================================================


class TestMarkup:
    """Tests for apply_markup."""

    def test_zero_markup_is_identity(self):
        assert apply_markup(4321, 0) == 4321

    def test_ten_percent(self):
        assert apply_markup(5000, 1000) == 5500

    def test_rounds_half_up(self):
        # 1005 * 1.005 = 1010.025
        assert apply_markup(1005, 50) == 1010
        # 150 * 1.01 = 151.5
        assert apply_markup(150, 100) == 152


# =============================================================================
# Commission Tests
# =============================================================================


class TestCommission:
    """Tests for split_commission."""

    def test_default_rate(self):
        fee, net = split_commission(10000, 800)
        assert fee == 800
        assert net == 9200

    def test_fee_rounds_half_up(self):
        # 1250 * 0.08 = 100.0, 1256 * 0.08 = 100.48, 1257 * 0.08 = 100.56
        assert split_commission(1256, 800) == (100, 1156)
        assert split_commission(1257, 800) == (101, 1156)

    @pytest.mark.parametrize("gross", [1, 99, 1001, 123457])
    @pytest.mark.parametrize("rate", [0, 250, 800, 10000])
    def test_fee_plus_net_equals_gross(self, gross, rate):
        fee, net = split_commission(gross, rate)
        assert fee + net == gross
        assert fee >= 0 and net >= 0
