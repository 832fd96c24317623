"""
Weighted-average costing tests
"""
from decimal import Decimal

import pytest

from stockledger.core.errors import InvalidQuantity
from stockledger.services.costing import (
    quantize_cost, quantize_quantity, recompute_weighted_average, stock_value, to_decimal,
)


class TestWeightedAverage:
    def test_first_receipt_takes_incoming_cost(self):
        assert recompute_weighted_average(0, 0, 10, 100) == Decimal("100.00")

    def test_blends_equal_quantities(self):
        assert recompute_weighted_average(10, 100, 10, 200) == Decimal("150.00")

    def test_blends_unequal_quantities(self):
        # (30 * 12 + 10 * 20) / 40 = 14
        assert recompute_weighted_average(30, 12, 10, 20) == Decimal("14.00")

    def test_rounds_half_up_once(self):
        # (1 * 10 + 2 * 10.01) / 3 = 10.00666...
        assert recompute_weighted_average(1, "10", 2, "10.01") == Decimal("10.01")
        # 0.125 rounds up
        assert recompute_weighted_average(7, 0, 1, 1) == Decimal("0.13")

    def test_negative_existing_quantity_is_blended(self):
        # (-2 * 10 + 5 * 16) / 3 = 20
        assert recompute_weighted_average(-2, 10, 5, 16) == Decimal("20.00")

    def test_zero_resulting_quantity_returns_incoming_cost(self):
        assert recompute_weighted_average(-5, 10, 5, "7.5") == Decimal("7.50")

    @pytest.mark.parametrize("incoming", [0, -1, "-0.5"])
    def test_rejects_non_positive_incoming(self, incoming):
        with pytest.raises(InvalidQuantity):
            recompute_weighted_average(10, 5, incoming, 5)


class TestRounding:
    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_quantize_cost_half_up(self):
        assert quantize_cost("2.345") == Decimal("2.35")
        assert quantize_cost("-2.345") == Decimal("-2.35")

    def test_quantize_quantity_keeps_four_places(self):
        assert quantize_quantity("1.23456") == Decimal("1.2346")

    def test_stock_value(self):
        assert stock_value(3, "1.115") == Decimal("3.35")
