"""
Financial precision tests: Decimal conversion, rounding and order totals
"""
from decimal import Decimal

import pytest
from bson import Decimal128

from finance_core.financial_precision import (
    ZERO,
    FinancialPrecisionError,
    NegativeValueError,
    calculate_order_total,
    format_amount,
    parse_amount,
    round_financial,
    sum_field,
    to_decimal,
    to_float,
)


class TestToDecimal:
    """Conversion of stored values"""

    def test_none_is_zero(self):
        assert to_decimal(None) == ZERO

    def test_float_goes_through_string(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_decimal128(self):
        assert to_decimal(Decimal128("1234.56")) == Decimal("1234.56")

    def test_bool_rejected(self):
        with pytest.raises(FinancialPrecisionError):
            to_decimal(True)

    def test_garbage_string_rejected(self):
        with pytest.raises(FinancialPrecisionError):
            to_decimal("twelve")


class TestParseAmount:
    """Caller supplied amounts"""

    def test_valid_amount(self):
        assert parse_amount("250.50") == Decimal("250.50")

    def test_missing_amount(self):
        assert parse_amount(None) is None

    def test_non_numeric(self):
        assert parse_amount("abc") is None

    def test_non_finite(self):
        assert parse_amount(float("nan")) is None
        assert parse_amount(float("inf")) is None


class TestRounding:

    def test_half_up(self):
        assert round_financial("2.345") == Decimal("2.35")
        assert round_financial("2.344") == Decimal("2.34")

    def test_to_float_rounds(self):
        assert to_float(Decimal("10.005")) == 10.01

    def test_sum_field_skips_missing(self):
        docs = [{"amount": 100.25}, {"amount": None}, {}, {"amount": 0.75}]
        assert sum_field(docs, "amount") == Decimal("101.00")


class TestOrderTotal:
    """total_cost = quantity_ordered * unit_cost"""

    def test_total(self):
        assert calculate_order_total(10, 500) == Decimal("5000.00")

    def test_fractional_quantity(self):
        assert calculate_order_total("2.5", "19.99") == Decimal("49.98")

    def test_zero_unit_cost_rejected(self):
        with pytest.raises(NegativeValueError):
            calculate_order_total(10, 0)

    def test_negative_quantity_rejected(self):
        with pytest.raises(NegativeValueError):
            calculate_order_total(-1, 100)


def test_format_amount():
    assert format_amount(70000) == "70,000.00"
