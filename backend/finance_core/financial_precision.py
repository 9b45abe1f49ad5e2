"""
FINANCE CORE: DECIMAL PRECISION & FINANCIAL UTILITIES

This module provides:
1. Decimal precision lock (2-decimal places)
2. Safe financial calculations
3. Value validation (no negative amounts)
4. Rounding at calculation boundary only
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union, Optional
from bson import Decimal128
import logging

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')
ZERO = Decimal('0')

Numeric = Union[float, int, str, Decimal, Decimal128, None]


class FinancialPrecisionError(Exception):
    """Raised when a value cannot be interpreted as money"""
    pass


class NegativeValueError(Exception):
    """Raised when a negative financial value is detected"""
    pass


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert any stored numeric value to Decimal.
    Missing values (None) are treated as zero.
    Does NOT round - preserves full precision for intermediate calculations.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise FinancialPrecisionError(f"Cannot convert '{value}' to Decimal")
    raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")


def parse_amount(value: Numeric) -> Optional[Decimal]:
    """
    Parse a caller-supplied amount.
    Returns None when the value is missing or not a finite number.
    """
    if value is None:
        return None
    try:
        amount = to_decimal(value)
    except FinancialPrecisionError:
        return None
    if not amount.is_finite():
        return None
    return amount


def round_financial(value: Numeric) -> Decimal:
    """
    Round a value to 2 decimal places (half-up).
    This should be called ONLY at calculation boundaries.
    """
    decimal_value = to_decimal(value)
    return decimal_value.quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def to_float(value: Numeric) -> float:
    """
    Convert Decimal back to float for MongoDB storage.
    Rounds to 2 decimal places first.
    """
    return float(round_financial(value))


def validate_non_negative(value: Numeric, field_name: str) -> None:
    """Raises NegativeValueError if the value is below zero"""
    if to_decimal(value) < ZERO:
        raise NegativeValueError(
            f"Financial value '{field_name}' cannot be negative: {value}"
        )


def validate_positive(value: Numeric, field_name: str) -> None:
    """Raises NegativeValueError unless the value is strictly positive (> 0)"""
    if to_decimal(value) <= ZERO:
        raise NegativeValueError(
            f"Financial value '{field_name}' must be positive: {value}"
        )


def safe_multiply(a: Numeric, b: Numeric) -> Decimal:
    """Safe multiplication preserving precision"""
    return to_decimal(a) * to_decimal(b)


def sum_field(documents, field: str) -> Decimal:
    """Sum one numeric field across documents, missing values count as zero"""
    total = ZERO
    for doc in documents:
        total += to_decimal(doc.get(field))
    return total


def calculate_order_total(quantity: Numeric, unit_cost: Numeric) -> Decimal:
    """
    Purchase order total with decimal precision.

    LOCKED FORMULA:
    - total_cost = quantity_ordered * unit_cost
    """
    validate_non_negative(quantity, 'quantity_ordered')
    validate_positive(unit_cost, 'unit_cost')
    return round_financial(safe_multiply(quantity, unit_cost))


def format_amount(value: Numeric) -> str:
    """Human readable amount for error messages (e.g. 70,000.00)"""
    return f"{round_financial(value):,.2f}"
