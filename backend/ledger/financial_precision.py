"""
LEDGER: DECIMAL PRECISION & MONEY UTILITIES

This module provides:
1. Decimal precision lock (2-decimal places)
2. Safe conversions from API/storage values (float, str, Decimal128)
3. Rounding at reporting boundary only
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union
from bson import Decimal128
import logging

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')
ZERO = Decimal('0')
# DECIMAL(15,2): at most 13 integer digits
MAX_AMOUNT = Decimal("9999999999999.99")

Numeric = Union[float, int, str, Decimal, Decimal128]


class FinancialPrecisionError(Exception):
    """Raised when a value cannot be interpreted as a monetary amount"""
    pass


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate sums.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, bool):
        raise FinancialPrecisionError("Cannot convert bool to Decimal")
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise FinancialPrecisionError(f"Not a valid amount: {value!r}")
    raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")


def round_financial(value: Numeric) -> Decimal:
    """
    Round a value to 2 decimal places (half up).
    Called at calculation boundaries only.
    """
    decimal_value = to_decimal(value)
    if not decimal_value.is_finite():
        raise FinancialPrecisionError(f"Amount must be finite: {value}")
    try:
        return decimal_value.quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise FinancialPrecisionError(f"Amount out of range: {value}")


def to_float(value: Numeric) -> float:
    """
    Convert a Decimal to float for report payloads.
    Rounds to 2 decimal places first.
    """
    if value is None:
        return 0.0
    return float(round_financial(value))


def safe_divide(numerator: Numeric, denominator: Numeric) -> Decimal:
    """Safe division with zero check"""
    denom = to_decimal(denominator)
    if denom == ZERO:
        return ZERO
    return to_decimal(numerator) / denom
