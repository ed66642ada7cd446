"""
Money Helpers Module

Decimal helpers for rupee amounts: parsing, rounding to the minor unit with
ROUND_HALF_UP, and tolerance comparisons. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import Union
import re

# Set global decimal context for financial precision
getcontext().prec = 28

CURRENCY_CODE = "INR"
MINOR_UNIT = Decimal('0.01')
ZERO = Decimal('0')

Numeric = Union[Decimal, int, str, float]

# Rupee symbol, whitespace and thousands separators; nothing else is stripped
_DECORATION = re.compile(r"[\u20b9,\s]")
_PLAIN_NUMBER = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)")


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert an incoming numeric value to Decimal
    
    Strings may carry the rupee symbol, spaces and thousands separators
    ("₹50,000.00"). Anything else, exponents included, is rejected.
    Floats are converted through their string repr so no binary noise
    leaks in.
    
    Raises:
        ValueError: If the value cannot be converted to a finite Decimal
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        clean_value = _DECORATION.sub('', value)
        if not _PLAIN_NUMBER.fullmatch(clean_value):
            raise ValueError(f"Cannot convert '{value}' to Decimal")
        result = Decimal(clean_value)
    else:
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    
    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    """Round to the currency minor unit using ROUND_HALF_UP"""
    return value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal = MINOR_UNIT) -> bool:
    """Check two amounts differ by at most the tolerance"""
    return abs(a - b) <= tolerance


def format_amount(value: Decimal) -> str:
    """Format for display, e.g. 'INR 4,442.44'"""
    return f"{CURRENCY_CODE} {round_money(value):,.2f}"
