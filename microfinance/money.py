"""
Money Handling Module

Fixed-point Decimal helpers for naira amounts. Loans carry a single currency,
so amounts are plain Decimals rather than currency-tagged values.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Union
import re

# High precision for intermediate results; rounding happens only at the edges
getcontext().prec = 28

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")
# Largest amount accepted anywhere; keeps kobo arithmetic inside the context precision
MAX_AMOUNT = Decimal("1000000000000000")
CURRENCY_SYMBOL = "₦"  # Naira

Numeric = Union[Decimal, int, str]


def to_decimal(value: Any) -> Decimal:
    """
    Convert a stored or user-supplied value to Decimal without rounding.

    Floats are converted through their string form so 0.1 stays 0.1.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    if isinstance(value, str):
        return decimal_from_string(value)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Cannot convert {value!r} to Decimal")


def round_money(amount: Numeric) -> Decimal:
    """Round to kobo (two places) using ROUND_HALF_UP"""
    try:
        return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Cannot round {amount!r} to kobo")


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling currency symbols and
    thousands separators ("₦50,000.00", "50 000", "1,250.5")

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    clean_value = re.sub(r"[^\d.,\-+eE]", "", value.strip())
    # Naira amounts use comma as thousands separator only
    clean_value = clean_value.replace(",", "")

    try:
        result = Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")
    if not result.is_finite():
        raise ValueError(f"Cannot convert '{value}' to Decimal")
    return result


def format_money(amount: Numeric) -> str:
    """Format for display, e.g. ₦55,000.00"""
    rounded = round_money(amount)
    sign = "-" if rounded < ZERO else ""
    return f"{sign}{CURRENCY_SYMBOL}{abs(rounded):,.2f}"


def money_str(amount: Numeric) -> str:
    """Canonical storage representation (Decimal string, not rounded)"""
    return str(to_decimal(amount))
