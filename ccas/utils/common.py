"""
Common utility functions for the Construction Cost Allocation System.

This module provides shared functionality used across various components
of the system, including amount handling, date coercion and safe
percentage arithmetic.
"""

from typing import Dict, Any, Optional, Union
from datetime import datetime, date
import json
import logging

logger = logging.getLogger(__name__)

# Type aliases for better type hints
Number = Union[int, float]
DateType = Union[date, datetime, str]

# Half a cent; amounts closer than this are treated as equal
DEFAULT_EPSILON = 0.005


def to_amount(value: Any) -> float:
    """
    Convert a stored monetary value to a float, treating None as zero.

    Args:
        value: Value from a Numeric column, a string, or None

    Returns:
        Float amount
    """
    if value is None:
        return 0.0
    if isinstance(value, str):
        normalized = normalize_amount(value)
        return normalized if normalized is not None else 0.0
    return float(value)


def normalize_amount(amount_str: str) -> Optional[float]:
    """
    Convert an amount string to a float, handling various formats.

    Args:
        amount_str: String representation of an amount

    Returns:
        Normalized float amount or None if conversion fails
    """
    if not amount_str:
        return None

    if isinstance(amount_str, (int, float)):
        return float(amount_str)

    amount_str = str(amount_str).strip()

    try:
        # Parentheses mean negative (accounting notation)
        if amount_str.startswith('(') and amount_str.endswith(')'):
            amount_str = '-' + amount_str[1:-1]

        for char in ['$', ',', ' ']:
            amount_str = amount_str.replace(char, '')

        return float(amount_str)
    except ValueError:
        logger.warning(f"Failed to normalize amount string: {amount_str}")
        return None


def amounts_equal(a: Number, b: Number, epsilon: float = DEFAULT_EPSILON) -> bool:
    """Compare two amounts with a rounding tolerance."""
    return abs(float(a) - float(b)) <= epsilon


def round_money(value: Optional[Number]) -> Optional[float]:
    """Round to cents, passing None through."""
    if value is None:
        return None
    return round(float(value), 2)


def to_date(value: Optional[DateType]) -> Optional[date]:
    """
    Coerce a date, datetime or ISO string to a date.

    Args:
        value: Value to coerce

    Returns:
        Date object or None if the value is empty or unparseable
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        logger.warning(f"Failed to parse date string: {value}")
        return None


def days_between(first: Optional[DateType], second: Optional[DateType]) -> Optional[int]:
    """Absolute number of whole days between two dates, None if either is missing."""
    first_date = to_date(first)
    second_date = to_date(second)
    if first_date is None or second_date is None:
        return None
    return abs((first_date - second_date).days)


def format_currency(amount: Optional[float]) -> str:
    """
    Format a number as a currency string.

    Args:
        amount: Amount to format

    Returns:
        Formatted currency string
    """
    if amount is None:
        return "N/A"

    return f"${amount:,.2f}"


def calculate_percentage(part: Number, whole: Number) -> Optional[float]:
    """
    Calculate a percentage safely.

    Args:
        part: Numerator
        whole: Denominator

    Returns:
        Percentage (0-100) or None if calculation fails
    """
    try:
        if whole == 0:
            return None
        return (part / whole) * 100
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def safe_json_serialize(obj: Any) -> Any:
    """
    Convert an object to a JSON-serializable format.

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation of the object
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif hasattr(obj, 'to_dict'):
        return obj.to_dict()
    elif hasattr(obj, '__dict__'):
        return obj.__dict__
    return str(obj)


def safe_json_dumps(data: Any, **kwargs) -> str:
    """
    Convert data to a JSON string, handling non-serializable types.

    Args:
        data: Data to convert to JSON
        **kwargs: Passed through to json.dumps

    Returns:
        JSON string
    """
    return json.dumps(data, default=safe_json_serialize, **kwargs)
