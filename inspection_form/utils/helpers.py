"""
Utility helpers for the inspection form engine

Simple utility functions for ID generation and value rendering.
"""

import json
import math
import uuid
from datetime import datetime, timezone


def generate_inspection_id(short=True):
    """
    Generate unique inspection identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Inspection ID

    Examples:
        >>> generate_inspection_id()
        'a3f7e2b9'

        >>> generate_inspection_id(short=False)
        'a3f7e2b9c1d2e3f4a5b6c7d8e9f0a1b2'
    """
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def utc_timestamp():
    """ISO 8601 timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()


def to_number(value):
    """
    Coerce a stored value to a number.

    Returns:
        int/float, or None when the value is not numeric

    Examples:
        >>> to_number(3)
        3
        >>> to_number('4.5')
        4.5
        >>> to_number(True)
        1
        >>> to_number('abc') is None
        True
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else value
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        if math.isnan(number):
            return None
        return int(number) if number.is_integer() else number
    return None


def format_number(value):
    """
    Render a number the way a user typed it (no trailing '.0').

    Examples:
        >>> format_number(6.0)
        '6'
        >>> format_number(2.5)
        '2.5'
    """
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_value(value):
    """
    Render any flattened value for string comparison and messages.

    Examples:
        >>> render_value(True)
        'true'
        >>> render_value(None)
        'null'
        >>> render_value(4.0)
        '4'
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)
