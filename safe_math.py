"""
Safe Math Utility - Numeric coercion for upstream payloads

Market data arrives as strings, nulls or missing keys. Everything a consumer
sees must be a real number, so every coercion here falls back to a default
instead of raising or leaking NaN.
"""
import math
from typing import Any, Union


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Coerce a provider value to float.

    Handles:
    - None / empty string
    - Numeric strings ("12.5")
    - NaN and infinities (treated as unparseable)

    Args:
        value: Raw value from the upstream payload
        default: Return value if coercion impossible (default: 0.0)

    Returns:
        Finite float or default value

    Examples:
        >>> safe_float("12.5")
        12.5
        >>> safe_float(None)
        0.0
        >>> safe_float("abc")
        0.0
        >>> safe_float("nan")
        0.0
    """
    if value is None or isinstance(value, bool):
        return default

    try:
        result = float(value)
    except (TypeError, ValueError):
        return default

    if not math.isfinite(result):
        return default

    return result


def safe_int(value: Any, default: int = 0) -> int:
    """
    Coerce a provider value to int, truncating fractional strings.

    Examples:
        >>> safe_int("42")
        42
        >>> safe_int("7.9")
        7
        >>> safe_int(None)
        0
    """
    if value is None or isinstance(value, bool):
        return default

    try:
        return int(value)
    except (TypeError, ValueError):
        pass

    as_float = safe_float(value, default=None)
    if as_float is None:
        return default
    return int(as_float)


def safe_div(
    numerator: Union[int, float, None],
    denominator: Union[int, float, None],
    default: float = 0.0
) -> float:
    """
    Universal safe division helper.

    Args:
        numerator: Value to divide
        denominator: Value to divide by
        default: Return value if division impossible (default: 0.0)

    Returns:
        Division result or default value

    Examples:
        >>> safe_div(10, 2)
        5.0
        >>> safe_div(10, 0)
        0.0
    """
    if numerator is None or denominator is None:
        return default

    if denominator == 0:
        return default

    try:
        return float(numerator) / float(denominator)
    except (TypeError, ValueError, ZeroDivisionError):
        return default


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))
