"""Numeric coercion shared by the sub-scorers. Scorers never raise on bad input."""
import math
from typing import Any


def to_number(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite, non-negative float. None, NaN, inf, junk strings and negatives -> default."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number) or number < 0:
        return default
    return number


def to_count(value: Any) -> int:
    return int(to_number(value))


def to_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)
