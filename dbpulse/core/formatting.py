"""
Display formatting and parsing helpers for durations and intervals
"""

import math
import re
from typing import Any, Optional

_DURATION_RE = re.compile(r"^\s*([\d.]+)\s*(ms|s|m|min)\s*$", re.IGNORECASE)
_INTERVAL_RE = re.compile(r"^\s*(\d+)\s*([smh])\s*$", re.IGNORECASE)

_DURATION_FACTORS = {
    "ms": 1.0,
    "s": 1000.0,
    "m": 60_000.0,
    "min": 60_000.0,
}

_INTERVAL_FACTORS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
}


def format_duration_ms(value_ms: Optional[float]) -> str:
    """
    Format a millisecond duration the way the dashboard tables show it

    Examples:
        >>> format_duration_ms(12)
        '12ms'
        >>> format_duration_ms(4200)
        '4.2s'
    """
    if value_ms is None:
        return "-"
    value = float(value_ms)
    if not math.isfinite(value):
        return "-"
    if abs(value) < 1000:
        return f"{round(value):d}ms"
    return f"{value / 1000:.1f}s"


def parse_duration_ms(value: Any) -> Optional[float]:
    """
    Normalize a duration-like value to milliseconds

    Numbers are taken as milliseconds. Strings like "123ms", "4.2s" or
    "1.5m" are converted. Anything else returns None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(float(value)) else None
    match = _DURATION_RE.match(str(value))
    if not match:
        return None
    try:
        number = float(match.group(1))
    except ValueError:
        return None
    return number * _DURATION_FACTORS[match.group(2).lower()]


def parse_interval_ms(interval: str) -> int:
    """
    Convert a refresh interval string ("5s", "1m", "1h") to milliseconds

    Raises:
        ValueError: if the interval is not in <number><s|m|h> form
    """
    match = _INTERVAL_RE.match(str(interval or ""))
    if not match:
        raise ValueError(f"Invalid interval: {interval!r}")
    return int(match.group(1)) * _INTERVAL_FACTORS[match.group(2).lower()]


def format_count(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return f"{int(value):,}"


def format_percent(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100.0, 1)
