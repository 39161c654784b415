"""Scalar helpers shared by the extractor, aggregator, codec and matcher."""

from __future__ import annotations
import math
from typing import Any, Optional


def clamp(value: float, minimum: float, maximum: float) -> float:
    """Clamp value into [minimum, maximum]."""
    return min(max(value, minimum), maximum)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from -inf (2.5 -> 3, -2.5 -> -2).

    Python's round() uses banker's rounding; scores stored by earlier clients
    were produced with half-up rounding and must compare equal.
    """
    return int(math.floor(value + 0.5))


def round_to(value: float, decimals: int) -> float:
    """Round to a fixed number of decimals for the wire format."""
    return float(round(float(value), decimals))


def to_finite_number(value: Any) -> Optional[float]:
    """Coerce value to a finite float, or None.

    Accepts ints, floats and numeric strings. Booleans and None are rejected.
    """
    if value is None or isinstance(value, bool):
        return None

    if not isinstance(value, (int, float, str)):
        return None

    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (OverflowError, ValueError):
        return None

    if not math.isfinite(number):
        return None
    return number
