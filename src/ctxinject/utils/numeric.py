"""Numeric helpers for score arithmetic."""

from typing import TypeVar

__all__ = ["clamp", "round_score"]

T = TypeVar("T", int, float)


def clamp(value: T, min_val: T, max_val: T) -> T:
    """Clamp value to range [min_val, max_val], preserving type.

    Raises:
        ValueError: If min_val > max_val

    Examples:
        >>> clamp(-5, 0, 10)
        0
        >>> clamp(150.0, 0.0, 100.0)
        100.0
    """
    if min_val > max_val:
        raise ValueError(f"min_val ({min_val}) must be <= max_val ({max_val})")
    return max(min_val, min(value, max_val))


def round_score(value: float) -> float:
    """Round a score to two decimal places."""
    return round(value, 2)
