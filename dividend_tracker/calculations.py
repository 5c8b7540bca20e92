"""Numeric helpers shared by the analytics modules."""
from __future__ import annotations

# Quantities at or below this are treated as a closed position.
EPSILON = 1e-6


def safe_divide(numerator: float, denominator: float) -> float:
    """Return ``numerator / denominator`` or ``0.0`` for a (near) zero denominator."""

    if denominator is None or abs(denominator) <= EPSILON:
        return 0.0
    return numerator / denominator


def percentage(part: float, whole: float) -> float:
    """Return ``part`` as a percentage of ``whole`` rounded to two decimals."""

    return round2(safe_divide(part, whole) * 100)


def round2(value: float) -> float:
    return round(float(value), 2)


def is_open_quantity(quantity: float) -> bool:
    return quantity > EPSILON
