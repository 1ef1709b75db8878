from __future__ import annotations

import math

from cit.domain.errors import ValidationError


def positive_int(value, label: str) -> int:
    """Whole number >= 1. Booleans and fractional floats are rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a whole number.")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{label} must be a whole number.")
    try:
        n = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a whole number.") from e
    if n <= 0:
        raise ValidationError(f"{label} must be >= 1.")
    return n


def non_negative_price(value, label: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number.")
    try:
        price = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a number.") from e
    if not math.isfinite(price):
        raise ValidationError(f"{label} must be a finite number.")
    if price < 0:
        raise ValidationError(f"{label} must be >= 0.")
    return price
