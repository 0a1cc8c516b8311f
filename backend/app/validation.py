from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable


# Maximum single amount: 9,999,999,999.99 (999,999,999,999 minor units)
# Prevents overflow in balance columns and nonsensical inputs
MAX_AMOUNT_CENTS = 999_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


def coerce_cents(value: Any, field: str) -> int:
    """
    Strict integer coercion for minor-unit money amounts.

    Accepts ints and plain digit strings (optional leading minus).
    Rejects bools, floats, decimals and scientific notation: amounts are
    always carried as integer minor units.
    """
    if value is None:
        raise ValidationError(f"{field} is required")

    # bool is a subclass of int
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer amount in minor units")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer amount in minor units")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be in minor units (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer amount in minor units")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer amount in minor units, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer amount in minor units")

    if abs(result) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} in magnitude")
    return result


def coerce_positive_cents(value: Any, field: str) -> int:
    cents = coerce_cents(value, field)
    if cents <= 0:
        raise ValidationError(f"{field} must be > 0")
    return cents


def require_text(value: Any, field: str, max_length: int | None = None) -> str:
    """Non-blank string, trimmed."""
    if value is None or not isinstance(value, str):
        raise ValidationError(f"{field} is required")
    text = value.strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    text = value.strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text or None


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    choices = list(choices)
    if value not in choices:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {choices}")
    return value


def coerce_id(value: Any, field: str) -> int:
    """Integer identifier from JSON or path input."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer id")


def round_half_up(value: float | int | Decimal) -> int:
    """Round to the nearest integer, halves away from zero (not banker's rounding)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_json_payload(request) -> dict:
    """Request body as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data
