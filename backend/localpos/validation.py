from __future__ import annotations

from typing import Any


class ValidationError(ValueError):
    """Input problem; the operation was not attempted."""


class ConstraintViolation(ValueError):
    """Business rule or integrity conflict (e.g., duplicate username)."""


def require_text(value: Any, field: str) -> str:
    """Return `value` stripped, or raise ValidationError if it is blank."""
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def require_choice(value: Any, field: str, choices) -> Any:
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(map(str, choices))}")
    return value
