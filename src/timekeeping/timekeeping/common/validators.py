from __future__ import annotations

from ..core.exceptions import ValidationError


def require_non_empty(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{field_name} must not be empty")
    return value.strip()


def require_positive(value: int, field_name: str) -> int:
    if value is None or int(value) <= 0:
        raise ValidationError(f"{field_name} must be a positive integer")
    return int(value)
