from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..core.exceptions import ValidationError


def require_non_empty(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{field_name} is required")
    return value.strip()


def require_time_range(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is None or end is None:
        raise ValidationError("Event start and end time are required")
    if end <= start:
        raise ValidationError("End time must be after start time")


def require_positive(value: int, field_name: str) -> int:
    if value is None or int(value) <= 0:
        raise ValidationError(f"{field_name} must be a positive number")
    return int(value)
