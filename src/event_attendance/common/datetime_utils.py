from __future__ import annotations

from datetime import date, datetime


def parse_iso_date(value: str) -> date:
    """Parse a YYYY-MM-DD string into a date."""
    return date.fromisoformat(value.strip())


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (naive, local time)."""
    return datetime.fromisoformat(value.strip())


def intervals_overlap(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open [start, end) overlap; touching endpoints do not overlap."""
    return start < other_end and end > other_start


def now_local() -> datetime:
    """Current local time, the single wall-clock read used by the clocks."""
    return datetime.now()
