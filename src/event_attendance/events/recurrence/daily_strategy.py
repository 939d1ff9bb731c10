from __future__ import annotations

from datetime import datetime

from dateutil.rrule import DAILY, rrule, rruleset

from .base import RecurrenceStrategy


class DailyStrategy(RecurrenceStrategy):
    """Every `interval` days at the base time of day."""

    def __init__(self, interval: int):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval

    def add_to(self, rule_set: rruleset, base_start: datetime, horizon: int) -> None:
        rule_set.rrule(rrule(DAILY, dtstart=base_start, interval=self._interval))
