from __future__ import annotations

from datetime import datetime
from typing import Sequence

from dateutil.rrule import MO, WEEKLY, rrule, rruleset

from .base import RecurrenceStrategy


class WeeklyStrategy(RecurrenceStrategy):
    """Weekly and bi-weekly rules, optionally on explicit weekdays.

    Weeks start on Monday and the week containing the base event is the
    first one. Without `days_of_week` the base event's weekday is repeated.
    """

    def __init__(self, week_step: int, days_of_week: Sequence[int] = ()):
        days = sorted({int(d) for d in days_of_week})
        if days and (days[0] < 0 or days[-1] > 6):
            raise ValueError("days_of_week must hold values between 0 (Monday) and 6 (Sunday)")
        if week_step <= 0:
            raise ValueError("week_step must be positive")
        self._days = tuple(days) or None
        self._week_step = week_step

    def add_to(self, rule_set: rruleset, base_start: datetime, horizon: int) -> None:
        rule_set.rrule(
            rrule(
                WEEKLY,
                dtstart=base_start,
                interval=self._week_step,
                byweekday=self._days,
                wkst=MO,
            )
        )
