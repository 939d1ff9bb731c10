from __future__ import annotations

from datetime import datetime

from dateutil.relativedelta import relativedelta
from dateutil.rrule import rruleset

from .base import RecurrenceStrategy


def add_months(value: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    return value + relativedelta(months=months)


class MonthlyStrategy(RecurrenceStrategy):
    """Monthly rule anchored on the base date (Jan 31 -> Feb 28 -> Mar 31).

    A MONTHLY rrule skips months that lack the base day, so the dates are
    enumerated with `relativedelta` and added as explicit rdates.
    """

    def __init__(self, interval: int):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval

    def add_to(self, rule_set: rruleset, base_start: datetime, horizon: int) -> None:
        for n in range(1, horizon + 1):
            rule_set.rdate(add_months(base_start, self._interval * n))
