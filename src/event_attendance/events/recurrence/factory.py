from __future__ import annotations

from dataclasses import dataclass

from ...core.enums import Frequency
from ..model import RecurrenceRule
from .base import RecurrenceStrategy
from .daily_strategy import DailyStrategy
from .monthly_strategy import MonthlyStrategy
from .weekly_strategy import WeeklyStrategy

_WEEKS_PER_STEP = {Frequency.WEEKLY: 1, Frequency.BI_WEEKLY: 2}


@dataclass
class RecurrenceStrategyFactory:
    """Factory Pattern: choose the stepping strategy for a rule."""

    def for_rule(self, rule: RecurrenceRule) -> RecurrenceStrategy:
        interval = max(int(rule.interval or 1), 1)

        if rule.frequency == Frequency.DAILY:
            return DailyStrategy(interval)

        if rule.frequency in _WEEKS_PER_STEP:
            return WeeklyStrategy(_WEEKS_PER_STEP[rule.frequency] * interval, rule.days_of_week)

        if rule.frequency == Frequency.MONTHLY:
            return MonthlyStrategy(interval)

        raise ValueError(f"Unsupported frequency: {rule.frequency!r}")
