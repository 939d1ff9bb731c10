from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import islice, takewhile
from typing import Optional

from dateutil.rrule import rruleset

from ...core.constants import RECURRENCE_MAX_INSTANCES
from ..model import RecurrenceRule
from .factory import RecurrenceStrategyFactory


@dataclass(frozen=True)
class Occurrence:
    start_time: datetime
    end_time: datetime


class RecurrenceExpander:
    """Expand a recurrence rule into a bounded list of occurrences.

    Pure and deterministic: the same base start, duration and rule always give
    the same list. Expansion stops at the first of: the rule's end date, its
    count, or the hard ceiling. Exception dates are skipped and do not count.
    The base start itself belongs to the parent event and is never returned.
    """

    def __init__(
        self,
        *,
        max_instances: int = RECURRENCE_MAX_INSTANCES,
        strategy_factory: Optional[RecurrenceStrategyFactory] = None,
    ):
        self._max_instances = int(max_instances)
        self._factory = strategy_factory or RecurrenceStrategyFactory()

    def expand(self, *, base_start: datetime, duration: timedelta, rule: RecurrenceRule) -> list[Occurrence]:
        limit = self._max_instances
        if rule.count is not None:
            limit = min(limit, max(int(rule.count), 0))
        if limit == 0:
            return []

        # rrule works at second resolution
        base_start = base_start.replace(microsecond=0)

        rule_set = rruleset()
        self._factory.for_rule(rule).add_to(rule_set, base_start, horizon=limit + len(rule.exceptions))
        for day in rule.exceptions:
            rule_set.exdate(datetime.combine(day, base_start.time()))

        candidates = rule_set.xafter(base_start, inc=False)
        if rule.end_date is not None:
            candidates = takewhile(lambda c: c.date() <= rule.end_date, candidates)

        return [Occurrence(start_time=c, end_time=c + duration) for c in islice(candidates, limit)]
