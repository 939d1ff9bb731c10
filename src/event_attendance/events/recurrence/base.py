from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from dateutil.rrule import rruleset


class RecurrenceStrategy(ABC):
    """Strategy Pattern: encapsulate how successive occurrences are stepped.

    Implementations add their candidate start times to a `dateutil` rule set
    anchored at `base_start`. The expander applies bounding (end date, count,
    ceiling) and exception dates afterwards. `horizon` is the most candidates
    the expander can consume, for strategies that enumerate dates explicitly.
    """

    @abstractmethod
    def add_to(self, rule_set: rruleset, base_start: datetime, horizon: int) -> None:
        raise NotImplementedError
