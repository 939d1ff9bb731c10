from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..common.datetime_utils import intervals_overlap
from ..core.enums import EventStatus
from ..core.exceptions import ConflictError
from .model import Event, EventScope
from .repository import EventRepository

# Statuses that no longer hold their slot on the calendar.
INACTIVE_STATUSES = (EventStatus.CANCELLED, EventStatus.COMPLETED, EventStatus.CLOSED)


class ConflictDetector:
    """Finds live events that overlap a half-open [start, end) interval in a colliding scope."""

    def __init__(self, events: EventRepository):
        self._events = events

    def check(
        self,
        start: datetime,
        end: datetime,
        scope: EventScope,
        exclude_id: Optional[int] = None,
    ) -> list[Event]:
        candidates = self._events.list_overlapping(
            start=start,
            end=end,
            exclude_statuses=INACTIVE_STATUSES,
            exclude_id=exclude_id,
        )
        hits = [
            e
            for e in candidates
            if intervals_overlap(start, end, e.start_time, e.end_time)
            and e.status not in INACTIVE_STATUSES
            and scope.matches(e.scope)
        ]
        hits.sort(key=lambda e: (e.start_time, e.event_id))
        return hits

    def ensure_free(
        self,
        start: datetime,
        end: datetime,
        scope: EventScope,
        exclude_id: Optional[int] = None,
    ) -> None:
        hits = self.check(start, end, scope, exclude_id=exclude_id)
        if hits:
            first = hits[0]
            raise ConflictError(
                f"Time slot overlaps with event {first.event_id} ({first.title}) "
                f"from {first.start_time.isoformat()} to {first.end_time.isoformat()}",
                blocking_id=first.event_id,
            )
