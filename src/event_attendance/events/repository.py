from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from ..attendance.model import AttendanceSummary
from ..core.enums import EventStatus
from .model import Event, EventScope


class EventRepository(Protocol):
    """Storage interface for events.

    Conflict checks issue interval and status predicates and match scopes
    themselves. Status writes are compare-and-set so concurrent
    transitions cannot silently overwrite each other.
    """

    def get_by_id(self, event_id: int) -> Optional[Event]:
        raise NotImplementedError

    def insert(self, event: Event) -> Event:
        """Persist a new event and return it with its assigned event_id."""

        raise NotImplementedError

    def find_instance(self, *, parent_event_id: int, start_time: datetime) -> Optional[Event]:
        raise NotImplementedError

    def list_overlapping(
        self,
        *,
        start: datetime,
        end: datetime,
        exclude_statuses: Iterable[EventStatus] = (),
        exclude_id: Optional[int] = None,
    ) -> Sequence[Event]:
        """Events whose [start_time, end_time) intersects [start, end)."""

        raise NotImplementedError

    def list_by_status(self, statuses: Iterable[EventStatus]) -> Sequence[Event]:
        raise NotImplementedError

    def list_instances(self, parent_event_id: int) -> Sequence[Event]:
        raise NotImplementedError

    def list_events(
        self,
        *,
        scope: Optional[EventScope] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Iterable[EventStatus] = (),
        participant_id: Optional[int] = None,
        limit: int = 100,
    ) -> Sequence[Event]:
        """Events passing every given filter, earliest first.

        `scope` keeps events whose scope collides with it (see
        `EventScope.matches`); `start`/`end` keep events intersecting that
        window; `participant_id` keeps events the user is expected at or
        attended.
        """

        raise NotImplementedError

    def compare_and_set_status(
        self,
        event_id: int,
        *,
        expected: EventStatus,
        target: EventStatus,
        changes: Optional[dict] = None,
    ) -> bool:
        """Move `expected` -> `target` atomically; False if the status moved on.

        `changes` may carry completed_at, closed_at, closed_by, cancelled_at,
        cancelled_by and cancellation_reason.
        """

        raise NotImplementedError

    def add_expected_participant(self, event_id: int, user_id: int) -> bool:
        raise NotImplementedError

    def remove_expected_participant(self, event_id: int, user_id: int) -> bool:
        raise NotImplementedError

    def add_actual_participant(self, event_id: int, user_id: int) -> bool:
        raise NotImplementedError

    def save_summary(self, event_id: int, summary: AttendanceSummary) -> bool:
        raise NotImplementedError

    def mark_reminder_sent(self, event_id: int, offset_minutes: int) -> bool:
        """Record a reminder offset as sent; False if it already was."""

        raise NotImplementedError

    def delete(self, event_id: int) -> bool:
        raise NotImplementedError
