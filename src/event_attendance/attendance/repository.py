from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..core.enums import AttendanceStatus
from .model import AttendanceRecord, Location, StatusChange


class AttendanceRepository(Protocol):
    """Storage interface for attendance records.

    The (event_id, user_id) pair is unique. `create_if_absent` must be atomic
    at the storage layer; it is the only guard against duplicate records.
    """

    def get(self, event_id: int, user_id: int) -> Optional[AttendanceRecord]:
        raise NotImplementedError

    def list_for_event(self, event_id: int) -> Sequence[AttendanceRecord]:
        raise NotImplementedError

    def list_for_user(self, user_id: int, *, limit: int) -> Sequence[AttendanceRecord]:
        """Most recent first."""

        raise NotImplementedError

    def count_for_event(self, event_id: int) -> int:
        raise NotImplementedError

    def status_counts(self, event_id: int) -> dict[AttendanceStatus, int]:
        raise NotImplementedError

    def create_if_absent(self, record: AttendanceRecord) -> bool:
        """Insert the record unless one exists for its key; True if inserted."""

        raise NotImplementedError

    def apply_change(
        self,
        event_id: int,
        user_id: int,
        *,
        change: StatusChange,
        notes: Optional[str],
        location: Optional[Location],
        arrival_time: Optional[datetime],
    ) -> bool:
        """Update status/marked_by/marked_at from `change` and append it to history.

        The stored status must still equal `change.previous_status`; returns
        False otherwise so the caller can reload and retry.
        """

        raise NotImplementedError
