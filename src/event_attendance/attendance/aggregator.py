from __future__ import annotations

import logging

from ..events.repository import EventRepository
from .model import AttendanceSummary
from .repository import AttendanceRepository

logger = logging.getLogger(__name__)


class AttendanceAggregator:
    """Keeps the per-event summary cache in step with attendance records.

    The summary is derived data: last writer wins, and the records stay the
    authority for per-user status.
    """

    def __init__(self, events: EventRepository, attendance: AttendanceRepository):
        self._events = events
        self._attendance = attendance

    def compute(self, event_id: int) -> AttendanceSummary:
        return AttendanceSummary.from_counts(self._attendance.status_counts(event_id))

    def recompute(self, event_id: int) -> AttendanceSummary:
        summary = self.compute(event_id)
        self._events.save_summary(event_id, summary)
        return summary

    def finalize(self, event_id: int) -> AttendanceSummary:
        summary = self.recompute(event_id)
        logger.info(
            "Finalized attendance for event %s: %s/%s attended (%.2f%%)",
            event_id,
            summary.present + summary.late,
            summary.total,
            summary.attendance_rate,
        )
        return summary
