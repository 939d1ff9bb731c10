from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from ..attendance.model import AttendanceSummary
from ..common.datetime_utils import parse_iso_date
from ..core.constants import DEFAULT_AUTO_CLOSE_HOURS, DEFAULT_REMINDER_MINUTES
from ..core.enums import EventStatus, Frequency, ScopeType


@dataclass(frozen=True)
class EventScope:
    scope_type: ScopeType
    target_id: Optional[int] = None

    @property
    def is_all(self) -> bool:
        return self.scope_type == ScopeType.ALL

    def matches(self, other: "EventScope") -> bool:
        """Two scopes collide when either targets everyone or both share a target."""
        if self.is_all or other.is_all:
            return True
        if self.target_id is None:
            return False
        return self.scope_type == other.scope_type and self.target_id == other.target_id


ALL_SCOPE = EventScope(ScopeType.ALL)


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    interval: int = 1
    days_of_week: tuple[int, ...] = ()  # 0 = Monday ... 6 = Sunday
    end_date: Optional[date] = None
    count: Optional[int] = None
    exceptions: frozenset[date] = frozenset()

    def to_dict(self) -> dict:
        return {
            "frequency": self.frequency.value,
            "interval": self.interval,
            "days_of_week": list(self.days_of_week),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "count": self.count,
            "exceptions": sorted(d.isoformat() for d in self.exceptions),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RecurrenceRule":
        end_date = data.get("end_date")
        return cls(
            frequency=Frequency(data["frequency"]),
            interval=int(data.get("interval") or 1),
            days_of_week=tuple(sorted({int(d) for d in data.get("days_of_week") or ()})),
            end_date=parse_iso_date(end_date) if end_date else None,
            count=int(data["count"]) if data.get("count") is not None else None,
            exceptions=frozenset(parse_iso_date(d) for d in data.get("exceptions") or ()),
        )


@dataclass(frozen=True)
class Event:
    """Domain entity: an organizational event.

    `status` is the single source of truth; `is_closed` and `is_recurring` are
    read-only projections of it and of the recurrence rule.
    """

    event_id: int
    title: str
    start_time: datetime
    end_time: datetime
    status: EventStatus
    scope: EventScope
    created_by: int
    assigned_operator: Optional[int] = None
    description: Optional[str] = None
    event_type: str = "other"
    recurrence_rule: Optional[RecurrenceRule] = None
    parent_event_id: Optional[int] = None
    expected_participants: frozenset[int] = frozenset()
    actual_participants: frozenset[int] = frozenset()
    capacity: Optional[int] = None
    allow_walk_ins: bool = True
    auto_close_offset: timedelta = timedelta(hours=DEFAULT_AUTO_CLOSE_HOURS)
    reminder_offsets: tuple[int, ...] = DEFAULT_REMINDER_MINUTES
    reminders_sent: frozenset[int] = frozenset()
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancellation_reason: Optional[str] = None
    summary: AttendanceSummary = field(default_factory=AttendanceSummary)

    @property
    def is_closed(self) -> bool:
        return self.status == EventStatus.CLOSED

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_rule is not None

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def auto_close_at(self) -> datetime:
        return self.end_time + self.auto_close_offset

    @property
    def participants(self) -> frozenset[int]:
        return self.expected_participants | self.actual_participants

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "title": self.title,
            "description": self.description,
            "event_type": self.event_type,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status.value,
            "scope": {"type": self.scope.scope_type.value, "target_id": self.scope.target_id},
            "created_by": self.created_by,
            "assigned_operator": self.assigned_operator,
            "is_recurring": self.is_recurring,
            "recurrence_rule": self.recurrence_rule.to_dict() if self.recurrence_rule else None,
            "parent_event_id": self.parent_event_id,
            "expected_participants": sorted(self.expected_participants),
            "actual_participants": sorted(self.actual_participants),
            "capacity": self.capacity,
            "allow_walk_ins": self.allow_walk_ins,
            "auto_close_at": self.auto_close_at.isoformat(),
            "is_closed": self.is_closed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by": self.closed_by,
            "cancellation_reason": self.cancellation_reason,
            "summary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class NewEvent:
    """Input for EventService.create (validated by the service)."""

    title: str
    start_time: datetime
    end_time: datetime
    scope: EventScope
    assigned_operator: Optional[int] = None
    description: Optional[str] = None
    event_type: str = "other"
    recurrence_rule: Optional[RecurrenceRule] = None
    expected_participants: frozenset[int] = frozenset()
    capacity: Optional[int] = None
    allow_walk_ins: bool = True
    auto_close_offset: Optional[timedelta] = None
    reminder_offsets: tuple[int, ...] = DEFAULT_REMINDER_MINUTES
    as_draft: bool = False


@dataclass(frozen=True)
class EventStatistics:
    event_id: int
    title: str
    expected_participants: int
    summary: AttendanceSummary

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "title": self.title,
            "expected_participants": self.expected_participants,
            **self.summary.to_dict(),
        }
