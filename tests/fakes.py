from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from event_attendance.attendance.model import AttendanceRecord, AttendanceSummary, Location, StatusChange
from event_attendance.authorization.context import AuthorizationContext
from event_attendance.container import Container, assemble
from event_attendance.core.enums import AttendanceStatus, EventStatus, Role, ScopeType
from event_attendance.events.model import Event, EventScope, NewEvent
from event_attendance.notifications.model import AuditEntry

T0 = datetime(2026, 3, 2, 9, 0, 0)  # a Monday

DEPT_1 = EventScope(ScopeType.DEPARTMENT, 1)
DEPT_2 = EventScope(ScopeType.DEPARTMENT, 2)


class InMemoryEvents:
    def __init__(self):
        self._lock = threading.Lock()
        self._next_id = 1
        self.by_id: dict[int, Event] = {}

    def get_by_id(self, event_id: int) -> Optional[Event]:
        with self._lock:
            return self.by_id.get(int(event_id))

    def insert(self, event: Event) -> Event:
        with self._lock:
            for other in self.by_id.values():
                if (
                    event.parent_event_id is not None
                    and other.parent_event_id == event.parent_event_id
                    and other.start_time == event.start_time
                ):
                    raise RuntimeError("duplicate recurrence instance")
            saved = replace(event, event_id=self._next_id)
            self.by_id[saved.event_id] = saved
            self._next_id += 1
            return saved

    def find_instance(self, *, parent_event_id: int, start_time: datetime) -> Optional[Event]:
        with self._lock:
            for e in self.by_id.values():
                if e.parent_event_id == parent_event_id and e.start_time == start_time:
                    return e
            return None

    def list_overlapping(self, *, start, end, exclude_statuses=(), exclude_id=None):
        excluded = set(exclude_statuses)
        with self._lock:
            out = [
                e
                for e in self.by_id.values()
                if e.start_time < end and e.end_time > start and e.status not in excluded and e.event_id != exclude_id
            ]
        return sorted(out, key=lambda e: (e.start_time, e.event_id))

    def list_by_status(self, statuses: Iterable[EventStatus]):
        wanted = set(statuses)
        with self._lock:
            out = [e for e in self.by_id.values() if e.status in wanted]
        return sorted(out, key=lambda e: (e.auto_close_at, e.event_id))

    def list_instances(self, parent_event_id: int):
        with self._lock:
            out = [e for e in self.by_id.values() if e.parent_event_id == parent_event_id]
        return sorted(out, key=lambda e: e.start_time)

    def list_events(self, *, scope=None, start=None, end=None, statuses=(), participant_id=None, limit=100):
        wanted = set(statuses)
        with self._lock:
            out = [
                e
                for e in self.by_id.values()
                if (scope is None or scope.matches(e.scope))
                and (start is None or e.end_time > start)
                and (end is None or e.start_time < end)
                and (not wanted or e.status in wanted)
                and (participant_id is None or participant_id in e.participants)
            ]
        return sorted(out, key=lambda e: (e.start_time, e.event_id))[:limit]

    def compare_and_set_status(self, event_id, *, expected, target, changes=None) -> bool:
        with self._lock:
            current = self.by_id.get(int(event_id))
            if current is None or current.status != expected:
                return False
            self.by_id[current.event_id] = replace(current, status=target, **(changes or {}))
            return True

    def _update(self, event_id: int, fn: Callable[[Event], Optional[Event]]) -> bool:
        with self._lock:
            current = self.by_id.get(int(event_id))
            if current is None:
                return False
            updated = fn(current)
            if updated is None:
                return False
            self.by_id[current.event_id] = updated
            return True

    def add_expected_participant(self, event_id: int, user_id: int) -> bool:
        return self._update(
            event_id,
            lambda e: None
            if user_id in e.expected_participants
            else replace(e, expected_participants=e.expected_participants | {user_id}),
        )

    def remove_expected_participant(self, event_id: int, user_id: int) -> bool:
        return self._update(
            event_id,
            lambda e: replace(e, expected_participants=e.expected_participants - {user_id})
            if user_id in e.expected_participants
            else None,
        )

    def add_actual_participant(self, event_id: int, user_id: int) -> bool:
        return self._update(
            event_id,
            lambda e: None
            if user_id in e.actual_participants
            else replace(e, actual_participants=e.actual_participants | {user_id}),
        )

    def save_summary(self, event_id: int, summary: AttendanceSummary) -> bool:
        return self._update(event_id, lambda e: replace(e, summary=summary))

    def mark_reminder_sent(self, event_id: int, offset_minutes: int) -> bool:
        return self._update(
            event_id,
            lambda e: None
            if offset_minutes in e.reminders_sent
            else replace(e, reminders_sent=e.reminders_sent | {offset_minutes}),
        )

    def delete(self, event_id: int) -> bool:
        with self._lock:
            return self.by_id.pop(int(event_id), None) is not None


class InMemoryAttendance:
    def __init__(self):
        self._lock = threading.Lock()
        self.records: dict[tuple[int, int], AttendanceRecord] = {}
        self.insert_attempts = 0

    def get(self, event_id: int, user_id: int) -> Optional[AttendanceRecord]:
        with self._lock:
            return self.records.get((int(event_id), int(user_id)))

    def list_for_event(self, event_id: int):
        with self._lock:
            out = [r for r in self.records.values() if r.event_id == event_id]
        return sorted(out, key=lambda r: r.user_id)

    def list_for_user(self, user_id: int, *, limit: int):
        with self._lock:
            out = [r for r in self.records.values() if r.user_id == user_id]
        out.sort(key=lambda r: r.marked_at, reverse=True)
        return out[:limit]

    def count_for_event(self, event_id: int) -> int:
        return len(self.list_for_event(event_id))

    def status_counts(self, event_id: int) -> dict[AttendanceStatus, int]:
        counts: dict[AttendanceStatus, int] = {}
        for r in self.list_for_event(event_id):
            counts[r.status] = counts.get(r.status, 0) + 1
        return counts

    def create_if_absent(self, record: AttendanceRecord) -> bool:
        with self._lock:
            self.insert_attempts += 1
            if record.key in self.records:
                return False
            self.records[record.key] = record
            return True

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
        key = (int(event_id), int(user_id))
        with self._lock:
            current = self.records.get(key)
            if current is None or current.status != change.previous_status:
                return False
            self.records[key] = replace(
                current,
                status=change.new_status,
                marked_by=change.changed_by,
                marked_at=change.changed_at,
                notes=notes if notes is not None else current.notes,
                location=location or current.location,
                arrival_time=current.arrival_time or arrival_time,
                auto_marked=False,
                history=current.history + (change,),
            )
            return True


class InMemoryMembers:
    def __init__(self, scopes: Optional[dict[int, set[EventScope]]] = None):
        self.scopes = scopes or {}

    def scopes_for(self, user_id: int) -> frozenset[EventScope]:
        return frozenset(self.scopes.get(user_id, ()))

    def members_of(self, scope: EventScope) -> frozenset[int]:
        return frozenset(u for u, scopes in self.scopes.items() if scope.is_all or scope in scopes)


class _Handle:
    def __init__(self, clock: "ManualClock", key: int):
        self._clock = clock
        self._key = key
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self._clock.pending.pop(self._key, None)


class ManualClock:
    """Clock under test control. `timers=False` behaves like a poll-only clock."""

    def __init__(self, start: datetime = T0, *, timers: bool = True):
        self.current = start
        self.timers = timers
        self.pending: dict[int, tuple[datetime, Callable[[], None]]] = {}
        self._seq = 0

    def now(self) -> datetime:
        return self.current

    def schedule(self, when: datetime, action: Callable[[], None]):
        if not self.timers:
            return None
        self._seq += 1
        self.pending[self._seq] = (when, action)
        return _Handle(self, self._seq)

    def advance(self, delta: timedelta) -> None:
        self.current += delta
        due = sorted(
            ((when, key, action) for key, (when, action) in self.pending.items() if when <= self.current),
            key=lambda t: (t[0], t[1]),
        )
        for _, key, action in due:
            self.pending.pop(key, None)
            action()


class RecordingAuditSink:
    def __init__(self):
        self.entries: list[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [e.action.value for e in self.entries]


class RecordingGateway:
    def __init__(self):
        self.sent: list[tuple[str, dict]] = []

    def send(self, kind: str, payload: dict) -> None:
        self.sent.append((kind, payload))

    def kinds(self) -> list[str]:
        return [k for k, _ in self.sent]


class FailingSink:
    def record(self, entry: AuditEntry) -> None:
        raise RuntimeError("audit store is down")

    def send(self, kind: str, payload: dict) -> None:
        raise RuntimeError("sms provider is down")


def actor(actor_id: int, role: Role, *scopes: EventScope) -> AuthorizationContext:
    return AuthorizationContext(actor_id=actor_id, role=role, scope_memberships=frozenset(scopes))


ADMIN = actor(1, Role.SUPER_ADMIN)
PASTOR = actor(2, Role.PASTOR, DEPT_1)
LEADER = actor(3, Role.DEPARTMENT_LEADER, DEPT_1)
CLOCKER = actor(4, Role.CLOCKER, DEPT_1)
MEMBER = actor(5, Role.MEMBER, DEPT_1)


def new_event(
    *,
    start: datetime = T0 + timedelta(hours=1),
    duration: timedelta = timedelta(hours=1),
    scope: EventScope = DEPT_1,
    **kwargs,
) -> NewEvent:
    kwargs.setdefault("title", "Sunday service")
    return NewEvent(start_time=start, end_time=start + duration, scope=scope, **kwargs)


def build(
    *,
    clock: Optional[ManualClock] = None,
    members: Optional[InMemoryMembers] = None,
    audit=None,
    gateway=None,
) -> Container:
    return assemble(
        events_repo=InMemoryEvents(),
        attendance_repo=InMemoryAttendance(),
        members_repo=members or InMemoryMembers(),
        clock=clock or ManualClock(),
        audit=audit or RecordingAuditSink(),
        gateway=gateway or RecordingGateway(),
    )


def force_status(container: Container, event_id: int, status: EventStatus) -> Event:
    """Put an event straight into `status`, bypassing the state machine (setup only)."""
    repo = container.events_repo
    current = repo.get_by_id(event_id)
    repo.compare_and_set_status(event_id, expected=current.status, target=status)
    return repo.get_by_id(event_id)
