from __future__ import annotations

import json
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from ..attendance.model import AttendanceSummary
from ..core.enums import EventStatus, ScopeType
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, load_json, placeholders
from .model import Event, EventScope, RecurrenceRule
from .repository import EventRepository

_EVENT_COLUMNS = """
    e.event_id, e.title, e.description, e.event_type, e.start_time, e.end_time, e.status,
    e.scope_type, e.scope_target_id, e.created_by, e.assigned_operator, e.recurrence_rule,
    e.parent_event_id, e.capacity, e.allow_walk_ins, e.auto_close_minutes, e.reminder_offsets,
    e.created_at, e.completed_at, e.closed_at, e.closed_by, e.cancelled_at, e.cancelled_by,
    e.cancellation_reason, e.summary_present, e.summary_absent, e.summary_late,
    e.summary_excused, e.summary_pending, e.summary_total, e.summary_rate
"""

_CHANGE_COLUMNS = ("completed_at", "closed_at", "closed_by", "cancelled_at", "cancelled_by", "cancellation_reason")


class MySQLEventRepository(EventRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def _hydrate(self, cur, rows: list[dict]) -> list[Event]:
        if not rows:
            return []

        ids = [int(r["event_id"]) for r in rows]
        expected: dict[int, set[int]] = {i: set() for i in ids}
        actual: dict[int, set[int]] = {i: set() for i in ids}
        sent: dict[int, set[int]] = {i: set() for i in ids}

        cur.execute(
            f"SELECT event_id, user_id, kind FROM event_participants WHERE event_id IN ({placeholders(ids)})",
            tuple(ids),
        )
        for p in fetchall(cur):
            target = expected if p["kind"] == "expected" else actual
            target[int(p["event_id"])].add(int(p["user_id"]))

        cur.execute(
            f"SELECT event_id, offset_minutes FROM event_reminders_sent WHERE event_id IN ({placeholders(ids)})",
            tuple(ids),
        )
        for s in fetchall(cur):
            sent[int(s["event_id"])].add(int(s["offset_minutes"]))

        out: list[Event] = []
        for r in rows:
            event_id = int(r["event_id"])
            rule = load_json(r.get("recurrence_rule"))
            offsets = load_json(r.get("reminder_offsets")) or []
            out.append(
                Event(
                    event_id=event_id,
                    title=r["title"],
                    description=r.get("description"),
                    event_type=r.get("event_type") or "other",
                    start_time=r["start_time"],
                    end_time=r["end_time"],
                    status=EventStatus(r["status"]),
                    scope=EventScope(ScopeType(r["scope_type"]), r.get("scope_target_id")),
                    created_by=int(r["created_by"]),
                    assigned_operator=r.get("assigned_operator"),
                    recurrence_rule=RecurrenceRule.from_dict(rule) if rule else None,
                    parent_event_id=r.get("parent_event_id"),
                    expected_participants=frozenset(expected[event_id]),
                    actual_participants=frozenset(actual[event_id]),
                    capacity=r.get("capacity"),
                    allow_walk_ins=bool(r.get("allow_walk_ins", True)),
                    auto_close_offset=timedelta(minutes=int(r["auto_close_minutes"])),
                    reminder_offsets=tuple(int(m) for m in offsets),
                    reminders_sent=frozenset(sent[event_id]),
                    created_at=r.get("created_at"),
                    completed_at=r.get("completed_at"),
                    closed_at=r.get("closed_at"),
                    closed_by=r.get("closed_by"),
                    cancelled_at=r.get("cancelled_at"),
                    cancelled_by=r.get("cancelled_by"),
                    cancellation_reason=r.get("cancellation_reason"),
                    summary=AttendanceSummary(
                        present=int(r["summary_present"]),
                        absent=int(r["summary_absent"]),
                        late=int(r["summary_late"]),
                        excused=int(r["summary_excused"]),
                        pending=int(r["summary_pending"]),
                        total=int(r["summary_total"]),
                        attendance_rate=float(Decimal(r["summary_rate"] or 0)),
                    ),
                )
            )
        return out

    def get_by_id(self, event_id: int) -> Optional[Event]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_EVENT_COLUMNS} FROM events e WHERE e.event_id=%s", (int(event_id),))
            r = fetchone(cur)
            if not r:
                return None
            return self._hydrate(cur, [r])[0]

    def insert(self, event: Event) -> Event:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO events(
                    title, description, event_type, start_time, end_time, status,
                    scope_type, scope_target_id, created_by, assigned_operator, recurrence_rule,
                    parent_event_id, capacity, allow_walk_ins, auto_close_minutes, auto_close_at,
                    reminder_offsets, created_at
                )
                VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                (
                    event.title,
                    event.description,
                    event.event_type,
                    event.start_time,
                    event.end_time,
                    event.status.value,
                    event.scope.scope_type.value,
                    event.scope.target_id,
                    event.created_by,
                    event.assigned_operator,
                    json.dumps(event.recurrence_rule.to_dict()) if event.recurrence_rule else None,
                    event.parent_event_id,
                    event.capacity,
                    1 if event.allow_walk_ins else 0,
                    int(event.auto_close_offset.total_seconds() // 60),
                    event.auto_close_at,
                    json.dumps(list(event.reminder_offsets)),
                    event.created_at or datetime.now(),
                ),
            )
            event_id = int(cur.lastrowid)
            if event.expected_participants:
                cur.executemany(
                    "INSERT IGNORE INTO event_participants(event_id, user_id, kind) VALUES(%s,%s,'expected')",
                    [(event_id, int(u)) for u in sorted(event.expected_participants)],
                )

        saved = self.get_by_id(event_id)
        if saved is None:
            raise RuntimeError(f"Event {event_id} vanished right after insert")
        return saved

    def find_instance(self, *, parent_event_id: int, start_time: datetime) -> Optional[Event]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events e WHERE e.parent_event_id=%s AND e.start_time=%s",
                (int(parent_event_id), start_time),
            )
            r = fetchone(cur)
            if not r:
                return None
            return self._hydrate(cur, [r])[0]

    def list_overlapping(
        self,
        *,
        start: datetime,
        end: datetime,
        exclude_statuses: Iterable[EventStatus] = (),
        exclude_id: Optional[int] = None,
    ) -> Sequence[Event]:
        clauses = ["e.start_time < %s", "e.end_time > %s"]
        params: list[object] = [end, start]

        statuses = [s.value for s in exclude_statuses]
        if statuses:
            clauses.append(f"e.status NOT IN ({placeholders(statuses)})")
            params.extend(statuses)
        if exclude_id is not None:
            clauses.append("e.event_id <> %s")
            params.append(int(exclude_id))

        where = " AND ".join(clauses)

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events e WHERE {where} ORDER BY e.start_time ASC, e.event_id ASC",
                tuple(params),
            )
            return self._hydrate(cur, fetchall(cur))

    def list_by_status(self, statuses: Iterable[EventStatus]) -> Sequence[Event]:
        values = [s.value for s in statuses]
        if not values:
            return []
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events e WHERE e.status IN ({placeholders(values)}) ORDER BY e.auto_close_at ASC",
                tuple(values),
            )
            return self._hydrate(cur, fetchall(cur))

    def list_instances(self, parent_event_id: int) -> Sequence[Event]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events e WHERE e.parent_event_id=%s ORDER BY e.start_time ASC",
                (int(parent_event_id),),
            )
            return self._hydrate(cur, fetchall(cur))

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
        clauses: list[str] = []
        params: list[object] = []

        if scope is not None and not scope.is_all:
            if scope.target_id is None:
                clauses.append("e.scope_type = %s")
                params.append(ScopeType.ALL.value)
            else:
                clauses.append("(e.scope_type = %s OR (e.scope_type = %s AND e.scope_target_id = %s))")
                params.extend([ScopeType.ALL.value, scope.scope_type.value, int(scope.target_id)])
        if start is not None:
            clauses.append("e.end_time > %s")
            params.append(start)
        if end is not None:
            clauses.append("e.start_time < %s")
            params.append(end)
        values = [s.value for s in statuses]
        if values:
            clauses.append(f"e.status IN ({placeholders(values)})")
            params.extend(values)
        if participant_id is not None:
            clauses.append("EXISTS (SELECT 1 FROM event_participants p WHERE p.event_id = e.event_id AND p.user_id = %s)")
            params.append(int(participant_id))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(int(limit))

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events e {where} ORDER BY e.start_time ASC, e.event_id ASC LIMIT %s",
                tuple(params),
            )
            return self._hydrate(cur, fetchall(cur))

    def compare_and_set_status(
        self,
        event_id: int,
        *,
        expected: EventStatus,
        target: EventStatus,
        changes: Optional[dict] = None,
    ) -> bool:
        changes = changes or {}
        unknown = set(changes) - set(_CHANGE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported event changes: {sorted(unknown)}")

        sets = ["status=%s"]
        params: list[object] = [target.value]
        for col in _CHANGE_COLUMNS:
            if col in changes:
                sets.append(f"{col}=%s")
                params.append(changes[col])
        params.extend([int(event_id), expected.value])

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE events SET {', '.join(sets)} WHERE event_id=%s AND status=%s",
                tuple(params),
            )
            return cur.rowcount > 0

    def add_expected_participant(self, event_id: int, user_id: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "INSERT IGNORE INTO event_participants(event_id, user_id, kind) VALUES(%s,%s,'expected')",
                (int(event_id), int(user_id)),
            )
            return cur.rowcount > 0

    def remove_expected_participant(self, event_id: int, user_id: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "DELETE FROM event_participants WHERE event_id=%s AND user_id=%s AND kind='expected'",
                (int(event_id), int(user_id)),
            )
            return cur.rowcount > 0

    def add_actual_participant(self, event_id: int, user_id: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "INSERT IGNORE INTO event_participants(event_id, user_id, kind) VALUES(%s,%s,'actual')",
                (int(event_id), int(user_id)),
            )
            return cur.rowcount > 0

    def save_summary(self, event_id: int, summary: AttendanceSummary) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE events
                SET summary_present=%s, summary_absent=%s, summary_late=%s, summary_excused=%s,
                    summary_pending=%s, summary_total=%s, summary_rate=%s
                WHERE event_id=%s
                """,
                (
                    summary.present,
                    summary.absent,
                    summary.late,
                    summary.excused,
                    summary.pending,
                    summary.total,
                    summary.attendance_rate,
                    int(event_id),
                ),
            )
            # rowcount is 0 when the values did not change; the row still exists.
            return True

    def mark_reminder_sent(self, event_id: int, offset_minutes: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "INSERT IGNORE INTO event_reminders_sent(event_id, offset_minutes) VALUES(%s,%s)",
                (int(event_id), int(offset_minutes)),
            )
            return cur.rowcount > 0

    def delete(self, event_id: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM events WHERE event_id=%s", (int(event_id),))
            return cur.rowcount > 0
