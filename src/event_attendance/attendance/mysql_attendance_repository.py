from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from ..core.enums import AttendanceStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, placeholders
from .model import AttendanceRecord, Location, StatusChange
from .repository import AttendanceRepository

_RECORD_COLUMNS = """
    event_id, user_id, status, marked_by, marked_at, notes,
    latitude, longitude, accuracy, arrival_time, auto_marked
"""


class MySQLAttendanceRepository(AttendanceRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def _hydrate(self, cur, rows: list[dict]) -> list[AttendanceRecord]:
        if not rows:
            return []

        event_ids = sorted({int(r["event_id"]) for r in rows})
        cur.execute(
            f"""
            SELECT event_id, user_id, previous_status, new_status, changed_by, changed_at
            FROM attendance_history
            WHERE event_id IN ({placeholders(event_ids)})
            ORDER BY history_id ASC
            """,
            tuple(event_ids),
        )
        history: dict[tuple[int, int], list[StatusChange]] = {}
        for h in fetchall(cur):
            history.setdefault((int(h["event_id"]), int(h["user_id"])), []).append(
                StatusChange(
                    previous_status=AttendanceStatus(h["previous_status"]),
                    new_status=AttendanceStatus(h["new_status"]),
                    changed_by=int(h["changed_by"]),
                    changed_at=h["changed_at"],
                )
            )

        out: list[AttendanceRecord] = []
        for r in rows:
            key = (int(r["event_id"]), int(r["user_id"]))
            location = None
            if r.get("latitude") is not None and r.get("longitude") is not None:
                location = Location(
                    latitude=float(r["latitude"]),
                    longitude=float(r["longitude"]),
                    accuracy=float(r["accuracy"]) if r.get("accuracy") is not None else None,
                )
            out.append(
                AttendanceRecord(
                    event_id=key[0],
                    user_id=key[1],
                    status=AttendanceStatus(r["status"]),
                    marked_by=int(r["marked_by"]),
                    marked_at=r["marked_at"],
                    notes=r.get("notes"),
                    location=location,
                    arrival_time=r.get("arrival_time"),
                    auto_marked=bool(r.get("auto_marked")),
                    history=tuple(history.get(key, ())),
                )
            )
        return out

    def get(self, event_id: int, user_id: int) -> Optional[AttendanceRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE event_id=%s AND user_id=%s",
                (int(event_id), int(user_id)),
            )
            r = fetchone(cur)
            if not r:
                return None
            return self._hydrate(cur, [r])[0]

    def list_for_event(self, event_id: int) -> Sequence[AttendanceRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE event_id=%s ORDER BY user_id ASC",
                (int(event_id),),
            )
            return self._hydrate(cur, fetchall(cur))

    def list_for_user(self, user_id: int, *, limit: int) -> Sequence[AttendanceRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_RECORD_COLUMNS}
                FROM attendance_records
                WHERE user_id=%s
                ORDER BY marked_at DESC
                LIMIT %s
                """,
                (int(user_id), int(limit)),
            )
            return self._hydrate(cur, fetchall(cur))

    def count_for_event(self, event_id: int) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT COUNT(*) AS n FROM attendance_records WHERE event_id=%s", (int(event_id),))
            r = fetchone(cur)
            return int(r["n"]) if r else 0

    def status_counts(self, event_id: int) -> dict[AttendanceStatus, int]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT status, COUNT(*) AS n FROM attendance_records WHERE event_id=%s GROUP BY status",
                (int(event_id),),
            )
            return {AttendanceStatus(r["status"]): int(r["n"]) for r in fetchall(cur)}

    def create_if_absent(self, record: AttendanceRecord) -> bool:
        loc = record.location
        with db_cursor(self._conn_factory) as (_, cur):
            # INSERT IGNORE relies on the (event_id, user_id) primary key.
            cur.execute(
                """
                INSERT IGNORE INTO attendance_records(
                    event_id, user_id, status, marked_by, marked_at, notes,
                    latitude, longitude, accuracy, arrival_time, auto_marked
                )
                VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                (
                    record.event_id,
                    record.user_id,
                    record.status.value,
                    record.marked_by,
                    record.marked_at,
                    record.notes,
                    loc.latitude if loc else None,
                    loc.longitude if loc else None,
                    loc.accuracy if loc else None,
                    record.arrival_time,
                    1 if record.auto_marked else 0,
                ),
            )
            return cur.rowcount > 0

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
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE attendance_records
                SET status=%s, marked_by=%s, marked_at=%s,
                    notes=COALESCE(%s, notes),
                    latitude=COALESCE(%s, latitude),
                    longitude=COALESCE(%s, longitude),
                    accuracy=COALESCE(%s, accuracy),
                    arrival_time=COALESCE(arrival_time, %s),
                    auto_marked=0
                WHERE event_id=%s AND user_id=%s AND status=%s
                """,
                (
                    change.new_status.value,
                    change.changed_by,
                    change.changed_at,
                    notes,
                    location.latitude if location else None,
                    location.longitude if location else None,
                    location.accuracy if location else None,
                    arrival_time,
                    int(event_id),
                    int(user_id),
                    change.previous_status.value,
                ),
            )
            if cur.rowcount <= 0:
                return False

            cur.execute(
                """
                INSERT INTO attendance_history(event_id, user_id, previous_status, new_status, changed_by, changed_at)
                VALUES(%s,%s,%s,%s,%s,%s)
                """,
                (
                    int(event_id),
                    int(user_id),
                    change.previous_status.value,
                    change.new_status.value,
                    change.changed_by,
                    change.changed_at,
                ),
            )
            return True
