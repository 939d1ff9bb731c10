from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..core.enums import AttendanceStatus


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


@dataclass(frozen=True)
class StatusChange:
    """One append-only history entry of an attendance record."""

    previous_status: AttendanceStatus
    new_status: AttendanceStatus
    changed_by: int
    changed_at: datetime


@dataclass(frozen=True)
class AttendanceRecord:
    """Domain entity: attendance of one user at one event.

    Identity is the (event_id, user_id) pair; records are transitioned in place,
    never deleted.
    """

    event_id: int
    user_id: int
    status: AttendanceStatus
    marked_by: int
    marked_at: datetime
    notes: Optional[str] = None
    location: Optional[Location] = None
    arrival_time: Optional[datetime] = None
    auto_marked: bool = False
    history: tuple[StatusChange, ...] = ()

    @property
    def key(self) -> tuple[int, int]:
        return (self.event_id, self.user_id)

    def to_dict(self) -> dict:
        loc = self.location
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "marked_by": self.marked_by,
            "marked_at": self.marked_at.isoformat(),
            "notes": self.notes,
            "location": (
                {"latitude": loc.latitude, "longitude": loc.longitude, "accuracy": loc.accuracy} if loc else None
            ),
            "arrival_time": self.arrival_time.isoformat() if self.arrival_time else None,
            "auto_marked": self.auto_marked,
            "history": [
                {
                    "previous_status": h.previous_status.value,
                    "new_status": h.new_status.value,
                    "changed_by": h.changed_by,
                    "changed_at": h.changed_at.isoformat(),
                }
                for h in self.history
            ],
        }


@dataclass(frozen=True)
class AttendanceSummary:
    """Read cache of per-status counts written onto an event."""

    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0
    pending: int = 0
    total: int = 0
    attendance_rate: float = 0.0

    @classmethod
    def from_counts(cls, counts: dict[AttendanceStatus, int]) -> "AttendanceSummary":
        present = int(counts.get(AttendanceStatus.PRESENT, 0))
        late = int(counts.get(AttendanceStatus.LATE, 0))
        total = sum(int(v) for v in counts.values())
        rate = round((present + late) / total * 100, 2) if total else 0.0
        return cls(
            present=present,
            absent=int(counts.get(AttendanceStatus.ABSENT, 0)),
            late=late,
            excused=int(counts.get(AttendanceStatus.EXCUSED, 0)),
            pending=int(counts.get(AttendanceStatus.PENDING, 0)),
            total=total,
            attendance_rate=rate,
        )

    def to_dict(self) -> dict:
        return {
            "present": self.present,
            "absent": self.absent,
            "late": self.late,
            "excused": self.excused,
            "pending": self.pending,
            "total": self.total,
            "attendance_rate": self.attendance_rate,
        }


@dataclass(frozen=True)
class MarkRequest:
    """One row of a bulk marking request."""

    user_id: int
    status: AttendanceStatus
    notes: Optional[str] = None
    location: Optional[Location] = None


@dataclass
class BulkMarkResult:
    successful: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    updated: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"successful": self.successful, "failed": self.failed, "updated": self.updated}


@dataclass(frozen=True)
class UserAttendanceStats:
    user_id: int
    total: int
    present: int
    late: int
    absent: int
    excused: int
    attendance_rate: float
    current_streak: int
    longest_streak: int

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "total": self.total,
            "present": self.present,
            "late": self.late,
            "absent": self.absent,
            "excused": self.excused,
            "attendance_rate": self.attendance_rate,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
        }
