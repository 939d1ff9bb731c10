from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Roles used for authorization, ordered from least to most privileged."""

    MEMBER = "member"
    CLOCKER = "clocker"
    DEPARTMENT_LEADER = "department-leader"
    PASTOR = "pastor"
    ASSOCIATE_PASTOR = "associate-pastor"
    SENIOR_PASTOR = "senior-pastor"
    SUPER_ADMIN = "super-admin"

    @property
    def rank(self) -> int:
        return _ROLE_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank >= other.rank


_ROLE_ORDER = tuple(Role)


class EventStatus(str, Enum):
    """Lifecycle states of an event. CLOSED is terminal."""

    DRAFT = "draft"
    PUBLISHED = "published"
    UPCOMING = "upcoming"
    STARTED = "started"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CLOSED = "closed"


class ScopeType(str, Enum):
    """Organizational target an event is restricted to."""

    DEPARTMENT = "department"
    MINISTRY = "ministry"
    PRAYER_TRIBE = "prayer-tribe"
    SUBGROUP = "subgroup"
    CUSTOM = "custom"
    ALL = "all"


class AttendanceStatus(str, Enum):
    """Per-participant attendance state stored on a record."""

    PENDING = "pending"
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"


class AuditAction(str, Enum):
    EVENT_CREATE = "event.create"
    EVENT_TRANSITION = "event.transition"
    EVENT_CANCEL = "event.cancel"
    EVENT_DELETE = "event.delete"
    EVENT_PARTICIPANT_ADD = "event.participant_add"
    EVENT_PARTICIPANT_REMOVE = "event.participant_remove"
    EVENT_PARTICIPANTS_POPULATE = "event.participants_populate"
    ATTENDANCE_MARK = "attendance.mark"
    ATTENDANCE_UPDATE = "attendance.update"
    ATTENDANCE_BULK_MARK = "attendance.bulk_mark"
    ATTENDANCE_AUTO_ABSENT = "attendance.auto_absent"
