from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from ..authorization import policy
from ..authorization.context import AuthorizationContext
from ..core.constants import AUTO_ABSENT_NOTE, DEFAULT_HISTORY_LIMIT, MAX_MARK_ATTEMPTS, USER_STATS_LIMIT
from ..core.enums import AttendanceStatus, AuditAction, EventStatus, Role
from ..core.exceptions import (
    AuthorizationError,
    BusinessRuleViolation,
    CapacityExceededError,
    ConflictError,
    DomainError,
    NotFoundError,
)
from ..events.model import Event
from ..events.repository import EventRepository
from ..members.repository import MemberDirectory
from ..notifications.sinks import Notifier
from ..scheduling.clock import Clock, SystemClock
from .aggregator import AttendanceAggregator
from .model import AttendanceRecord, BulkMarkResult, Location, MarkRequest, StatusChange, UserAttendanceStats
from .repository import AttendanceRepository

logger = logging.getLogger(__name__)

_ATTENDED = (AttendanceStatus.PRESENT, AttendanceStatus.LATE)
_NEVER_MARKABLE = {
    EventStatus.DRAFT: "Event has not been published yet",
    EventStatus.PUBLISHED: "Event has not been scheduled yet",
    EventStatus.CANCELLED: "Event was cancelled",
    EventStatus.CLOSED: "Event is closed",
}


class AttendanceService:
    def __init__(
        self,
        events: EventRepository,
        attendance: AttendanceRepository,
        members: MemberDirectory,
        *,
        aggregator: AttendanceAggregator,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
    ):
        self._events = events
        self._attendance = attendance
        self._members = members
        self._aggregator = aggregator
        self._notifier = notifier or Notifier()
        self._clock = clock or SystemClock()

    def _get_event(self, event_id: int) -> Event:
        event = self._events.get_by_id(event_id)
        if not event:
            raise NotFoundError(f"Event {event_id} not found", resource_id=event_id)
        return event

    def _authorize_mark(self, actor: AuthorizationContext, event: Event, user_id: int) -> None:
        target_scopes = self._members.scopes_for(user_id) if actor.role == Role.DEPARTMENT_LEADER else ()
        if not policy.can_mark_attendance(actor, event, user_id, target_scopes):
            raise AuthorizationError(f"You are not allowed to mark attendance for user {user_id}")

    @staticmethod
    def _ensure_markable(event: Event, now: datetime) -> None:
        reason = _NEVER_MARKABLE.get(event.status)
        if reason:
            raise BusinessRuleViolation(f"Cannot mark attendance: {reason}")

        if event.status == EventStatus.UPCOMING and now < event.start_time:
            raise BusinessRuleViolation("Cannot mark attendance before the event starts")

        if event.status == EventStatus.COMPLETED and now > event.auto_close_at:
            raise BusinessRuleViolation("Late-marking window for this event has passed")

    def _admit(self, event: Event, user_id: int) -> None:
        """Let a user who is not on the list in as a walk-in, or refuse."""
        if user_id in event.participants:
            return
        if not event.allow_walk_ins:
            raise BusinessRuleViolation(f"User {user_id} is not registered and walk-ins are not allowed")
        if event.capacity is not None and len(event.participants) >= event.capacity:
            raise CapacityExceededError(event.event_id, event.capacity)
        self._events.add_actual_participant(event.event_id, user_id)

    def mark(
        self,
        event_id: int,
        user_id: int,
        status: AttendanceStatus,
        actor: AuthorizationContext,
        *,
        notes: Optional[str] = None,
        location: Optional[Location] = None,
        now: datetime | None = None,
    ) -> AttendanceRecord:
        now = now or self._clock.now()
        status = AttendanceStatus(status)

        event = self._get_event(event_id)
        self._authorize_mark(actor, event, user_id)
        self._ensure_markable(event, now)

        existing = self._attendance.get(event_id, user_id)
        if existing is None:
            self._admit(event, user_id)
            record = AttendanceRecord(
                event_id=event_id,
                user_id=user_id,
                status=status,
                marked_by=actor.actor_id,
                marked_at=now,
                notes=notes,
                location=location,
                arrival_time=now if status in _ATTENDED else None,
            )
            if self._attendance.create_if_absent(record):
                self._notifier.audit(
                    actor.actor_id, AuditAction.ATTENDANCE_MARK, event_id, user_id=user_id, status=status.value
                )
                self._aggregator.recompute(event_id)
                return self._attendance.get(event_id, user_id) or record

            # Someone else created it first; update theirs instead.
            existing = self._attendance.get(event_id, user_id)

        return self._update(existing, status, actor, notes=notes, location=location, now=now)

    def _update(
        self,
        existing: Optional[AttendanceRecord],
        status: AttendanceStatus,
        actor: AuthorizationContext,
        *,
        notes: Optional[str],
        location: Optional[Location],
        now: datetime,
    ) -> AttendanceRecord:
        for _ in range(MAX_MARK_ATTEMPTS):
            if existing is None:
                raise ConflictError("Attendance record disappeared while updating")

            change = StatusChange(
                previous_status=existing.status,
                new_status=status,
                changed_by=actor.actor_id,
                changed_at=now,
            )
            arrival = now if status in _ATTENDED and existing.arrival_time is None else None
            if self._attendance.apply_change(
                existing.event_id,
                existing.user_id,
                change=change,
                notes=notes,
                location=location,
                arrival_time=arrival,
            ):
                self._notifier.audit(
                    actor.actor_id,
                    AuditAction.ATTENDANCE_UPDATE,
                    existing.event_id,
                    user_id=existing.user_id,
                    previous_status=change.previous_status.value,
                    status=status.value,
                )
                self._aggregator.recompute(existing.event_id)
                updated = self._attendance.get(existing.event_id, existing.user_id)
                return updated or existing

            existing = self._attendance.get(existing.event_id, existing.user_id)

        raise ConflictError(
            "Attendance record is being changed concurrently, please retry",
            blocking_id=existing.event_id if existing else None,
        )

    def bulk_mark(
        self,
        event_id: int,
        rows: Iterable[MarkRequest],
        actor: AuthorizationContext,
        *,
        rejected: Iterable[dict] = (),
        now: datetime | None = None,
    ) -> BulkMarkResult:
        """Mark each row independently; a failing row never aborts the batch.

        `rejected` carries rows the caller could not even parse, already in
        the `failed` entry shape; they are reported alongside the rest.
        """
        now = now or self._clock.now()
        self._get_event(event_id)

        result = BulkMarkResult(failed=list(rejected))
        for row in rows:
            try:
                existed = self._attendance.get(event_id, row.user_id) is not None
                record = self.mark(
                    event_id,
                    row.user_id,
                    row.status,
                    actor,
                    notes=row.notes,
                    location=row.location,
                    now=now,
                )
            except DomainError as e:
                result.failed.append({"user_id": row.user_id, "error": e.code, "message": str(e)})
                continue

            entry = {"user_id": record.user_id, "status": record.status.value}
            (result.updated if existed else result.successful).append(entry)

        self._notifier.audit(
            actor.actor_id,
            AuditAction.ATTENDANCE_BULK_MARK,
            event_id,
            successful=len(result.successful),
            updated=len(result.updated),
            failed=len(result.failed),
        )
        return result

    def mark_unmarked_as_absent(
        self,
        event_id: int,
        actor: AuthorizationContext,
        *,
        now: datetime | None = None,
    ) -> int:
        """Create absent records for expected participants nobody marked.

        Runs at closure, so the markable window is not checked. Returns how
        many records were created; a second run creates none.
        """
        now = now or self._clock.now()
        event = self._get_event(event_id)
        if not policy.can_modify_event(actor, event):
            raise AuthorizationError("You are not allowed to close attendance for this event")

        created = 0
        for user_id in sorted(event.expected_participants):
            record = AttendanceRecord(
                event_id=event_id,
                user_id=user_id,
                status=AttendanceStatus.ABSENT,
                marked_by=actor.actor_id,
                marked_at=now,
                notes=AUTO_ABSENT_NOTE,
                auto_marked=True,
            )
            if self._attendance.create_if_absent(record):
                created += 1

        if created:
            logger.info("Auto-marked %s participant(s) absent for event %s", created, event_id)
            self._notifier.audit(actor.actor_id, AuditAction.ATTENDANCE_AUTO_ABSENT, event_id, count=created)
            self._aggregator.recompute(event_id)
        return created

    def get_record(self, event_id: int, user_id: int) -> AttendanceRecord:
        record = self._attendance.get(event_id, user_id)
        if not record:
            raise NotFoundError(f"No attendance for user {user_id} at event {event_id}", resource_id=event_id)
        return record

    def list_for_event(self, event_id: int) -> list[AttendanceRecord]:
        self._get_event(event_id)
        return list(self._attendance.list_for_event(event_id))

    def _authorize_view(self, actor: AuthorizationContext, user_id: int) -> None:
        target_scopes = self._members.scopes_for(user_id) if actor.role == Role.DEPARTMENT_LEADER else ()
        if not policy.can_view_user_attendance(actor, user_id, target_scopes):
            raise AuthorizationError(f"You are not allowed to view attendance of user {user_id}")

    def history_for_user(
        self,
        user_id: int,
        actor: AuthorizationContext,
        *,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[AttendanceRecord]:
        self._authorize_view(actor, user_id)
        return list(self._attendance.list_for_user(user_id, limit=int(limit)))

    def user_statistics(
        self,
        user_id: int,
        actor: AuthorizationContext,
        *,
        limit: int = USER_STATS_LIMIT,
    ) -> UserAttendanceStats:
        self._authorize_view(actor, user_id)
        records = sorted(self._attendance.list_for_user(user_id, limit=int(limit)), key=lambda r: r.marked_at)

        counts = {s: 0 for s in AttendanceStatus}
        longest = run = 0
        for r in records:
            counts[r.status] += 1
            if r.status in _ATTENDED:
                run += 1
                longest = max(longest, run)
            elif r.status == AttendanceStatus.ABSENT:
                run = 0
            # excused and pending neither extend nor break a streak

        total = len(records)
        attended = counts[AttendanceStatus.PRESENT] + counts[AttendanceStatus.LATE]
        return UserAttendanceStats(
            user_id=user_id,
            total=total,
            present=counts[AttendanceStatus.PRESENT],
            late=counts[AttendanceStatus.LATE],
            absent=counts[AttendanceStatus.ABSENT],
            excused=counts[AttendanceStatus.EXCUSED],
            attendance_rate=round(attended / total * 100, 2) if total else 0.0,
            current_streak=run,
            longest_streak=longest,
        )
