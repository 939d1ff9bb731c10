from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional, Protocol

from ..attendance.aggregator import AttendanceAggregator
from ..attendance.model import AttendanceSummary
from ..attendance.repository import AttendanceRepository
from ..attendance.service import AttendanceService
from ..authorization import policy
from ..authorization.context import AuthorizationContext
from ..common.validators import require_non_empty, require_positive, require_time_range
from ..core.constants import DEFAULT_AUTO_CLOSE_HOURS, DEFAULT_EVENT_LIST_LIMIT
from ..core.enums import AuditAction, EventStatus, Role, ScopeType
from ..core.exceptions import (
    AuthorizationError,
    BusinessRuleViolation,
    CapacityExceededError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from ..members.repository import MemberDirectory
from ..notifications.model import NotificationKind
from ..notifications.sinks import Notifier
from ..scheduling.clock import Clock, SystemClock
from .conflicts import ConflictDetector
from .model import Event, EventScope, EventStatistics, NewEvent
from .recurrence import RecurrenceExpander
from .repository import EventRepository

logger = logging.getLogger(__name__)

TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.PUBLISHED, EventStatus.CANCELLED}),
    EventStatus.PUBLISHED: frozenset({EventStatus.UPCOMING, EventStatus.CANCELLED}),
    EventStatus.UPCOMING: frozenset(
        {EventStatus.STARTED, EventStatus.ACTIVE, EventStatus.COMPLETED, EventStatus.CANCELLED}
    ),
    EventStatus.STARTED: frozenset({EventStatus.ACTIVE, EventStatus.COMPLETED, EventStatus.CANCELLED}),
    EventStatus.ACTIVE: frozenset({EventStatus.COMPLETED, EventStatus.CANCELLED}),
    EventStatus.COMPLETED: frozenset({EventStatus.CLOSED}),
    EventStatus.CANCELLED: frozenset({EventStatus.CLOSED}),
    EventStatus.CLOSED: frozenset(),
}

_STATUS_ORDER = tuple(EventStatus)
_REGISTRATION_LATE_STATUSES = (EventStatus.STARTED, EventStatus.ACTIVE)


def allowed_transitions(status: EventStatus) -> tuple[EventStatus, ...]:
    return tuple(sorted(TRANSITIONS.get(status, frozenset()), key=_STATUS_ORDER.index))


class ClosureScheduling(Protocol):
    def arm(self, event: Event) -> bool:
        raise NotImplementedError

    def disarm(self, event_id: int) -> bool:
        raise NotImplementedError


class EventService:
    """Owns the event status state machine.

    Every status write is compare-and-set against the status read just
    before it, so two actors racing on the same event cannot both win.
    """

    def __init__(
        self,
        events: EventRepository,
        attendance: AttendanceRepository,
        *,
        recorder: AttendanceService,
        members: MemberDirectory,
        aggregator: AttendanceAggregator,
        conflicts: ConflictDetector | None = None,
        expander: RecurrenceExpander | None = None,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
        default_auto_close: timedelta = timedelta(hours=DEFAULT_AUTO_CLOSE_HOURS),
    ):
        self._events = events
        self._attendance = attendance
        self._recorder = recorder
        self._members = members
        self._aggregator = aggregator
        self._conflicts = conflicts or ConflictDetector(events)
        self._expander = expander or RecurrenceExpander()
        self._notifier = notifier or Notifier()
        self._clock = clock or SystemClock()
        self._default_auto_close = default_auto_close
        self._scheduler: Optional[ClosureScheduling] = None

    def bind_scheduler(self, scheduler: ClosureScheduling) -> None:
        self._scheduler = scheduler

    def _arm(self, event: Event) -> None:
        if self._scheduler and event.status not in (EventStatus.DRAFT, EventStatus.CANCELLED, EventStatus.CLOSED):
            self._scheduler.arm(event)

    def _disarm(self, event_id: int) -> None:
        if self._scheduler:
            self._scheduler.disarm(event_id)

    def get(self, event_id: int) -> Event:
        event = self._events.get_by_id(event_id)
        if not event:
            raise NotFoundError(f"Event {event_id} not found", resource_id=event_id)
        return event

    def _ensure_can_modify(self, actor: AuthorizationContext, event: Event) -> None:
        if not policy.can_modify_event(actor, event):
            raise AuthorizationError(f"You are not allowed to modify event {event.event_id}")

    # ---- creation ---------------------------------------------------------

    def _validate_new(self, data: NewEvent, actor: AuthorizationContext, now: datetime) -> None:
        require_non_empty(data.title, "title")
        require_time_range(data.start_time, data.end_time)

        if data.start_time <= now and not policy.can_backdate_event(actor.role):
            raise ValidationError("Event start time must be in the future")

        if data.scope is None:
            raise ValidationError("Event scope is required")
        if data.scope.scope_type not in (ScopeType.ALL, ScopeType.CUSTOM) and data.scope.target_id is None:
            raise ValidationError(f"A {data.scope.scope_type.value} event needs a target id")

        if data.capacity is not None:
            require_positive(data.capacity, "capacity")
            if len(data.expected_participants) > data.capacity:
                raise CapacityExceededError(0, data.capacity)

        if data.auto_close_offset is not None and data.auto_close_offset < timedelta(0):
            raise ValidationError("Auto-close offset cannot be negative")

        if data.recurrence_rule is not None:
            require_positive(data.recurrence_rule.interval, "recurrence interval")
            if data.recurrence_rule.count is not None:
                require_positive(data.recurrence_rule.count, "recurrence count")
            if any(d < 0 or d > 6 for d in data.recurrence_rule.days_of_week):
                raise ValidationError("Recurrence days of week must be between 0 (Monday) and 6 (Sunday)")

    def create(self, data: NewEvent, actor: AuthorizationContext, *, now: datetime | None = None) -> Event:
        now = now or self._clock.now()
        self._validate_new(data, actor, now)

        if not policy.can_create_event(actor.role):
            raise AuthorizationError("Your role cannot create events")
        if not policy.can_create_in_scope(actor, data.scope):
            raise AuthorizationError("You can only create events for groups you belong to")

        self._conflicts.ensure_free(data.start_time, data.end_time, data.scope)

        draft = Event(
            event_id=0,
            title=data.title.strip(),
            description=data.description,
            event_type=data.event_type,
            start_time=data.start_time,
            end_time=data.end_time,
            status=EventStatus.DRAFT if data.as_draft else EventStatus.UPCOMING,
            scope=data.scope,
            created_by=actor.actor_id,
            assigned_operator=data.assigned_operator,
            recurrence_rule=data.recurrence_rule,
            expected_participants=frozenset(data.expected_participants),
            capacity=data.capacity,
            allow_walk_ins=data.allow_walk_ins,
            auto_close_offset=data.auto_close_offset if data.auto_close_offset is not None else self._default_auto_close,
            reminder_offsets=tuple(sorted(set(data.reminder_offsets), reverse=True)),
            created_at=now,
        )
        event = self._events.insert(draft)
        logger.info("Event %s created by %s (%s)", event.event_id, actor.actor_id, event.status.value)
        self._notifier.audit(
            actor.actor_id,
            AuditAction.EVENT_CREATE,
            event.event_id,
            title=event.title,
            start_time=event.start_time.isoformat(),
            scope=event.scope.scope_type.value,
        )

        if event.is_recurring:
            self._persist_instances(event)
        self._arm(event)
        return event

    def _persist_instances(self, parent: Event) -> list[Event]:
        if parent.recurrence_rule is None:
            return []

        occurrences = self._expander.expand(
            base_start=parent.start_time,
            duration=parent.duration,
            rule=parent.recurrence_rule,
        )
        created: list[Event] = []
        for occ in occurrences:
            if self._events.find_instance(parent_event_id=parent.event_id, start_time=occ.start_time):
                continue
            instance = replace(
                parent,
                event_id=0,
                start_time=occ.start_time,
                end_time=occ.end_time,
                recurrence_rule=None,
                parent_event_id=parent.event_id,
                actual_participants=frozenset(),
                reminders_sent=frozenset(),
                summary=AttendanceSummary(),
                completed_at=None,
                closed_at=None,
                closed_by=None,
                cancelled_at=None,
                cancelled_by=None,
                cancellation_reason=None,
            )
            saved = self._events.insert(instance)
            self._arm(saved)
            created.append(saved)

        if created:
            logger.info("Generated %s instance(s) for recurring event %s", len(created), parent.event_id)
        return created

    def expand_recurrence(self, event_id: int, actor: AuthorizationContext) -> list[Event]:
        """Re-run expansion for a recurring event; only missing instances are inserted."""
        event = self.get(event_id)
        self._ensure_can_modify(actor, event)
        if not event.is_recurring:
            raise ValidationError(f"Event {event_id} has no recurrence rule")
        return self._persist_instances(event)

    def instances(self, event_id: int) -> list[Event]:
        self.get(event_id)
        return list(self._events.list_instances(event_id))

    # ---- queries ----------------------------------------------------------

    def list_events(
        self,
        actor: AuthorizationContext,
        *,
        scope: Optional[EventScope] = None,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: tuple[EventStatus, ...] = (),
        participant_id: Optional[int] = None,
        limit: int = DEFAULT_EVENT_LIST_LIMIT,
    ) -> list[Event]:
        """Calendar query by scope, time window, status and participant."""
        if start is not None and end is not None:
            require_time_range(start, end)
        require_positive(limit, "limit")

        if participant_id is not None:
            target_scopes = (
                self._members.scopes_for(participant_id) if actor.role == Role.DEPARTMENT_LEADER else ()
            )
            if not policy.can_view_user_attendance(actor, participant_id, target_scopes):
                raise AuthorizationError(f"You are not allowed to list events of user {participant_id}")

        return list(
            self._events.list_events(
                scope=scope,
                start=start,
                end=end,
                statuses=statuses,
                participant_id=participant_id,
                limit=int(limit),
            )
        )

    # ---- lifecycle --------------------------------------------------------

    def transition(
        self,
        event_id: int,
        target: EventStatus,
        actor: AuthorizationContext,
        *,
        now: datetime | None = None,
    ) -> Event:
        now = now or self._clock.now()
        event = self.get(event_id)
        self._ensure_can_modify(actor, event)
        return self._apply_transition(event, EventStatus(target), actor, now=now)

    def _apply_transition(
        self,
        event: Event,
        target: EventStatus,
        actor: AuthorizationContext,
        *,
        now: datetime,
        reason: Optional[str] = None,
    ) -> Event:
        if target not in TRANSITIONS.get(event.status, frozenset()):
            raise InvalidTransitionError(event.status, target, allowed_transitions(event.status))

        changes: dict = {}
        if target == EventStatus.COMPLETED:
            changes["completed_at"] = now
        elif target == EventStatus.CANCELLED:
            changes.update(cancelled_at=now, cancelled_by=actor.actor_id, cancellation_reason=reason)
        elif target == EventStatus.CLOSED:
            changes.update(closed_at=now, closed_by=actor.actor_id)

        if not self._events.compare_and_set_status(
            event.event_id, expected=event.status, target=target, changes=changes
        ):
            raise StaleStateError(event.event_id, event.status, target)

        logger.info("Event %s: %s -> %s by %s", event.event_id, event.status.value, target.value, actor.actor_id)
        self._notifier.audit(
            actor.actor_id,
            AuditAction.EVENT_TRANSITION,
            event.event_id,
            previous_status=event.status.value,
            status=target.value,
        )

        if target == EventStatus.CLOSED:
            # A cancelled event never took place; nobody is marked absent for it.
            if event.status == EventStatus.COMPLETED:
                self._recorder.mark_unmarked_as_absent(event.event_id, actor, now=now)
            summary = self._aggregator.finalize(event.event_id)
            self._disarm(event.event_id)
            self._notifier.notify(
                NotificationKind.EVENT_CLOSED,
                event_id=event.event_id,
                title=event.title,
                summary=summary.to_dict(),
            )
        elif target == EventStatus.CANCELLED:
            self._disarm(event.event_id)

        return self.get(event.event_id)

    def cancel(
        self,
        event_id: int,
        actor: AuthorizationContext,
        reason: Optional[str] = None,
        *,
        now: datetime | None = None,
    ) -> Event:
        now = now or self._clock.now()
        event = self.get(event_id)
        self._ensure_can_modify(actor, event)
        if event.status == EventStatus.CANCELLED:
            raise BusinessRuleViolation(f"Event {event_id} is already cancelled")

        cancelled = self._apply_transition(event, EventStatus.CANCELLED, actor, now=now, reason=reason)
        self._notifier.audit(actor.actor_id, AuditAction.EVENT_CANCEL, event_id, reason=reason)
        return cancelled

    def cancel_or_delete(
        self,
        event_id: int,
        actor: AuthorizationContext,
        *,
        now: datetime | None = None,
    ) -> Optional[Event]:
        """Hard-delete an untouched UPCOMING event, otherwise cancel it.

        Returns None when the event was deleted, or the cancelled event.
        """
        now = now or self._clock.now()
        event = self.get(event_id)
        has_attendance = self._attendance.count_for_event(event_id) > 0

        if event.status == EventStatus.UPCOMING and not has_attendance:
            if not policy.can_delete_event(actor, event, has_attendance):
                raise AuthorizationError(f"You are not allowed to delete event {event_id}")
            self._disarm(event_id)
            if not self._events.delete(event_id):
                raise NotFoundError(f"Event {event_id} not found", resource_id=event_id)
            logger.info("Event %s deleted by %s", event_id, actor.actor_id)
            self._notifier.audit(actor.actor_id, AuditAction.EVENT_DELETE, event_id, title=event.title)
            return None

        return self.cancel(event_id, actor, "cancelled instead of deleted", now=now)

    # ---- participants -----------------------------------------------------

    def register_participant(self, event_id: int, user_id: int, actor: AuthorizationContext) -> Event:
        event = self.get(event_id)
        if not policy.can_register_participant(actor, event, user_id):
            raise AuthorizationError(f"You are not allowed to register user {user_id}")

        if not policy.is_open_for_registration(event):
            late_ok = event.status in _REGISTRATION_LATE_STATUSES and policy.can_register_outside_upcoming(actor.role)
            if not late_ok:
                raise BusinessRuleViolation(f"Registration is closed for event {event_id} ({event.status.value})")

        if user_id in event.expected_participants:
            raise ConflictError(f"User {user_id} is already registered for event {event_id}", blocking_id=event_id)
        if event.capacity is not None and len(event.participants) >= event.capacity:
            raise CapacityExceededError(event_id, event.capacity)

        if not self._events.add_expected_participant(event_id, user_id):
            raise ConflictError(f"User {user_id} is already registered for event {event_id}", blocking_id=event_id)

        self._notifier.audit(actor.actor_id, AuditAction.EVENT_PARTICIPANT_ADD, event_id, user_id=user_id)
        return self.get(event_id)

    def unregister_participant(self, event_id: int, user_id: int, actor: AuthorizationContext) -> Event:
        event = self.get(event_id)
        if not policy.can_register_participant(actor, event, user_id):
            raise AuthorizationError(f"You are not allowed to unregister user {user_id}")
        if not policy.is_open_for_registration(event):
            raise BusinessRuleViolation(f"Registration is closed for event {event_id} ({event.status.value})")
        if user_id not in event.expected_participants:
            raise NotFoundError(f"User {user_id} is not registered for event {event_id}", resource_id=event_id)

        self._events.remove_expected_participant(event_id, user_id)
        self._notifier.audit(actor.actor_id, AuditAction.EVENT_PARTICIPANT_REMOVE, event_id, user_id=user_id)
        return self.get(event_id)

    def populate_participants(self, event_id: int, actor: AuthorizationContext) -> Event:
        """Add every member of the event's scope to its expected participants.

        All-or-nothing against capacity; members already on the list are
        skipped, so running it twice adds nobody the second time.
        """
        event = self.get(event_id)
        self._ensure_can_modify(actor, event)
        if event.scope.scope_type == ScopeType.CUSTOM:
            raise ValidationError("Custom events have no group to take participants from")
        if not policy.is_open_for_registration(event):
            late_ok = event.status in _REGISTRATION_LATE_STATUSES and policy.can_register_outside_upcoming(actor.role)
            if not late_ok:
                raise BusinessRuleViolation(f"Registration is closed for event {event_id} ({event.status.value})")

        newcomers = sorted(self._members.members_of(event.scope) - event.participants)
        if event.capacity is not None and len(event.participants) + len(newcomers) > event.capacity:
            raise CapacityExceededError(event_id, event.capacity)

        added = [u for u in newcomers if self._events.add_expected_participant(event_id, u)]
        if added:
            logger.info("Added %s member(s) of %s to event %s", len(added), event.scope.scope_type.value, event_id)
            self._notifier.audit(
                actor.actor_id, AuditAction.EVENT_PARTICIPANTS_POPULATE, event_id, count=len(added)
            )
        return self.get(event_id)

    def statistics(self, event_id: int) -> EventStatistics:
        event = self.get(event_id)
        return EventStatistics(
            event_id=event.event_id,
            title=event.title,
            expected_participants=len(event.expected_participants),
            summary=self._aggregator.compute(event_id),
        )
