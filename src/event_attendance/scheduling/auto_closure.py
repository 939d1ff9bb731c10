"""Time-driven progression of events.

Timers only speed things up: correctness comes from `sweep()`, which is run
at startup (timers do not survive a restart), by cron in poll mode, and is
safe to repeat. Every action reloads the event instead of trusting the
snapshot it was armed with.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..attendance.service import AttendanceService
from ..authorization.context import SYSTEM_ACTOR, AuthorizationContext
from ..core.enums import EventStatus
from ..core.exceptions import InvalidTransitionError, StaleStateError
from ..events.model import Event
from ..events.repository import EventRepository
from ..events.service import EventService
from ..notifications.model import NotificationKind
from ..notifications.sinks import Notifier
from .clock import Clock, SystemClock, TimerHandle

logger = logging.getLogger(__name__)

OPEN_STATUSES = (EventStatus.UPCOMING, EventStatus.STARTED, EventStatus.ACTIVE)
SWEPT_STATUSES = OPEN_STATUSES + (EventStatus.COMPLETED,)


@dataclass
class SweepReport:
    closed: list[int] = field(default_factory=list)
    activated: list[int] = field(default_factory=list)
    reminders: list[tuple[int, int]] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "closed": self.closed,
            "activated": self.activated,
            "reminders": [{"event_id": e, "offset_minutes": m} for e, m in self.reminders],
            "failed": self.failed,
        }


class AutoClosureScheduler:
    def __init__(
        self,
        events: EventRepository,
        lifecycle: EventService,
        recorder: AttendanceService,
        *,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        actor: AuthorizationContext = SYSTEM_ACTOR,
    ):
        self._events = events
        self._lifecycle = lifecycle
        self._recorder = recorder
        self._clock = clock or SystemClock()
        self._notifier = notifier or Notifier()
        self._actor = actor
        self._handles: dict[int, TimerHandle] = {}
        self._lock = threading.Lock()

    # ---- timers -----------------------------------------------------------

    def arm(self, event: Event) -> bool:
        """Schedule closure at `auto_close_at`; False in poll mode or for finished events."""
        if event.status in (EventStatus.CLOSED, EventStatus.CANCELLED):
            return False

        event_id = event.event_id
        handle = self._clock.schedule(event.auto_close_at, lambda: self._fire(event_id))
        if handle is None:
            return False

        with self._lock:
            previous = self._handles.pop(event_id, None)
            self._handles[event_id] = handle
        if previous is not None:
            previous.cancel()
        return True

    def disarm(self, event_id: int) -> bool:
        with self._lock:
            handle = self._handles.pop(event_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def armed(self) -> list[int]:
        with self._lock:
            return sorted(self._handles)

    def stop(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.cancel()

    def _fire(self, event_id: int) -> None:
        with self._lock:
            self._handles.pop(event_id, None)
        try:
            self.close_event(event_id)
        except Exception:
            logger.exception("Auto-closure failed for event %s", event_id)

    # ---- closure ----------------------------------------------------------

    def close_event(self, event_id: int, *, now: datetime | None = None) -> bool:
        """Drive one overdue event to CLOSED. Returns True if this call closed it."""
        now = now or self._clock.now()
        event = self._events.get_by_id(event_id)
        if event is None or event.status not in SWEPT_STATUSES:
            return False

        if now < event.auto_close_at:
            # Fired early (clock skew); try again at the right time.
            self.arm(event)
            return False

        try:
            if event.status in OPEN_STATUSES:
                self._lifecycle.transition(event_id, EventStatus.COMPLETED, self._actor, now=now)
                self._recorder.mark_unmarked_as_absent(event_id, self._actor, now=now)
            self._lifecycle.transition(event_id, EventStatus.CLOSED, self._actor, now=now)
        except (StaleStateError, InvalidTransitionError) as e:
            # Another actor moved the event after it was read here.
            logger.info("Event %s changed during auto-closure, leaving it: %s", event_id, e)
            return False

        logger.info("Event %s auto-closed", event_id)
        return True

    def _activate(self, event_id: int, now: datetime) -> bool:
        try:
            self._lifecycle.transition(event_id, EventStatus.ACTIVE, self._actor, now=now)
        except (StaleStateError, InvalidTransitionError) as e:
            logger.info("Event %s changed before activation, leaving it: %s", event_id, e)
            return False
        return True

    def _send_due_reminders(self, event: Event, now: datetime, report: SweepReport) -> None:
        if now >= event.start_time:
            return
        for offset in event.reminder_offsets:
            if offset in event.reminders_sent:
                continue
            if now < event.start_time - timedelta(minutes=offset):
                continue
            if not self._events.mark_reminder_sent(event.event_id, offset):
                continue
            self._notifier.notify(
                NotificationKind.EVENT_REMINDER_DUE,
                event_id=event.event_id,
                title=event.title,
                start_time=event.start_time.isoformat(),
                minutes_before=offset,
                participants=sorted(event.expected_participants),
            )
            report.reminders.append((event.event_id, offset))

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Reconcile every live event with the current time.

        A failure on one event is logged and recorded; the rest still run.
        """
        now = now or self._clock.now()
        report = SweepReport()

        for event in self._events.list_by_status(SWEPT_STATUSES):
            try:
                if now >= event.auto_close_at:
                    if self.close_event(event.event_id, now=now):
                        report.closed.append(event.event_id)
                    continue

                if event.status == EventStatus.UPCOMING:
                    self._send_due_reminders(event, now, report)
                    if now >= event.start_time and self._activate(event.event_id, now):
                        report.activated.append(event.event_id)
            except Exception:
                logger.exception("Sweep failed for event %s", event.event_id)
                report.failed.append(event.event_id)

        if report.closed or report.activated or report.failed:
            logger.info(
                "Sweep at %s: closed=%s activated=%s failed=%s",
                now.isoformat(),
                report.closed,
                report.activated,
                report.failed,
            )
        return report

    def run_pending(self, now: Optional[datetime] = None) -> SweepReport:
        """Poll-mode entry point for clocks that cannot fire timers."""
        return self.sweep(now)

    def start(self) -> SweepReport:
        """Catch up on anything overdue, then arm timers for the rest."""
        report = self.sweep()
        armed = 0
        for event in self._events.list_by_status(SWEPT_STATUSES):
            if self.arm(event):
                armed += 1
        logger.info("Auto-closure scheduler started: %s timer(s) armed", armed)
        return report
