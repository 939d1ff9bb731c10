from __future__ import annotations

from datetime import timedelta

from event_attendance.core.constants import AUTO_ABSENT_NOTE
from event_attendance.core.enums import AttendanceStatus, EventStatus

from tests.fakes import ADMIN, DEPT_2, ManualClock, RecordingGateway, T0, build, force_status, new_event

EXPECTED = frozenset({10, 11, 12})


def test_sweep_at_t_plus_5h_closes_event_and_marks_absentees():
    c = build(clock=ManualClock(timers=False))
    event = c.event_service.create(
        new_event(start=T0 + timedelta(hours=1), expected_participants=EXPECTED, auto_close_offset=timedelta(hours=3)),
        ADMIN,
    )
    c.attendance_service.mark(
        event.event_id, 10, AttendanceStatus.PRESENT, ADMIN, now=T0 + timedelta(hours=1, minutes=10)
    )

    report = c.scheduler.sweep(now=T0 + timedelta(hours=5))

    closed = c.event_service.get(event.event_id)
    assert report.closed == [event.event_id]
    assert closed.status == EventStatus.CLOSED
    assert closed.completed_at == T0 + timedelta(hours=5)
    assert closed.closed_at == T0 + timedelta(hours=5)

    records = {r.user_id: r for r in c.attendance_service.list_for_event(event.event_id)}
    assert records[10].status == AttendanceStatus.PRESENT
    assert {records[u].status for u in (11, 12)} == {AttendanceStatus.ABSENT}
    assert all(records[u].notes == AUTO_ABSENT_NOTE for u in (11, 12))
    assert closed.summary.total == 3
    assert closed.summary.absent == 2


def test_sweep_is_idempotent():
    c = build(clock=ManualClock(timers=False))
    event = c.event_service.create(new_event(expected_participants=EXPECTED), ADMIN)
    later = T0 + timedelta(hours=6)

    c.scheduler.sweep(now=later)
    before = c.attendance_service.list_for_event(event.event_id)
    report = c.scheduler.sweep(now=later)

    assert report.closed == []
    assert c.attendance_service.list_for_event(event.event_id) == before


def test_sweep_leaves_events_that_are_not_due():
    c = build(clock=ManualClock(timers=False))
    event = c.event_service.create(new_event(), ADMIN)

    report = c.scheduler.sweep(now=event.end_time + timedelta(hours=2))

    assert report.closed == []
    assert c.event_service.get(event.event_id).status == EventStatus.ACTIVE
    assert report.activated == [event.event_id]


def test_completed_event_goes_straight_to_closed():
    c = build(clock=ManualClock(timers=False))
    event = c.event_service.create(new_event(expected_participants=EXPECTED), ADMIN)
    c.event_service.transition(event.event_id, EventStatus.COMPLETED, ADMIN, now=event.end_time)

    report = c.scheduler.sweep(now=event.auto_close_at)

    assert report.closed == [event.event_id]
    closed = c.event_service.get(event.event_id)
    assert closed.completed_at == event.end_time
    assert len(c.attendance_service.list_for_event(event.event_id)) == 3


def test_cancelled_and_draft_events_are_left_alone():
    c = build(clock=ManualClock(timers=False))
    cancelled = c.event_service.create(new_event(), ADMIN)
    c.event_service.cancel(cancelled.event_id, ADMIN, "rain")
    draft = c.event_service.create(new_event(as_draft=True), ADMIN)

    report = c.scheduler.sweep(now=T0 + timedelta(days=2))

    assert report.closed == []
    assert c.event_service.get(cancelled.event_id).status == EventStatus.CANCELLED
    assert c.event_service.get(draft.event_id).status == EventStatus.DRAFT


def test_one_failing_event_does_not_stop_the_sweep(monkeypatch):
    c = build(clock=ManualClock(timers=False))
    broken = c.event_service.create(new_event(expected_participants=EXPECTED), ADMIN)
    healthy = c.event_service.create(new_event(scope=DEPT_2, expected_participants=EXPECTED), ADMIN)
    recorder = c.attendance_service
    original = recorder.mark_unmarked_as_absent

    def flaky(event_id, actor, *, now=None):
        if event_id == broken.event_id:
            raise RuntimeError("database went away")
        return original(event_id, actor, now=now)

    monkeypatch.setattr(recorder, "mark_unmarked_as_absent", flaky)
    report = c.scheduler.sweep(now=T0 + timedelta(hours=6))

    assert report.failed == [broken.event_id]
    assert report.closed == [healthy.event_id]
    assert c.event_service.get(broken.event_id).status == EventStatus.COMPLETED

    monkeypatch.setattr(recorder, "mark_unmarked_as_absent", original)
    retry = c.scheduler.sweep(now=T0 + timedelta(hours=6))

    assert retry.closed == [broken.event_id]
    assert c.event_service.get(broken.event_id).status == EventStatus.CLOSED


def test_reminders_fire_once_per_offset():
    gateway = RecordingGateway()
    c = build(clock=ManualClock(timers=False), gateway=gateway)
    event = c.event_service.create(new_event(start=T0 + timedelta(days=2)), ADMIN)

    first = c.scheduler.sweep(now=event.start_time - timedelta(hours=23))
    repeat = c.scheduler.sweep(now=event.start_time - timedelta(hours=22))
    hour_before = c.scheduler.sweep(now=event.start_time - timedelta(minutes=30))

    assert first.reminders == [(event.event_id, 1440)]
    assert repeat.reminders == []
    assert hour_before.reminders == [(event.event_id, 60)]
    assert gateway.kinds() == ["event_reminder_due", "event_reminder_due"]
    assert c.event_service.get(event.event_id).reminders_sent == frozenset({1440, 60})


def test_armed_timer_closes_event_when_it_fires():
    clock = ManualClock()
    c = build(clock=clock)
    event = c.event_service.create(new_event(expected_participants=EXPECTED), ADMIN)

    assert c.scheduler.armed() == [event.event_id]
    clock.advance(event.auto_close_at - clock.now())

    assert c.event_service.get(event.event_id).status == EventStatus.CLOSED
    assert c.scheduler.armed() == []
    assert len(c.attendance_service.list_for_event(event.event_id)) == 3


def test_cancel_disarms_timer():
    clock = ManualClock()
    c = build(clock=clock)
    event = c.event_service.create(new_event(), ADMIN)

    c.event_service.cancel(event.event_id, ADMIN)
    clock.advance(timedelta(days=1))

    assert c.scheduler.armed() == []
    assert clock.pending == {}
    assert c.event_service.get(event.event_id).status == EventStatus.CANCELLED


def test_start_catches_up_then_arms_future_events():
    clock = ManualClock(timers=False)
    c = build(clock=clock)
    overdue = c.event_service.create(new_event(), ADMIN)
    future = c.event_service.create(new_event(start=T0 + timedelta(days=3)), ADMIN)

    clock.current = T0 + timedelta(hours=6)
    clock.timers = True
    report = c.scheduler.start()

    assert report.closed == [overdue.event_id]
    assert c.scheduler.armed() == [future.event_id]


def test_run_pending_is_a_sweep():
    clock = ManualClock(timers=False)
    c = build(clock=clock)
    event = c.event_service.create(new_event(), ADMIN)

    clock.current = event.auto_close_at
    report = c.scheduler.run_pending()

    assert report.closed == [event.event_id]


def test_close_leaves_event_alone_when_another_actor_completed_it_first(monkeypatch):
    c = build(clock=ManualClock(timers=False))
    event = c.event_service.create(new_event(expected_participants=EXPECTED), ADMIN)
    stale = force_status(c, event.event_id, EventStatus.ACTIVE)
    force_status(c, event.event_id, EventStatus.COMPLETED)

    real_get = c.events_repo.get_by_id
    reads = []

    def first_read_is_stale(event_id):
        reads.append(event_id)
        return stale if len(reads) == 1 else real_get(event_id)

    monkeypatch.setattr(c.events_repo, "get_by_id", first_read_is_stale)

    assert c.scheduler.close_event(event.event_id, now=event.auto_close_at) is False
    assert real_get(event.event_id).status == EventStatus.COMPLETED
    assert c.attendance_service.list_for_event(event.event_id) == []


def test_sweep_reports_no_failure_when_closure_loses_a_race(monkeypatch):
    c = build(clock=ManualClock(timers=False))
    event = c.event_service.create(new_event(), ADMIN)
    stale = force_status(c, event.event_id, EventStatus.ACTIVE)
    force_status(c, event.event_id, EventStatus.CANCELLED)

    monkeypatch.setattr(c.events_repo, "list_by_status", lambda statuses: [stale])
    report = c.scheduler.sweep(now=event.auto_close_at)

    assert report.failed == []
    assert report.closed == []
    assert c.event_service.get(event.event_id).status == EventStatus.CANCELLED


def test_stop_cancels_every_armed_timer():
    clock = ManualClock()
    c = build(clock=clock)
    c.event_service.create(new_event(), ADMIN)
    c.event_service.create(new_event(scope=DEPT_2), ADMIN)

    c.scheduler.stop()

    assert c.scheduler.armed() == []
    assert clock.pending == {}
