from __future__ import annotations

from datetime import timedelta

import pytest

from event_attendance.core.enums import EventStatus
from event_attendance.core.exceptions import AuthorizationError, InvalidTransitionError, StaleStateError
from event_attendance.events.service import TRANSITIONS, allowed_transitions

from tests.fakes import ADMIN, CLOCKER, MEMBER, T0, build, force_status, new_event

ALLOWED = {(s, t) for s, targets in TRANSITIONS.items() for t in targets}
ALL_PAIRS = [(s, t) for s in EventStatus for t in EventStatus]


@pytest.mark.parametrize("source,target", ALL_PAIRS, ids=lambda s: s.value)
def test_transition_table_is_enforced(source, target):
    c = build()
    event = c.event_service.create(new_event(), ADMIN)
    force_status(c, event.event_id, source)

    if (source, target) in ALLOWED:
        updated = c.event_service.transition(event.event_id, target, ADMIN)
        assert updated.status == target
    else:
        with pytest.raises(InvalidTransitionError) as exc:
            c.event_service.transition(event.event_id, target, ADMIN)
        assert exc.value.current == source
        assert exc.value.target == target
        assert c.event_service.get(event.event_id).status == source


def test_closed_is_terminal():
    assert allowed_transitions(EventStatus.CLOSED) == ()


def test_closed_at_is_set_only_on_close():
    c = build()
    event = c.event_service.create(new_event(), ADMIN)
    assert event.closed_at is None and not event.is_closed

    completed = c.event_service.transition(event.event_id, EventStatus.COMPLETED, ADMIN, now=T0 + timedelta(hours=2))
    assert completed.completed_at == T0 + timedelta(hours=2)
    assert completed.closed_at is None

    closed = c.event_service.transition(event.event_id, EventStatus.CLOSED, ADMIN, now=T0 + timedelta(hours=3))
    assert closed.is_closed
    assert closed.closed_at == T0 + timedelta(hours=3)
    assert closed.closed_by == ADMIN.actor_id


def test_closing_a_completed_event_marks_unmarked_participants_absent():
    c = build()
    event = c.event_service.create(new_event(expected_participants=frozenset({10, 11})), ADMIN)
    c.event_service.transition(event.event_id, EventStatus.COMPLETED, ADMIN)
    closed = c.event_service.transition(event.event_id, EventStatus.CLOSED, ADMIN)

    statuses = {r.user_id: r.status.value for r in c.attendance_service.list_for_event(event.event_id)}
    assert statuses == {10: "absent", 11: "absent"}
    assert closed.summary.absent == 2


def test_closing_a_cancelled_event_marks_nobody_absent():
    c = build()
    event = c.event_service.create(new_event(expected_participants=frozenset({10, 11})), ADMIN)
    c.event_service.transition(event.event_id, EventStatus.CANCELLED, ADMIN)
    c.event_service.transition(event.event_id, EventStatus.CLOSED, ADMIN)

    assert c.attendance_service.list_for_event(event.event_id) == []


def test_member_cannot_transition_someone_elses_event():
    c = build()
    event = c.event_service.create(new_event(), ADMIN)

    with pytest.raises(AuthorizationError):
        c.event_service.transition(event.event_id, EventStatus.ACTIVE, MEMBER)


def test_creator_can_transition_own_event():
    c = build()
    event = c.event_service.create(new_event(), CLOCKER)

    assert c.event_service.transition(event.event_id, EventStatus.ACTIVE, CLOCKER).status == EventStatus.ACTIVE


def test_lost_race_raises_stale_state(monkeypatch):
    c = build()
    event = c.event_service.create(new_event(), ADMIN)
    repo = c.events_repo
    original = repo.compare_and_set_status

    def racing(event_id, *, expected, target, changes=None):
        # another actor cancels the event between our read and our write
        original(event_id, expected=expected, target=EventStatus.CANCELLED)
        return original(event_id, expected=expected, target=target, changes=changes)

    monkeypatch.setattr(repo, "compare_and_set_status", racing)

    with pytest.raises(StaleStateError) as exc:
        c.event_service.transition(event.event_id, EventStatus.ACTIVE, ADMIN)
    assert exc.value.blocking_id == event.event_id
    assert c.event_service.get(event.event_id).status == EventStatus.CANCELLED
