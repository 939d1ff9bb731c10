from __future__ import annotations

from datetime import datetime

import pytest

from event_attendance.core.enums import EventStatus, ScopeType
from event_attendance.core.exceptions import ConflictError
from event_attendance.events.conflicts import ConflictDetector
from event_attendance.events.model import ALL_SCOPE, Event, EventScope

from tests.fakes import DEPT_1, DEPT_2, InMemoryEvents

DAY = datetime(2026, 3, 8)
MINISTRY_1 = EventScope(ScopeType.MINISTRY, 1)


def at(hour: int, minute: int = 0) -> datetime:
    return DAY.replace(hour=hour, minute=minute)


def _seed(repo: InMemoryEvents, start: datetime, end: datetime, scope: EventScope, status=EventStatus.UPCOMING) -> Event:
    return repo.insert(
        Event(event_id=0, title="seed", start_time=start, end_time=end, status=status, scope=scope, created_by=1)
    )


def test_overlap_in_same_scope_is_flagged():
    repo = InMemoryEvents()
    existing = _seed(repo, at(10), at(11), DEPT_1)

    hits = ConflictDetector(repo).check(at(10, 30), at(11, 30), DEPT_1)

    assert [e.event_id for e in hits] == [existing.event_id]


def test_back_to_back_events_do_not_conflict():
    repo = InMemoryEvents()
    _seed(repo, at(10), at(11), DEPT_1)

    assert ConflictDetector(repo).check(at(11), at(12), DEPT_1) == []
    assert ConflictDetector(repo).check(at(9), at(10), DEPT_1) == []


def test_different_targets_do_not_conflict():
    repo = InMemoryEvents()
    _seed(repo, at(10), at(11), DEPT_1)

    detector = ConflictDetector(repo)
    assert detector.check(at(10), at(11), DEPT_2) == []
    assert detector.check(at(10), at(11), MINISTRY_1) == []


def test_all_scope_collides_with_everything():
    repo = InMemoryEvents()
    scoped = _seed(repo, at(10), at(11), DEPT_1)
    detector = ConflictDetector(repo)

    assert [e.event_id for e in detector.check(at(10), at(11), ALL_SCOPE)] == [scoped.event_id]

    everyone = _seed(repo, at(14), at(15), ALL_SCOPE)
    assert [e.event_id for e in detector.check(at(14), at(15), DEPT_2)] == [everyone.event_id]


@pytest.mark.parametrize("status", [EventStatus.CANCELLED, EventStatus.COMPLETED, EventStatus.CLOSED])
def test_finished_events_do_not_hold_their_slot(status):
    repo = InMemoryEvents()
    _seed(repo, at(10), at(11), DEPT_1, status=status)

    assert ConflictDetector(repo).check(at(10), at(11), DEPT_1) == []


def test_results_are_sorted_earliest_first_and_ensure_free_names_it():
    repo = InMemoryEvents()
    late = _seed(repo, at(11), at(13), DEPT_1)
    early = _seed(repo, at(9), at(12), ALL_SCOPE)
    detector = ConflictDetector(repo)

    hits = detector.check(at(10), at(12), DEPT_1)
    assert [e.event_id for e in hits] == [early.event_id, late.event_id]

    with pytest.raises(ConflictError) as exc:
        detector.ensure_free(at(10), at(12), DEPT_1)
    assert exc.value.blocking_id == early.event_id


def test_exclude_id_skips_the_event_itself():
    repo = InMemoryEvents()
    existing = _seed(repo, at(10), at(11), DEPT_1)

    assert ConflictDetector(repo).check(at(10), at(11), DEPT_1, exclude_id=existing.event_id) == []
