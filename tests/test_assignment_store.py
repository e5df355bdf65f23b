# tests/test_assignment_store.py

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from fieldtrack.assignments.models import Actor, AssignmentStatus, ComputedStatus
from fieldtrack.assignments.store import AssignmentFilters
from fieldtrack.core.state import AppState
from fieldtrack.errors import AuthorizationError, InvalidTransition, NotFound, ValidationError

from .fakes import FakeClock


def test_create_assigns_ticket_and_keeps_member_order(state: AppState, day_task: int, alice, bob) -> None:
    a = state.assignments.create(day_task, ["bob", "alice", "bob"], "2026-03-02")

    assert a.status == AssignmentStatus.PENDING
    assert a.user_ids == ("bob", "alice")
    assert a.ticket_number == f"TT-{a.id:06d}"
    assert a.start_time is None and a.end_time is None


def test_create_defaults_date_to_today(state: AppState, open_task: int, alice) -> None:
    a = state.assignments.create(open_task, ["alice"])
    assert a.date == "2026-03-02"


def test_create_validates_references(state: AppState, day_task: int, alice) -> None:
    with pytest.raises(ValidationError):
        state.assignments.create(9999, ["alice"])
    with pytest.raises(ValidationError, match="ghost"):
        state.assignments.create(day_task, ["alice", "ghost"])
    with pytest.raises(ValidationError):
        state.assignments.create(day_task, [])
    with pytest.raises(ValidationError):
        state.assignments.create(day_task, ["alice"], "02/03/2026")


def test_work_hours_worked_example(state: AppState, clock: FakeClock, day_task: int, alice: Actor) -> None:
    a = state.assignments.create(day_task, ["alice"], "2026-03-02")

    clock.now = datetime(2026, 3, 2, 7, 30)
    assert state.assignments.view(a.id).computed_status == ComputedStatus.INACTIVE
    with pytest.raises(InvalidTransition):
        state.assignments.start(a.id, alice)

    clock.now = datetime(2026, 3, 2, 8, 0)
    started = state.assignments.start(a.id, alice)
    assert started.status == AssignmentStatus.IN_PROGRESS
    assert started.start_time == pytest.approx(clock.epoch())

    # Overrunning the window keeps it in progress.
    clock.now = datetime(2026, 3, 2, 18, 15)
    assert state.assignments.view(a.id).computed_status == ComputedStatus.IN_PROGRESS

    done = state.assignments.complete(a.id, alice)
    assert done.status == AssignmentStatus.COMPLETED
    assert done.end_time is not None and done.start_time is not None
    assert done.end_time > done.start_time
    assert done.duration_minutes == 10 * 60 + 15


def test_elevated_actor_may_start_outside_window(state: AppState, clock: FakeClock, day_task: int, alice, admin) -> None:
    a = state.assignments.create(day_task, ["alice"], "2026-03-02")
    clock.now = datetime(2026, 3, 2, 20, 0)
    assert state.assignments.start(a.id, admin).status == AssignmentStatus.IN_PROGRESS


def test_start_requires_membership(state: AppState, day_task: int, alice, carol: Actor) -> None:
    a = state.assignments.create(day_task, ["alice"], "2026-03-02")
    with pytest.raises(AuthorizationError):
        state.assignments.start(a.id, carol)
    assert state.assignments.get(a.id).status == AssignmentStatus.PENDING


def test_start_twice_is_invalid_for_everyone(state: AppState, started: int, bob: Actor, carol: Actor) -> None:
    with pytest.raises(InvalidTransition):
        state.assignments.start(started, bob)
    # Status is checked before membership.
    with pytest.raises(InvalidTransition):
        state.assignments.start(started, carol)


def test_concurrent_starts_exactly_one_wins(state: AppState, open_task: int, alice: Actor, bob: Actor) -> None:
    a = state.assignments.create(open_task, ["alice", "bob"])

    def attempt(actor: Actor) -> str:
        try:
            state.assignments.start(a.id, actor)
            return "ok"
        except InvalidTransition:
            return "lost"

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(attempt, [alice, bob]))

    assert sorted(results) == ["lost", "ok"]
    assert state.assignments.get(a.id).status == AssignmentStatus.IN_PROGRESS


def test_complete_requires_in_progress(state: AppState, day_task: int, alice: Actor) -> None:
    a = state.assignments.create(day_task, ["alice"], "2026-03-02")
    with pytest.raises(InvalidTransition):
        state.assignments.complete(a.id, alice)


def test_complete_keeps_end_after_start(state: AppState, clock: FakeClock, started: int, alice: Actor) -> None:
    # Completion stamped at (or before) the start instant still ends strictly later.
    done = state.assignments.complete(started, alice, now=clock.now)
    assert done.end_time == pytest.approx(done.start_time + 1)


def test_reset_clears_times_and_guards_completed(state: AppState, started: int, alice: Actor, clock: FakeClock) -> None:
    reset = state.assignments.reset_to_pending(started)
    assert reset.status == AssignmentStatus.PENDING
    assert reset.start_time is None and reset.end_time is None

    state.assignments.start(started, alice)
    clock.advance(hours=1)
    state.assignments.complete(started, alice)
    with pytest.raises(InvalidTransition):
        state.assignments.reset_to_pending(started)

    forced = state.assignments.reset_to_pending(started, force=True)
    assert forced.status == AssignmentStatus.PENDING
    assert forced.end_time is None


def test_delete_rules(state: AppState, day_task: int, alice: Actor, clock: FakeClock) -> None:
    pending = state.assignments.create(day_task, ["alice"], "2026-03-02")
    state.assignments.delete(pending.id)
    with pytest.raises(NotFound):
        state.assignments.get(pending.id)
    with pytest.raises(NotFound):
        state.assignments.delete(pending.id)

    done = state.assignments.create(day_task, ["alice"], "2026-03-02")
    state.assignments.start(done.id, alice)
    clock.advance(minutes=5)
    state.assignments.complete(done.id, alice)
    with pytest.raises(InvalidTransition):
        state.assignments.delete(done.id)


def test_list_filters_by_user_and_computed_status(
    state: AppState, clock: FakeClock, day_task: int, open_task: int, alice: Actor, bob
) -> None:
    a1 = state.assignments.create(day_task, ["alice"], "2026-03-01")
    a2 = state.assignments.create(open_task, ["alice", "bob"], "2026-03-02")
    a3 = state.assignments.create(day_task, ["bob"], "2026-03-03")
    state.assignments.start(a2.id, alice)

    clock.now = datetime(2026, 3, 2, 19, 0)

    mine = state.assignments.list_assignments(AssignmentFilters(user_id="alice"))
    assert {v.assignment.id for v in mine.items} == {a1.id, a2.id}

    inactive = state.assignments.list_assignments(AssignmentFilters(computed_status=ComputedStatus.INACTIVE))
    assert {v.assignment.id for v in inactive.items} == {a1.id, a3.id}

    by_date = state.assignments.list_assignments(sort_by="date", sort_order="asc")
    assert [v.assignment.id for v in by_date.items] == [a1.id, a2.id, a3.id]

    ranged = state.assignments.list_assignments(AssignmentFilters(date_from="2026-03-02", date_to="2026-03-03"))
    assert ranged.total == 2

    with pytest.raises(ValidationError):
        state.assignments.list_assignments(sort_by="nope")


def test_my_assignments_newest_date_first(state: AppState, open_task: int, alice: Actor) -> None:
    for day in ("2026-03-01", "2026-03-05", "2026-03-03"):
        state.assignments.create(open_task, ["alice"], day)

    page = state.assignments.my_assignments("alice", per_page=2)
    assert [v.assignment.date for v in page.items] == ["2026-03-05", "2026-03-03"]
    assert page.total == 3 and page.last_page == 2


def test_user_statistics(state: AppState, open_task: int, started: int, alice: Actor) -> None:
    state.assignments.create(open_task, ["alice"])
    stats = state.assignments.user_statistics("alice")
    assert stats == {"total_assignments": 2, "completed": 0, "in_progress": 1, "pending": 1}
