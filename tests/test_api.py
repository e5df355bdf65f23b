# tests/test_api.py

from __future__ import annotations

from datetime import datetime

import pytest

from fieldtrack import api
from fieldtrack.assignments.models import Actor
from fieldtrack.core.state import AppState
from fieldtrack.errors import AuthorizationError, InvalidTransition, ValidationError

from .fakes import FakeClock


def test_only_elevated_can_assign(state: AppState, admin: Actor, alice: Actor, day_task: int) -> None:
    with pytest.raises(AuthorizationError) as exc:
        api.create_assignment(state, alice, task_id=day_task, user_ids=["alice"])
    assert exc.value.status_code == 403

    out = api.create_assignment(state, admin, task_id=day_task, user_ids=["alice"], date="2026-03-02")
    assert out["message"] == "Task assigned successfully to 1 user(s)"
    assert out["assignment"]["computed_status"] == "pending"
    assert out["assignment"]["ticket_number"].startswith("TT-")


def test_lifecycle_through_contract(state: AppState, admin: Actor, alice: Actor, day_task: int, clock: FakeClock) -> None:
    aid = api.create_assignment(state, admin, task_id=day_task, user_ids=["alice"])["assignment"]["id"]

    started = api.start_assignment(state, alice, aid)
    assert started["assignment"]["computed_status"] == "in progress"

    clock.advance(minutes=45)
    done = api.complete_assignment(state, alice, aid)
    assert done["assignment"]["status"] == "completed"
    assert api.show_assignment(state, alice, aid)["duration_minutes"] == 45

    # A report filed twice does not fail.
    again = api.complete_from_report(state, alice, aid)
    assert again["message"] == "Task already completed"


def test_cancel_completed_needs_force_and_elevation(
    state: AppState, admin: Actor, alice: Actor, started: int, clock: FakeClock
) -> None:
    clock.advance(minutes=1)
    api.complete_assignment(state, alice, started)

    with pytest.raises(InvalidTransition):
        api.cancel_assignment(state, alice, started)
    with pytest.raises(AuthorizationError):
        api.cancel_assignment(state, alice, started, force=True)

    out = api.cancel_assignment(state, admin, started, force=True)
    assert out["assignment"]["status"] == "pending"


def test_show_requires_membership(state: AppState, started: int, carol: Actor, admin: Actor) -> None:
    with pytest.raises(AuthorizationError):
        api.show_assignment(state, carol, started)
    assert api.show_assignment(state, admin, started)["assignment"]["id"] == started


def test_list_payload_shape(state: AppState, admin: Actor, alice: Actor, open_task: int) -> None:
    for _ in range(3):
        api.create_assignment(state, admin, task_id=open_task, user_ids=["alice"])

    out = api.list_assignments(state, admin, computed_status="pending", per_page=2)
    assert set(out) >= {"data", "total", "current_page", "per_page", "last_page"}
    assert out["total"] == 3
    assert out["last_page"] == 2
    assert len(out["data"]) == 2

    with pytest.raises(AuthorizationError):
        api.list_assignments(state, alice)
    with pytest.raises(ValidationError):
        api.list_assignments(state, admin, status="paused")

    mine = api.my_assignments(state, alice, status="pending")
    assert mine["total"] == 3


def test_record_and_batch_status_codes(state: AppState, alice: Actor, started: int) -> None:
    single = api.record_location(state, alice, assignment_id=started, latitude=40.0, longitude=-74.0)
    assert single["status_code"] == 201
    assert single["location"]["tracking_status"] == "auto"

    ok = api.record_locations_batch(
        state,
        alice,
        [
            {"assignment_id": started, "latitude": 40.1, "longitude": -74.1},
            {"assignment_id": started, "latitude": 140.1, "longitude": -74.1},
        ],
    )
    assert ok["status_code"] == 201
    assert (ok["created_count"], ok["error_count"]) == (1, 1)

    failed = api.record_locations_batch(state, alice, [{"assignment_id": started, "latitude": 999, "longitude": 0}])
    assert failed["status_code"] == 422
    assert failed["created_count"] == 0


def test_location_reads_are_scoped(state: AppState, admin: Actor, alice: Actor, bob: Actor, carol: Actor, started: int) -> None:
    api.record_location(state, alice, assignment_id=started, latitude=40.0, longitude=-74.0)
    api.record_location(state, bob, assignment_id=started, latitude=40.01, longitude=-74.0)

    assert api.assignment_locations(state, bob, started)["locations"]["total"] == 2
    with pytest.raises(AuthorizationError):
        api.assignment_locations(state, carol, started)

    assert api.route(state, alice, started, "alice")["total_points"] == 1
    with pytest.raises(AuthorizationError):
        api.route(state, alice, started, "bob")
    assert api.route(state, admin, started, "bob")["total_points"] == 1

    with pytest.raises(AuthorizationError):
        api.current_locations(state, alice, started)
    assert api.current_locations(state, admin, started)["tracked_users"] == 2

    with pytest.raises(AuthorizationError):
        api.nearby(state, alice, latitude=40.0, longitude=-74.0)
    near = api.nearby(state, admin, latitude=40.0, longitude=-74.0, radius_km=0.5)
    assert near["total"] == 1
    assert near["search_center"]["radius_km"] == 0.5

    assert api.my_locations(state, alice)["total"] == 1


def test_statistics_permissions(state: AppState, admin: Actor, alice: Actor, carol: Actor, started: int) -> None:
    api.record_location(state, alice, assignment_id=started, latitude=1.0, longitude=1.0)

    assert api.location_statistics(state, alice, assignment_id=started)["total_locations"] == 1
    assert api.location_statistics(state, alice, user_id="alice")["total_locations"] == 1
    with pytest.raises(AuthorizationError):
        api.location_statistics(state, carol, assignment_id=started)
    with pytest.raises(AuthorizationError):
        api.location_statistics(state, alice)
    with pytest.raises(AuthorizationError):
        api.assignment_statistics_for_user(state, alice, "bob")
    assert api.location_statistics(state, admin)["total_locations"] == 1


def test_delete_endpoints_are_admin_only(state: AppState, admin: Actor, alice: Actor, started: int, day_task: int) -> None:
    loc = api.record_location(state, alice, assignment_id=started, latitude=1.0, longitude=1.0)["location"]
    with pytest.raises(AuthorizationError):
        api.delete_location(state, alice, loc["id"])
    api.delete_location(state, admin, loc["id"])
    assert state.locations.count_samples() == 0

    pending = api.create_assignment(state, admin, task_id=day_task, user_ids=["alice"])["assignment"]["id"]
    with pytest.raises(AuthorizationError):
        api.delete_assignment(state, alice, pending)
    assert api.delete_assignment(state, admin, pending)["message"] == "Task assignment deleted successfully"


def test_inactive_assignment_cannot_be_started_by_worker(
    state: AppState, admin: Actor, alice: Actor, day_task: int, clock: FakeClock
) -> None:
    aid = api.create_assignment(state, admin, task_id=day_task, user_ids=["alice"])["assignment"]["id"]
    clock.now = datetime(2026, 3, 2, 6, 45)
    assert api.show_assignment(state, alice, aid)["assignment"]["computed_status"] == "inactive"
    with pytest.raises(InvalidTransition):
        api.start_assignment(state, alice, aid)
