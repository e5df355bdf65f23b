# tests/conftest.py

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from fieldtrack.assignments.models import Actor
from fieldtrack.assignments.status import StatusComputer
from fieldtrack.cli.bootstrap import create_initial_state
from fieldtrack.core.state import AppState

from .fakes import FakeClock

# Monday, inside an 08:00-17:00 window.
NOW = datetime(2026, 3, 2, 10, 0, 0)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the stores.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="fieldtrack-test",
        log_level="DEBUG",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        db_path=tmp_path / "fieldtrack.sqlite3",
        marker_path=tmp_path / "active_tracking.json",
        # Lifecycle
        elevated_roles=["admin", "superadmin"],
        enforce_work_hours_on_start=True,
        elevated_overrides_work_hours=True,
        # Listings / ingestion
        assignments_page_size=15,
        locations_page_size=50,
        max_batch_size=100,
        # Sampler
        sample_interval_seconds=0.05,
        marker_max_age_seconds=24 * 60 * 60.0,
        geocoder_enabled=False,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock) -> AppState:
    """
    AppState wired on a temp SQLite file with a controllable wall clock.

    NOTE: We keep real SQLite stores here because the conditional writes
    (compare-and-set transitions, guarded sample inserts) are what we test.
    """
    return create_initial_state(settings=settings, status_computer=StatusComputer(clock))


@pytest.fixture()
def admin(state: AppState) -> Actor:
    return state.actor_for(state.directory.add_user("boss", name="Boss", roles=["admin"]))


@pytest.fixture()
def alice(state: AppState) -> Actor:
    return state.actor_for(state.directory.add_user("alice", name="Alice"))


@pytest.fixture()
def bob(state: AppState) -> Actor:
    return state.actor_for(state.directory.add_user("bob", name="Bob"))


@pytest.fixture()
def carol(state: AppState) -> Actor:
    return state.actor_for(state.directory.add_user("carol", name="Carol"))


@pytest.fixture()
def day_task(state: AppState) -> int:
    return state.directory.add_task(
        title="Inspect substation",
        location="North yard",
        scheduled_start="08:00",
        scheduled_end="17:00",
    )


@pytest.fixture()
def open_task(state: AppState) -> int:
    """A task with no work-hour window: always startable."""
    return state.directory.add_task(title="Restock van")


@pytest.fixture()
def started(state: AppState, day_task: int, alice: Actor, bob: Actor) -> int:
    """An in_progress assignment of alice + bob; returns its id."""
    a = state.assignments.create(day_task, ["alice", "bob"], "2026-03-02")
    state.assignments.start(a.id, alice)
    return a.id
