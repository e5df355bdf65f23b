# tests/test_proximity.py

from __future__ import annotations

import pytest

from fieldtrack.core.state import AppState
from fieldtrack.errors import ValidationError
from fieldtrack.tracking.geodesy import haversine_km

CENTER = (40.7128, -74.0060)


def _seed(state: AppState, assignment_id: int) -> dict[str, int]:
    points = {
        "here": (40.7128, -74.0060),
        "500m": (40.7173, -74.0060),
        "900m": (40.7209, -74.0060),
        "3km": (40.7398, -74.0060),
        "far": (41.0, -74.0),
    }
    ids = {}
    for name, (lat, lon) in points.items():
        ids[name] = state.ingestor.record(assignment_id, "alice", lat, lon).id
    return ids


def test_nearby_orders_by_distance_and_respects_radius(state: AppState, started: int) -> None:
    ids = _seed(state, started)

    page = state.proximity.find_nearby(*CENTER, radius_km=1.0)

    assert [h.sample.id for h in page.items] == [ids["here"], ids["500m"], ids["900m"]]
    assert page.items[0].distance_km == 0.0
    assert page.items[1].distance_km == pytest.approx(0.5, abs=0.01)
    for hit in page.items:
        exact = haversine_km(*CENTER, hit.sample.latitude, hit.sample.longitude)
        assert exact <= 1.0
        assert hit.distance_km == round(exact, 2)
    assert page.extra["search_center"] == {"latitude": CENTER[0], "longitude": CENTER[1], "radius_km": 1.0}


def test_nearby_larger_radius_and_assignment_filter(state: AppState, started: int, open_task: int, alice) -> None:
    ids = _seed(state, started)
    other = state.assignments.create(open_task, ["alice"])
    state.assignments.start(other.id, alice)
    state.ingestor.record(other.id, "alice", *CENTER)

    wide = state.proximity.find_nearby(*CENTER, radius_km=5)
    assert wide.total == 5
    assert ids["3km"] in {h.sample.id for h in wide.items}

    scoped = state.proximity.find_nearby(*CENTER, radius_km=5, assignment_id=other.id)
    assert [h.sample.assignment_id for h in scoped.items] == [other.id]


def test_nearby_paginates(state: AppState, started: int) -> None:
    _seed(state, started)
    page2 = state.proximity.find_nearby(*CENTER, radius_km=5, page=2, per_page=2)
    assert page2.total == 4
    assert len(page2.items) == 2
    assert page2.items[0].distance_km <= page2.items[1].distance_km


@pytest.mark.parametrize("radius", [0.05, 50.5, "wide"])
def test_nearby_radius_bounds(state: AppState, radius) -> None:
    with pytest.raises(ValidationError):
        state.proximity.find_nearby(*CENTER, radius_km=radius)


def test_nearby_radius_edges_accepted(state: AppState) -> None:
    assert state.proximity.find_nearby(*CENTER, radius_km=0.1).total == 0
    assert state.proximity.find_nearby(*CENTER, radius_km=50).total == 0


def test_nearby_validates_center(state: AppState) -> None:
    with pytest.raises(ValidationError):
        state.proximity.find_nearby(100, 0)


def test_nearby_across_antimeridian(state: AppState, started: int) -> None:
    east = state.ingestor.record(started, "alice", 0.0, 179.999).id
    west = state.ingestor.record(started, "alice", 0.0, -179.999).id

    page = state.proximity.find_nearby(0.0, 179.9995, radius_km=1.0)
    assert {h.sample.id for h in page.items} == {east, west}
