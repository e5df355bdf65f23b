# src/fieldtrack/api.py

"""
Contract surface.

Each helper takes the AppState plus the acting identity (handed over by the
auth collaborator), applies the role checks of the corresponding endpoint and
returns plain dict payloads a transport layer can serialize as-is.
Errors propagate as fieldtrack.errors exceptions carrying their status code.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from .assignments.models import Actor, AssignmentStatus, ComputedStatus, Page
from .assignments.store import AssignmentFilters
from .core.state import AppState
from .errors import AuthorizationError, ValidationError
from .tracking.models import TrackingStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


def page_payload(page: Page[T], serialize: Callable[[T], dict[str, Any]]) -> dict[str, Any]:
    out: dict[str, Any] = {
        "data": [serialize(item) for item in page.items],
        "total": page.total,
        "current_page": page.page,
        "per_page": page.per_page,
        "last_page": page.last_page,
    }
    out.update(page.extra)
    return out


def _require_elevated(actor: Actor, action: str) -> None:
    if not actor.is_elevated:
        raise AuthorizationError(f"Only admins can {action}")


def _parse_status(raw: str) -> AssignmentStatus:
    try:
        return AssignmentStatus(raw.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown assignment status: {raw!r}") from None


def _settings_int(state: AppState, name: str, default: int) -> int:
    return int(getattr(state.settings, name, default))


# ---- assignments ----


def create_assignment(
    state: AppState,
    actor: Actor,
    *,
    task_id: int,
    user_ids: Iterable[str],
    date: str | None = None,
    start_time: float | datetime | None = None,
) -> dict[str, Any]:
    _require_elevated(actor, "assign tasks")
    assignment = state.assignments.create(task_id, user_ids, date, start_time)
    view = state.assignments.view(assignment.id)
    return {
        "message": f"Task assigned successfully to {len(assignment.user_ids)} user(s)",
        "assignment": view.to_dict(),
    }


def show_assignment(state: AppState, actor: Actor, assignment_id: int) -> dict[str, Any]:
    view = state.assignments.view(assignment_id)
    if not view.assignment.can_be_touched_by(actor):
        raise AuthorizationError("Unauthorized to view this assignment")
    return {"assignment": view.to_dict(), "duration_minutes": view.assignment.duration_minutes}


def start_assignment(state: AppState, actor: Actor, assignment_id: int) -> dict[str, Any]:
    assignment = state.assignments.start(assignment_id, actor)
    return {"message": "Task started successfully", "assignment": state.assignments.view(assignment.id).to_dict()}


def complete_assignment(state: AppState, actor: Actor, assignment_id: int) -> dict[str, Any]:
    assignment = state.assignments.complete(assignment_id, actor)
    return {"message": "Task completed successfully", "assignment": state.assignments.view(assignment.id).to_dict()}


def complete_from_report(state: AppState, actor: Actor, assignment_id: int) -> dict[str, Any]:
    """
    Completion signal sent by the report collaborator once a report is filed.

    Filing a second report for an already completed assignment is not an error.
    """
    current = state.assignments.get(assignment_id)
    if current.status == AssignmentStatus.COMPLETED:
        logger.info("Report filed for already completed assignment %s", assignment_id)
        return {"message": "Task already completed", "assignment": state.assignments.view(assignment_id).to_dict()}
    return complete_assignment(state, actor, assignment_id)


def cancel_assignment(state: AppState, actor: Actor, assignment_id: int, *, force: bool = False) -> dict[str, Any]:
    current = state.assignments.get(assignment_id)
    if not current.can_be_touched_by(actor):
        raise AuthorizationError("Unauthorized to cancel this assignment")
    if force:
        _require_elevated(actor, "reset completed assignments")
    assignment = state.assignments.reset_to_pending(assignment_id, force=force)
    return {
        "message": "Task assignment reset to pending",
        "assignment": state.assignments.view(assignment.id).to_dict(),
    }


def delete_assignment(state: AppState, actor: Actor, assignment_id: int) -> dict[str, Any]:
    _require_elevated(actor, "delete assignments")
    state.assignments.delete(assignment_id)
    return {"message": "Task assignment deleted successfully"}


def list_assignments(
    state: AppState,
    actor: Actor,
    *,
    user_id: str | None = None,
    task_id: int | None = None,
    status: str | None = None,
    computed_status: str | None = None,
    date: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    per_page: int | None = None,
) -> dict[str, Any]:
    _require_elevated(actor, "list all assignments")
    filters = AssignmentFilters(
        user_id=user_id,
        task_id=task_id,
        status=_parse_status(status) if status else None,
        computed_status=ComputedStatus.parse(computed_status) if computed_status else None,
        date=date,
        date_from=date_from,
        date_to=date_to,
    )
    result = state.assignments.list_assignments(
        filters,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        per_page=per_page or _settings_int(state, "assignments_page_size", 15),
    )
    return page_payload(result, lambda v: v.to_dict())


def my_assignments(
    state: AppState,
    actor: Actor,
    *,
    status: str | None = None,
    date: str | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict[str, Any]:
    result = state.assignments.my_assignments(
        actor.user_id,
        computed_status=ComputedStatus.parse(status) if status else None,
        date=date,
        page=page,
        per_page=per_page or _settings_int(state, "assignments_page_size", 15),
    )
    return page_payload(result, lambda v: v.to_dict())


def assignment_statistics_for_user(state: AppState, actor: Actor, user_id: str) -> dict[str, Any]:
    if user_id != actor.user_id:
        _require_elevated(actor, "view other users' statistics")
    return state.assignments.user_statistics(user_id)


# ---- locations ----


def record_location(
    state: AppState,
    actor: Actor,
    *,
    assignment_id: int,
    latitude: Any,
    longitude: Any,
    accuracy: Any = None,
    address: str | None = None,
    tracking_status: str | None = TrackingStatus.AUTO,
    recorded_at: Any = None,
) -> dict[str, Any]:
    sample = state.ingestor.record(
        assignment_id,
        actor.user_id,
        latitude,
        longitude,
        accuracy=accuracy,
        address=address,
        tracking_status=tracking_status,
        recorded_at=recorded_at,
    )
    return {"message": "Location recorded successfully", "location": sample.to_dict(), "status_code": 201}


def record_locations_batch(state: AppState, actor: Actor, items: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """201 whenever anything was stored, 422 only when the whole batch was lost."""
    result = state.ingestor.record_batch(items, user_id=actor.user_id)
    payload = result.to_dict()
    payload["status_code"] = 201 if result.ok else 422
    return payload


def assignment_locations(
    state: AppState,
    actor: Actor,
    assignment_id: int,
    *,
    user_id: str | None = None,
    tracking_status: str | None = None,
    date_from: Any = None,
    date_to: Any = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict[str, Any]:
    assignment = state.assignments.get(assignment_id)
    if not assignment.can_be_touched_by(actor):
        raise AuthorizationError("Unauthorized to view this task locations")
    result = state.analytics.samples_for_assignment(
        assignment_id,
        user_id=user_id,
        tracking_status=TrackingStatus.parse(tracking_status, TrackingStatus.AUTO) if tracking_status else None,
        date_from=date_from,
        date_to=date_to,
        page=page,
        per_page=per_page or _settings_int(state, "locations_page_size", 50),
    )
    return {
        "assignment": state.assignments.view(assignment_id).to_dict(),
        "locations": page_payload(result, lambda s: s.to_dict()),
    }


def my_locations(
    state: AppState,
    actor: Actor,
    *,
    assignment_id: int | None = None,
    date_from: Any = None,
    date_to: Any = None,
    day: str | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict[str, Any]:
    result = state.analytics.samples_for_user(
        actor.user_id,
        assignment_id=assignment_id,
        date_from=date_from,
        date_to=date_to,
        day=day,
        page=page,
        per_page=per_page or _settings_int(state, "locations_page_size", 50),
    )
    return page_payload(result, lambda s: s.to_dict())


def current_locations(state: AppState, actor: Actor, assignment_id: int) -> dict[str, Any]:
    _require_elevated(actor, "view current locations")
    return state.analytics.current_locations(assignment_id).to_dict()


def route(
    state: AppState,
    actor: Actor,
    assignment_id: int,
    user_id: str,
    *,
    date_from: Any = None,
    date_to: Any = None,
) -> dict[str, Any]:
    if user_id != actor.user_id:
        _require_elevated(actor, "view other users' routes")
    return state.analytics.summarize_route(assignment_id, user_id, date_from, date_to).to_dict()


def nearby(
    state: AppState,
    actor: Actor,
    *,
    latitude: Any,
    longitude: Any,
    radius_km: Any = 1.0,
    assignment_id: int | None = None,
    date_from: Any = None,
    date_to: Any = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict[str, Any]:
    _require_elevated(actor, "search nearby locations")
    result = state.proximity.find_nearby(
        latitude,
        longitude,
        radius_km,
        assignment_id,
        date_from,
        date_to,
        page=page,
        per_page=per_page or _settings_int(state, "locations_page_size", 50),
    )
    return page_payload(result, lambda h: h.to_dict())


def location_statistics(
    state: AppState,
    actor: Actor,
    *,
    assignment_id: int | None = None,
    user_id: str | None = None,
) -> dict[str, Any]:
    if assignment_id is not None:
        assignment = state.assignments.get(assignment_id)
        if not assignment.can_be_touched_by(actor):
            raise AuthorizationError("Unauthorized to view this task statistics")
    elif user_id is not None:
        if user_id != actor.user_id:
            _require_elevated(actor, "view other users' statistics")
    else:
        _require_elevated(actor, "view global statistics")
    return state.analytics.statistics(assignment_id=assignment_id, user_id=user_id)


def delete_location(state: AppState, actor: Actor, sample_id: int) -> dict[str, Any]:
    _require_elevated(actor, "delete location records")
    state.locations.delete(sample_id)
    return {"message": "Location record deleted successfully"}


__all__ = [
    "assignment_locations",
    "assignment_statistics_for_user",
    "cancel_assignment",
    "complete_assignment",
    "complete_from_report",
    "create_assignment",
    "current_locations",
    "delete_assignment",
    "delete_location",
    "list_assignments",
    "location_statistics",
    "my_assignments",
    "my_locations",
    "nearby",
    "record_location",
    "record_locations_batch",
    "route",
    "show_assignment",
    "start_assignment",
]
