# src/fieldtrack/core/ports.py

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps collaborators (task CRUD, auth, device GPS, geocoding, transport)
swappable and makes testing easier.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol


@dataclass(slots=True, frozen=True)
class Position:
    """A GPS fix as reported by the device."""

    latitude: float
    longitude: float
    accuracy: float | None = None


@dataclass(slots=True, frozen=True)
class SessionMarker:
    """What survives a device restart: which assignment was being tracked, since when."""

    assignment_id: int
    started_at: float


class TaskReader(Protocol):
    """Read side of the task CRUD collaborator (work-hour window, title)."""

    def get_task(self, task_id: int) -> Any | None: ...
    def get_tasks(self, task_ids: Iterable[int]) -> dict[int, Any]: ...


class UserDirectory(Protocol):
    """Identity/role lookups owned by the auth collaborator."""

    def get_user(self, user_id: str) -> Any | None: ...
    def unknown_users(self, user_ids: Iterable[str]) -> list[str]: ...


class Directory(TaskReader, UserDirectory, Protocol):
    """What the assignment store needs to validate task and member references."""


class LocationProvider(Protocol):
    """
    Device-side GPS access.

    Permission requests return True when granted. current_position raises on
    failure (no fix, hardware off, ...).
    """

    def request_foreground_permission(self) -> Awaitable[bool]: ...
    def request_background_permission(self) -> Awaitable[bool]: ...
    def current_position(self) -> Awaitable[Position]: ...


class ReverseGeocoder(Protocol):
    """Human-readable address for a coordinate; None when nothing was found."""

    def reverse(self, latitude: float, longitude: float) -> Awaitable[str | None]: ...


class LocationSink(Protocol):
    """
    The ingestion contract as seen from the device.

    Raises Rejected while the assignment is not trackable yet (or anymore).
    """

    def record(
            self,
            *,
            assignment_id: int,
            latitude: float,
            longitude: float,
            accuracy: float | None = None,
            address: str | None = None,
            tracking_status: str = "auto",
            recorded_at: float | None = None,
    ) -> Awaitable[Any]: ...


class SessionMarkerRepo(Protocol):
    """Durable local storage for the active tracking session."""

    def load(self) -> SessionMarker | None: ...
    def save(self, marker: SessionMarker) -> None: ...
    def clear(self) -> None: ...
