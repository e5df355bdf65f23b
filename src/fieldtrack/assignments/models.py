# src/fieldtrack/assignments/models.py

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import time as dtime
from enum import StrEnum
from typing import Generic, TypeVar

from ..errors import ValidationError

DEFAULT_ELEVATED_ROLES = frozenset({"admin", "superadmin"})


class AssignmentStatus(StrEnum):
    """Persisted assignment lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> AssignmentStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class ComputedStatus(StrEnum):
    """
    Display status derived at read time (never stored).

    Note the space in "in progress": it is the display label, distinct from the
    persisted "in_progress" value.
    """

    PENDING = "pending"
    INACTIVE = "inactive"
    IN_PROGRESS = "in progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, raw: str) -> ComputedStatus:
        norm = raw.strip().lower().replace("_", " ")
        try:
            return cls(norm)
        except ValueError:
            raise ValidationError(f"Unknown status filter: {raw!r}") from None


class TaskStatus(StrEnum):
    """Task-level status, owned by the task CRUD collaborator."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


@dataclass(slots=True, frozen=True)
class Task:
    """Read model of a task; only the work-hour window matters to the lifecycle."""

    id: int
    title: str
    description: str
    location: str
    status: TaskStatus
    scheduled_start: dtime | None = None
    scheduled_end: dtime | None = None

    @property
    def has_window(self) -> bool:
        return self.scheduled_start is not None and self.scheduled_end is not None


@dataclass(slots=True, frozen=True)
class User:
    id: str
    name: str
    roles: frozenset[str] = frozenset()


@dataclass(slots=True, frozen=True)
class Actor:
    """Identity of whoever is calling, as handed over by the auth collaborator."""

    user_id: str
    roles: frozenset[str] = frozenset()
    elevated_roles: frozenset[str] = DEFAULT_ELEVATED_ROLES

    @property
    def is_elevated(self) -> bool:
        return bool(self.roles & self.elevated_roles)

    @classmethod
    def for_user(cls, user: User, elevated_roles: Iterable[str] | None = None) -> Actor:
        elevated = frozenset(elevated_roles) if elevated_roles is not None else DEFAULT_ELEVATED_ROLES
        return cls(user_id=user.id, roles=user.roles, elevated_roles=elevated)


def normalize_user_ids(user_ids: Iterable[str] | None) -> tuple[str, ...]:
    """
    Validate an assignment's member set.

    Returns a non-empty, de-duplicated tuple (first occurrence wins).
    Known-identity checks need the directory and happen in the store.
    """
    if user_ids is None or isinstance(user_ids, str):
        raise ValidationError("user_ids must be a list of user identities")

    out: list[str] = []
    seen: set[str] = set()
    for raw in user_ids:
        uid = str(raw).strip()
        if not uid:
            raise ValidationError("user_ids contains an empty identity")
        if uid in seen:
            continue
        seen.add(uid)
        out.append(uid)

    if not out:
        raise ValidationError("user_ids must not be empty")
    return tuple(out)


@dataclass(slots=True)
class Assignment:
    id: int
    task_id: int
    user_ids: tuple[str, ...]
    date: str
    status: AssignmentStatus
    created_at: float
    updated_at: float

    start_time: float | None = None
    end_time: float | None = None
    ticket_number: str | None = None

    def has_user(self, user_id: str) -> bool:
        return user_id in self.user_ids

    def can_be_touched_by(self, actor: Actor) -> bool:
        return actor.is_elevated or self.has_user(actor.user_id)

    @property
    def duration_minutes(self) -> int | None:
        if self.start_time is None or self.end_time is None:
            return None
        return int((self.end_time - self.start_time) // 60)


T = TypeVar("T")


@dataclass(slots=True)
class Page(Generic[T]):
    """One page of a listing, shaped like the paginator payloads clients expect."""

    items: list[T]
    total: int
    page: int
    per_page: int
    extra: dict[str, object] = field(default_factory=dict)

    @property
    def last_page(self) -> int:
        if self.per_page <= 0:
            return 1
        return max(1, -(-self.total // self.per_page))

    @property
    def has_more(self) -> bool:
        return self.page < self.last_page


def paginate(items: list[T], *, page: int, per_page: int) -> Page[T]:
    if per_page < 1:
        raise ValidationError("per_page must be >= 1")
    if page < 1:
        raise ValidationError("page must be >= 1")
    start = (page - 1) * per_page
    return Page(items=items[start : start + per_page], total=len(items), page=page, per_page=per_page)
