# src/fieldtrack/assignments/status.py

"""
Read-time status derivation.

The display status of an assignment is a function of:
- its persisted status (pending / in_progress / completed)
- the task's work-hour window
- the current wall clock

It is never written back. Listings that filter on it compute it for the whole
candidate set first and paginate afterwards, so a requested page size is always
honored.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from .models import Assignment, AssignmentStatus, ComputedStatus, Page, Task, paginate

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def is_within_work_hours(task: Task | None, now: datetime) -> bool:
    """Inclusive on both ends; a task without a configured window is always open."""
    if task is None or not task.has_window:
        return True
    assert task.scheduled_start is not None and task.scheduled_end is not None
    current = now.time().replace(microsecond=0, tzinfo=None)
    return task.scheduled_start <= current <= task.scheduled_end


def computed_status(assignment: Assignment, task: Task | None, now: datetime) -> ComputedStatus:
    if assignment.status == AssignmentStatus.COMPLETED:
        return ComputedStatus.COMPLETED

    # Overrun past the window is fine once the session has started.
    if assignment.status == AssignmentStatus.IN_PROGRESS:
        return ComputedStatus.IN_PROGRESS

    return ComputedStatus.PENDING if is_within_work_hours(task, now) else ComputedStatus.INACTIVE


def can_start(assignment: Assignment, task: Task | None, now: datetime) -> bool:
    return computed_status(assignment, task, now) == ComputedStatus.PENDING


@dataclass(slots=True, frozen=True)
class AssignmentView:
    """An assignment enriched with its task and the status computed for this read."""

    assignment: Assignment
    task: Task | None
    computed_status: ComputedStatus
    is_within_work_hours: bool

    def to_dict(self) -> dict[str, object]:
        a = self.assignment
        return {
            "id": a.id,
            "ticket_number": a.ticket_number,
            "task_id": a.task_id,
            "task_title": self.task.title if self.task else None,
            "user_ids": list(a.user_ids),
            "date": a.date,
            "status": a.status.value,
            "computed_status": self.computed_status.value,
            "is_within_work_hours": self.is_within_work_hours,
            "start_time": a.start_time,
            "end_time": a.end_time,
            "duration_minutes": a.duration_minutes,
        }


class StatusComputer:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or datetime.now

    def now(self) -> datetime:
        return self._clock()

    def view(self, assignment: Assignment, task: Task | None, now: datetime | None = None) -> AssignmentView:
        now = now or self._clock()
        return AssignmentView(
            assignment=assignment,
            task=task,
            computed_status=computed_status(assignment, task, now),
            is_within_work_hours=is_within_work_hours(task, now),
        )

    def filter_and_paginate(
        self,
        assignments: Iterable[Assignment],
        tasks: Mapping[int, Task],
        *,
        status: ComputedStatus | None = None,
        page: int = 1,
        per_page: int = 15,
        now: datetime | None = None,
    ) -> Page[AssignmentView]:
        """
        Compute status over the full candidate set, filter, then slice one page.

        Input order is preserved, so callers sort before handing rows in.
        """
        now = now or self._clock()
        views = [self.view(a, tasks.get(a.task_id), now) for a in assignments]
        if status is not None:
            views = [v for v in views if v.computed_status == status]
        logger.debug("Status filter=%s matched=%d", status, len(views))
        return paginate(views, page=page, per_page=per_page)
