# src/fieldtrack/assignments/store.py

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date as ddate
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.ports import Directory
from ..errors import AuthorizationError, InvalidTransition, NotFound, ValidationError
from ..storage import SqliteStore
from .models import (
    Actor,
    Assignment,
    AssignmentStatus,
    ComputedStatus,
    Page,
    normalize_user_ids,
)
from .status import AssignmentView, StatusComputer, is_within_work_hours

logger = logging.getLogger(__name__)

TICKET_PREFIX = "TT"

SORT_COLUMNS = {
    "id": "a.id",
    "created_at": "a.created_at",
    "updated_at": "a.updated_at",
    "date": "a.date",
    "status": "a.status",
    "start_time": "a.start_time",
    "end_time": "a.end_time",
}


def _parse_iso_date(raw: str | ddate, field_name: str = "date") -> str:
    if isinstance(raw, ddate):
        return raw.isoformat()
    try:
        return ddate.fromisoformat(str(raw).strip()).isoformat()
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD), got {raw!r}") from None


def _to_ts(value: float | datetime | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


@dataclass(slots=True)
class AssignmentFilters:
    user_id: str | None = None
    task_id: int | None = None
    status: AssignmentStatus | None = None
    computed_status: ComputedStatus | None = None
    date: str | None = None
    date_from: str | None = None
    date_to: str | None = None


class AssignmentStore(SqliteStore):
    """
    SQLite assignment store; owns the lifecycle transitions.

    Transitions are compare-and-set updates:
      UPDATE ... SET status = <next> WHERE id = ? AND status = <expected>
    so of two racing callers exactly one sees rowcount == 1.

    Membership lives in assignment_members (indexed by user_id), which doubles
    as the inverted index behind "all assignments of a user".
    """

    def __init__(
        self,
        db_path: str | Path,
        directory: Directory,
        *,
        status_computer: StatusComputer | None = None,
        enforce_work_hours_on_start: bool = True,
        elevated_overrides_work_hours: bool = True,
    ) -> None:
        self._directory = directory
        self._status = status_computer or StatusComputer()
        self._enforce_work_hours = enforce_work_hours_on_start
        self._elevated_overrides = elevated_overrides_work_hours
        super().__init__(db_path)
        try:
            total = self.count_assignments()
        except sqlite3.Error:
            total = -1
        logger.info("AssignmentStore ready db=%s total=%s", self._db_path, total)

    @property
    def status_computer(self) -> StatusComputer:
        return self._status

    @property
    def directory(self) -> Directory:
        return self._directory

    # ---- schema ----

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS assignments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    start_time REAL,
                    end_time REAL,
                    ticket_number TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS assignment_members (
                    assignment_id INTEGER NOT NULL REFERENCES assignments(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    PRIMARY KEY (assignment_id, user_id)
                )
                """
            )
            self._add_missing_columns(cur, "assignments", {"ticket_number": "TEXT"})

            cur.execute("CREATE INDEX IF NOT EXISTS idx_assignments_status_date ON assignments(status, date)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_assignments_task ON assignments(task_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_members_user ON assignment_members(user_id)")
            conn.commit()
        finally:
            conn.close()

    # ---- row mapping ----

    @staticmethod
    def _load_members(conn: sqlite3.Connection, ids: list[int]) -> dict[int, tuple[str, ...]]:
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = conn.execute(
            f"""
            SELECT assignment_id, user_id
            FROM assignment_members
            WHERE assignment_id IN ({placeholders})
            ORDER BY assignment_id, position
            """,
            ids,
        ).fetchall()
        out: dict[int, list[str]] = {}
        for r in rows:
            out.setdefault(int(r["assignment_id"]), []).append(str(r["user_id"]))
        return {k: tuple(v) for k, v in out.items()}

    @staticmethod
    def _row_to_assignment(row: sqlite3.Row, user_ids: tuple[str, ...]) -> Assignment:
        return Assignment(
            id=int(row["id"]),
            task_id=int(row["task_id"]),
            user_ids=user_ids,
            date=str(row["date"]),
            status=AssignmentStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            start_time=float(row["start_time"]) if row["start_time"] is not None else None,
            end_time=float(row["end_time"]) if row["end_time"] is not None else None,
            ticket_number=row["ticket_number"],
        )

    def _rows_to_assignments(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Assignment]:
        members = self._load_members(conn, [int(r["id"]) for r in rows])
        return [self._row_to_assignment(r, members.get(int(r["id"]), ())) for r in rows]

    # ---- public API ----

    def count_assignments(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM assignments").fetchone()
            return int(n)
        finally:
            conn.close()

    def get(self, assignment_id: int) -> Assignment:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM assignments WHERE id = ?", (int(assignment_id),)).fetchone()
            if row is None:
                raise NotFound(f"Assignment {assignment_id} not found")
            return self._rows_to_assignments(conn, [row])[0]
        finally:
            conn.close()

    def create(
        self,
        task_id: int,
        user_ids: Iterable[str],
        date: str | ddate | None = None,
        start_time: float | datetime | None = None,
    ) -> Assignment:
        if self._directory.get_task(task_id) is None:
            raise ValidationError(f"Unknown task_id: {task_id}")

        members = normalize_user_ids(user_ids)
        unknown = self._directory.unknown_users(members)
        if unknown:
            raise ValidationError(f"Unknown user ids: {', '.join(unknown)}")

        day = _parse_iso_date(date) if date is not None else self._status.now().date().isoformat()
        now = time.time()

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO assignments(task_id, date, status, start_time, created_at, updated_at)
                VALUES (?, ?, 'pending', ?, ?, ?)
                """,
                (int(task_id), day, _to_ts(start_time), now, now),
            )
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for assignments insert")
            assignment_id = int(rowid)

            # Derived from the row id so two concurrent creates never share a ticket.
            ticket = f"{TICKET_PREFIX}-{assignment_id:06d}"
            cur.execute("UPDATE assignments SET ticket_number = ? WHERE id = ?", (ticket, assignment_id))
            cur.executemany(
                "INSERT INTO assignment_members(assignment_id, user_id, position) VALUES (?, ?, ?)",
                [(assignment_id, uid, pos) for pos, uid in enumerate(members)],
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(
            "Assignment created id=%s ticket=%s task_id=%s users=%d date=%s",
            assignment_id,
            ticket,
            task_id,
            len(members),
            day,
        )
        return self.get(assignment_id)

    def _compare_and_set(self, sql: str, params: tuple[Any, ...]) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def start(self, assignment_id: int, actor: Actor, now: datetime | None = None) -> Assignment:
        """
        pending -> in_progress.

        Status is checked before membership: starting a non-pending assignment is
        an InvalidTransition for every caller.
        """
        assignment = self.get(assignment_id)
        if assignment.status != AssignmentStatus.PENDING:
            raise InvalidTransition(
                f"Assignment {assignment_id} can only be started from pending (is {assignment.status.value})"
            )
        if not assignment.can_be_touched_by(actor):
            raise AuthorizationError(f"User {actor.user_id} is not allowed to start assignment {assignment_id}")

        now = now or self._status.now()
        if self._enforce_work_hours:
            task = self._directory.get_task(assignment.task_id)
            if not is_within_work_hours(task, now):
                if actor.is_elevated and self._elevated_overrides:
                    logger.info(
                        "Assignment %s started outside work hours by elevated user %s",
                        assignment_id,
                        actor.user_id,
                    )
                else:
                    raise InvalidTransition(f"Assignment {assignment_id} is outside its task's work hours")

        ts = now.timestamp()
        claimed = self._compare_and_set(
            """
            UPDATE assignments
            SET status = 'in_progress', start_time = ?, end_time = NULL, updated_at = ?
            WHERE id = ?
              AND status = 'pending'
            """,
            (ts, time.time(), int(assignment_id)),
        )
        if not claimed:
            raise InvalidTransition(f"Assignment {assignment_id} was started concurrently")

        logger.info("Assignment %s -> in_progress (by %s)", assignment_id, actor.user_id)
        return self.get(assignment_id)

    def complete(self, assignment_id: int, actor: Actor, now: datetime | None = None) -> Assignment:
        """in_progress -> completed; end_time is kept strictly after start_time."""
        assignment = self.get(assignment_id)
        if assignment.status != AssignmentStatus.IN_PROGRESS:
            raise InvalidTransition(
                f"Assignment {assignment_id} must be in progress to complete (is {assignment.status.value})"
            )
        if not assignment.can_be_touched_by(actor):
            raise AuthorizationError(f"User {actor.user_id} is not allowed to complete assignment {assignment_id}")

        ts = (now or self._status.now()).timestamp()
        claimed = self._compare_and_set(
            """
            UPDATE assignments
            SET status = 'completed',
                end_time = CASE
                    WHEN start_time IS NOT NULL AND start_time >= ? THEN start_time + 1
                    ELSE ?
                END,
                updated_at = ?
            WHERE id = ?
              AND status = 'in_progress'
            """,
            (ts, ts, time.time(), int(assignment_id)),
        )
        if not claimed:
            raise InvalidTransition(f"Assignment {assignment_id} changed state concurrently")

        logger.info("Assignment %s -> completed (by %s)", assignment_id, actor.user_id)
        return self.get(assignment_id)

    def reset_to_pending(self, assignment_id: int, *, force: bool = False) -> Assignment:
        """
        Cancel: back to pending, clearing start/end times.

        Completed history is protected; force=True is the administrative override.
        """
        assignment = self.get(assignment_id)
        if assignment.status == AssignmentStatus.COMPLETED and not force:
            raise InvalidTransition(f"Assignment {assignment_id} is completed and cannot be reset")

        self._compare_and_set(
            """
            UPDATE assignments
            SET status = 'pending', start_time = NULL, end_time = NULL, updated_at = ?
            WHERE id = ?
              AND status = ?
            """,
            (time.time(), int(assignment_id), assignment.status.value),
        )
        # A lost race still leaves the row in a legal state; report what is stored now.
        current = self.get(assignment_id)
        logger.info(
            "Assignment %s reset %s -> %s (force=%s)",
            assignment_id,
            assignment.status.value,
            current.status.value,
            force,
        )
        return current

    def delete(self, assignment_id: int) -> None:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "DELETE FROM assignments WHERE id = ? AND status != 'completed'",
                (int(assignment_id),),
            )
            if cur.rowcount == 1:
                conn.execute("DELETE FROM assignment_members WHERE assignment_id = ?", (int(assignment_id),))
            conn.commit()
            deleted = cur.rowcount == 1
        finally:
            conn.close()

        if not deleted:
            # Either missing (NotFound from get) or completed.
            self.get(assignment_id)
            raise InvalidTransition(f"Assignment {assignment_id} is completed and cannot be deleted")
        logger.info("Assignment %s deleted", assignment_id)

    # ---- listings ----

    def _select_candidates(self, filters: AssignmentFilters, sort_by: str, sort_order: str) -> list[Assignment]:
        col = SORT_COLUMNS.get(sort_by)
        if col is None:
            raise ValidationError(f"Unsupported sort key: {sort_by!r}")
        order = sort_order.strip().lower()
        if order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'")

        where: list[str] = []
        params: list[Any] = []

        if filters.user_id is not None:
            where.append("a.id IN (SELECT assignment_id FROM assignment_members WHERE user_id = ?)")
            params.append(filters.user_id)
        if filters.task_id is not None:
            where.append("a.task_id = ?")
            params.append(int(filters.task_id))
        if filters.status is not None:
            where.append("a.status = ?")
            params.append(filters.status.value)
        if filters.date is not None:
            where.append("a.date = ?")
            params.append(_parse_iso_date(filters.date))
        if filters.date_from is not None and filters.date_to is not None:
            where.append("a.date BETWEEN ? AND ?")
            params.append(_parse_iso_date(filters.date_from, "date_from"))
            params.append(_parse_iso_date(filters.date_to, "date_to"))

        sql = "SELECT a.* FROM assignments a"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += f" ORDER BY {col} {order.upper()}, a.id {order.upper()}"

        conn = self._get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
            return self._rows_to_assignments(conn, rows)
        finally:
            conn.close()

    def list_assignments(
        self,
        filters: AssignmentFilters | None = None,
        *,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        per_page: int = 15,
        now: datetime | None = None,
    ) -> Page[AssignmentView]:
        filters = filters or AssignmentFilters()
        candidates = self._select_candidates(filters, sort_by, sort_order)
        tasks = self._directory.get_tasks(a.task_id for a in candidates)
        return self._status.filter_and_paginate(
            candidates,
            tasks,
            status=filters.computed_status,
            page=page,
            per_page=per_page,
            now=now,
        )

    def my_assignments(
        self,
        user_id: str,
        *,
        computed_status: ComputedStatus | None = None,
        date: str | None = None,
        page: int = 1,
        per_page: int = 15,
        now: datetime | None = None,
    ) -> Page[AssignmentView]:
        return self.list_assignments(
            AssignmentFilters(user_id=user_id, computed_status=computed_status, date=date),
            sort_by="date",
            sort_order="desc",
            page=page,
            per_page=per_page,
            now=now,
        )

    def view(self, assignment_id: int, now: datetime | None = None) -> AssignmentView:
        assignment = self.get(assignment_id)
        return self._status.view(assignment, self._directory.get_task(assignment.task_id), now)

    def user_statistics(self, user_id: str) -> dict[str, int]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT a.status AS status, COUNT(*) AS n
                FROM assignments a
                JOIN assignment_members m ON m.assignment_id = a.id
                WHERE m.user_id = ?
                GROUP BY a.status
                """,
                (user_id,),
            ).fetchall()
        finally:
            conn.close()

        counts = {str(r["status"]): int(r["n"]) for r in rows}
        return {
            "total_assignments": sum(counts.values()),
            "completed": counts.get(AssignmentStatus.COMPLETED.value, 0),
            "in_progress": counts.get(AssignmentStatus.IN_PROGRESS.value, 0),
            "pending": counts.get(AssignmentStatus.PENDING.value, 0),
        }
