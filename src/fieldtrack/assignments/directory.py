# src/fieldtrack/assignments/directory.py

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterable
from datetime import time as dtime

from ..errors import ValidationError
from ..storage import SqliteStore
from .models import Task, TaskStatus, User

logger = logging.getLogger(__name__)


def parse_time_of_day(raw: str | dtime | None) -> dtime | None:
    """Accept "HH:MM" or "HH:MM:SS" (or a time object); None stays None."""
    if raw is None or isinstance(raw, dtime):
        return raw
    s = str(raw).strip()
    if not s:
        return None
    try:
        return dtime.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"Invalid time of day: {raw!r}") from None


def _time_to_str(t: dtime | None) -> str | None:
    return t.strftime("%H:%M:%S") if t is not None else None


class DirectoryStore(SqliteStore):
    """
    Read model of tasks and the known user identities.

    Task CRUD, user management and roles belong to other services; this store
    only mirrors what the assignment lifecycle needs to read:
    - a task's work-hour window
    - whether an identity exists, and which roles it holds
    """

    def __init__(self, db_path) -> None:
        super().__init__(db_path)
        logger.info("DirectoryStore ready db=%s", self._db_path)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    location TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'pending',
                    scheduled_start TEXT,
                    scheduled_end TEXT,
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    roles TEXT NOT NULL DEFAULT '',
                    created_at REAL NOT NULL
                )
                """
            )
            self._add_missing_columns(
                cur,
                "tasks",
                {
                    "location": "TEXT NOT NULL DEFAULT ''",
                    "scheduled_start": "TEXT",
                    "scheduled_end": "TEXT",
                },
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            location=str(row["location"] or ""),
            status=TaskStatus.from_db(row["status"]),
            scheduled_start=parse_time_of_day(row["scheduled_start"]),
            scheduled_end=parse_time_of_day(row["scheduled_end"]),
        )

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        roles = frozenset(r for r in str(row["roles"] or "").split(",") if r)
        return User(id=str(row["id"]), name=str(row["name"] or ""), roles=roles)

    # ---- seeding (used by the CLI and tests in place of the CRUD services) ----

    def add_task(
        self,
        *,
        title: str,
        description: str = "",
        location: str = "",
        scheduled_start: str | dtime | None = None,
        scheduled_end: str | dtime | None = None,
        status: TaskStatus = TaskStatus.PENDING,
    ) -> int:
        if not title or not title.strip():
            raise ValidationError("title is required")
        start = parse_time_of_day(scheduled_start)
        end = parse_time_of_day(scheduled_end)

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO tasks(title, description, location, status, scheduled_start, scheduled_end, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title.strip(),
                    description.strip(),
                    location.strip(),
                    status.value,
                    _time_to_str(start),
                    _time_to_str(end),
                    time.time(),
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            logger.debug("Task added id=%s window=%s-%s", rowid, start, end)
            return int(rowid)
        finally:
            conn.close()

    def add_user(self, user_id: str, *, name: str = "", roles: Iterable[str] = ()) -> User:
        uid = (user_id or "").strip()
        if not uid:
            raise ValidationError("user id is required")
        role_set = frozenset(r.strip().lower() for r in roles if r and r.strip())

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO users(id, name, roles, created_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name, roles = excluded.roles
                """,
                (uid, name.strip(), ",".join(sorted(role_set)), time.time()),
            )
            conn.commit()
        finally:
            conn.close()
        return User(id=uid, name=name.strip(), roles=role_set)

    # ---- read API ----

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def get_tasks(self, task_ids: Iterable[int]) -> dict[int, Task]:
        ids = sorted({int(t) for t in task_ids})
        if not ids:
            return {}
        conn = self._get_conn()
        try:
            placeholders = ",".join("?" for _ in ids)
            rows = conn.execute(f"SELECT * FROM tasks WHERE id IN ({placeholders})", ids).fetchall()
            return {int(r["id"]): self._row_to_task(r) for r in rows}
        finally:
            conn.close()

    def get_user(self, user_id: str) -> User | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None
        finally:
            conn.close()

    def unknown_users(self, user_ids: Iterable[str]) -> list[str]:
        """Return the identities (in input order) that the directory does not know."""
        ids = list(user_ids)
        if not ids:
            return []
        conn = self._get_conn()
        try:
            placeholders = ",".join("?" for _ in ids)
            rows = conn.execute(f"SELECT id FROM users WHERE id IN ({placeholders})", ids).fetchall()
            known = {str(r["id"]) for r in rows}
            return [u for u in ids if u not in known]
        finally:
            conn.close()
