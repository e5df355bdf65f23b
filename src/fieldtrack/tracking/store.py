# src/fieldtrack/tracking/store.py

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import date as ddate
from datetime import datetime
from datetime import time as dtime
from pathlib import Path
from typing import Any

from ..errors import NotFound, ValidationError
from ..storage import SqliteStore
from .geodesy import BoundingBox
from .models import LocationSample, TrackingStatus, coerce_timestamp

logger = logging.getLogger(__name__)


def _range_bound(value: Any, *, end: bool) -> float | None:
    """
    A bare date widens to the whole (local) day: start of day for the lower
    bound, end of day for the upper one.
    """
    if value is None or value == "":
        return None
    if isinstance(value, ddate) and not isinstance(value, datetime):
        return datetime.combine(value, dtime.max if end else dtime.min).timestamp()
    if isinstance(value, str) and len(value.strip()) == 10:
        try:
            day = ddate.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"Invalid date: {value!r}") from None
        return datetime.combine(day, dtime.max if end else dtime.min).timestamp()
    return coerce_timestamp(value, "date_to" if end else "date_from")


@dataclass(slots=True)
class SampleQuery:
    assignment_id: int | None = None
    user_id: str | None = None
    tracking_status: TrackingStatus | None = None
    date_from: Any = None
    date_to: Any = None

    @classmethod
    def for_day(cls, day: str | ddate, **kwargs: Any) -> SampleQuery:
        return cls(date_from=day, date_to=day, **kwargs)

    def where(self) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []

        if self.assignment_id is not None:
            clauses.append("assignment_id = ?")
            params.append(int(self.assignment_id))
        if self.user_id is not None:
            clauses.append("user_id = ?")
            params.append(self.user_id)
        if self.tracking_status is not None:
            clauses.append("tracking_status = ?")
            params.append(self.tracking_status.value)

        # Like the dashboards: a range only applies when both ends are given.
        lo = _range_bound(self.date_from, end=False)
        hi = _range_bound(self.date_to, end=True)
        if lo is not None and hi is not None:
            clauses.append("recorded_at BETWEEN ? AND ?")
            params.extend([lo, hi])

        sql = " AND ".join(clauses) if clauses else "1 = 1"
        return sql, params


class LocationStore(SqliteStore):
    """
    SQLite store of location samples.

    Append-only from the core's point of view. The insert is conditional on the
    owning assignment being in_progress at that instant (single statement), so
    a sample can never slip in after complete().

    The assignments table must live in the same database file.
    """

    def __init__(self, db_path: str | Path) -> None:
        super().__init__(db_path)
        try:
            total = self.count_samples()
        except sqlite3.Error:
            total = -1
        logger.info("LocationStore ready db=%s total=%s", self._db_path, total)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS locations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    assignment_id INTEGER NOT NULL,
                    user_id TEXT NOT NULL,
                    latitude REAL NOT NULL,
                    longitude REAL NOT NULL,
                    accuracy REAL,
                    address TEXT,
                    tracking_status TEXT NOT NULL DEFAULT 'auto',
                    recorded_at REAL NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            self._add_missing_columns(
                cur,
                "locations",
                {
                    "accuracy": "REAL",
                    "address": "TEXT",
                    "tracking_status": "TEXT NOT NULL DEFAULT 'auto'",
                },
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_locations_route "
                "ON locations(assignment_id, user_id, recorded_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_locations_user_time ON locations(user_id, recorded_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_locations_latlon ON locations(latitude, longitude)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_sample(row: sqlite3.Row) -> LocationSample:
        return LocationSample(
            id=int(row["id"]),
            assignment_id=int(row["assignment_id"]),
            user_id=str(row["user_id"]),
            latitude=float(row["latitude"]),
            longitude=float(row["longitude"]),
            accuracy=float(row["accuracy"]) if row["accuracy"] is not None else None,
            address=row["address"],
            tracking_status=TrackingStatus.parse(row["tracking_status"], TrackingStatus.AUTO),
            recorded_at=float(row["recorded_at"]),
            created_at=float(row["created_at"] or 0.0),
        )

    # ---- writes ----

    def insert_if_trackable(
        self,
        *,
        assignment_id: int,
        user_id: str,
        latitude: float,
        longitude: float,
        accuracy: float | None,
        address: str | None,
        tracking_status: TrackingStatus,
        recorded_at: float,
    ) -> LocationSample | None:
        """Insert only while the assignment is in_progress; None when it no longer is."""
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO locations(
                    assignment_id, user_id, latitude, longitude, accuracy,
                    address, tracking_status, recorded_at, created_at
                )
                SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?
                WHERE EXISTS (
                    SELECT 1 FROM assignments WHERE id = ? AND status = 'in_progress'
                )
                """,
                (
                    int(assignment_id),
                    user_id,
                    float(latitude),
                    float(longitude),
                    accuracy,
                    address,
                    tracking_status.value,
                    float(recorded_at),
                    now,
                    int(assignment_id),
                ),
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for locations insert")
        finally:
            conn.close()

        logger.debug(
            "Location stored id=%s assignment=%s user=%s status=%s",
            rowid,
            assignment_id,
            user_id,
            tracking_status.value,
        )
        return self.get(int(rowid))

    def delete(self, sample_id: int) -> None:
        """Administrative override; not part of the ingestion contract."""
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM locations WHERE id = ?", (int(sample_id),))
            conn.commit()
            if cur.rowcount != 1:
                raise NotFound(f"Location {sample_id} not found")
        finally:
            conn.close()
        logger.info("Location %s deleted", sample_id)

    # ---- reads ----

    def count_samples(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM locations").fetchone()
            return int(n)
        finally:
            conn.close()

    def get(self, sample_id: int) -> LocationSample:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM locations WHERE id = ?", (int(sample_id),)).fetchone()
            if row is None:
                raise NotFound(f"Location {sample_id} not found")
            return self._row_to_sample(row)
        finally:
            conn.close()

    def query(
        self,
        q: SampleQuery,
        *,
        newest_first: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[LocationSample]:
        where, params = q.where()
        order = "DESC" if newest_first else "ASC"
        sql = f"SELECT * FROM locations WHERE {where} ORDER BY recorded_at {order}, id {order}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = [*params, int(limit), int(offset)]

        conn = self._get_conn()
        try:
            return [self._row_to_sample(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def count(self, q: SampleQuery) -> int:
        where, params = q.where()
        conn = self._get_conn()
        try:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM locations WHERE {where}", params).fetchone()
            return int(n)
        finally:
            conn.close()

    def latest_for(self, assignment_id: int, user_id: str) -> LocationSample | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                """
                SELECT *
                FROM locations
                WHERE assignment_id = ? AND user_id = ?
                ORDER BY recorded_at DESC, id DESC
                LIMIT 1
                """,
                (int(assignment_id), user_id),
            ).fetchone()
            return self._row_to_sample(row) if row else None
        finally:
            conn.close()

    def in_box(self, box: BoundingBox, q: SampleQuery) -> list[LocationSample]:
        where, params = q.where()
        if box.wraps_antimeridian:
            lon_clause = "(longitude >= ? OR longitude <= ?)"
        else:
            lon_clause = "longitude BETWEEN ? AND ?"
        sql = (
            f"SELECT * FROM locations WHERE {where} "
            f"AND latitude BETWEEN ? AND ? AND {lon_clause}"
        )
        params = [*params, box.min_lat, box.max_lat, box.min_lon, box.max_lon]

        conn = self._get_conn()
        try:
            return [self._row_to_sample(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def aggregate(self, q: SampleQuery, group_by: str) -> dict[str, Any]:
        """Totals, auto/manual split, per-group counts and first/last timestamps."""
        if group_by not in ("user_id", "assignment_id"):
            raise ValueError(f"unsupported group_by: {group_by}")
        where, params = q.where()

        conn = self._get_conn()
        try:
            totals = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN tracking_status = 'auto' THEN 1 ELSE 0 END), 0) AS auto_n,
                    COALESCE(SUM(CASE WHEN tracking_status = 'manual' THEN 1 ELSE 0 END), 0) AS manual_n,
                    MIN(recorded_at) AS first_at,
                    MAX(recorded_at) AS last_at
                FROM locations
                WHERE {where}
                """,
                params,
            ).fetchone()
            groups = conn.execute(
                f"""
                SELECT {group_by} AS grp, COUNT(*) AS n
                FROM locations
                WHERE {where}
                GROUP BY {group_by}
                ORDER BY n DESC, grp ASC
                """,
                params,
            ).fetchall()
        finally:
            conn.close()

        return {
            "total_locations": int(totals["total"]),
            "auto_tracked": int(totals["auto_n"]),
            "manual_tracked": int(totals["manual_n"]),
            "groups": [(r["grp"], int(r["n"])) for r in groups],
            "first_recorded": totals["first_at"],
            "last_recorded": totals["last_at"],
        }
