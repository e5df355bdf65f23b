# src/fieldtrack/tracking/analytics.py

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date as ddate
from typing import Any

from ..assignments.models import Page
from ..assignments.store import AssignmentStore
from ..errors import ValidationError
from .geodesy import haversine_km, round_km
from .models import LocationSample, RouteSummary, TrackingStatus
from .store import LocationStore, SampleQuery

logger = logging.getLogger(__name__)


def total_distance(route: Sequence[LocationSample]) -> float:
    """
    Sum of consecutive pairwise distances in km.

    Each leg is rounded to 2 decimals before summing and the total is rounded
    again, so dashboards and exports show the same figure.
    """
    if len(route) < 2:
        return 0.0
    total = 0.0
    for prev, cur in zip(route, route[1:]):
        total += round_km(haversine_km(prev.latitude, prev.longitude, cur.latitude, cur.longitude))
    return round_km(total)


@dataclass(slots=True, frozen=True)
class CurrentLocations:
    assignment_id: int
    locations: dict[str, LocationSample | None]

    @property
    def total_users(self) -> int:
        return len(self.locations)

    @property
    def tracked_users(self) -> int:
        return sum(1 for s in self.locations.values() if s is not None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "current_locations": {
                uid: (s.to_dict() if s is not None else None) for uid, s in self.locations.items()
            },
            "total_users": self.total_users,
            "tracked_users": self.tracked_users,
        }


class RouteAnalytics:
    def __init__(self, assignments: AssignmentStore, locations: LocationStore) -> None:
        self._assignments = assignments
        self._locations = locations

    def get_route(
        self,
        assignment_id: int,
        user_id: str,
        date_from: Any = None,
        date_to: Any = None,
    ) -> list[LocationSample]:
        self._assignments.get(assignment_id)
        q = SampleQuery(assignment_id=assignment_id, user_id=user_id, date_from=date_from, date_to=date_to)
        return self._locations.query(q)

    def summarize_route(
        self,
        assignment_id: int,
        user_id: str,
        date_from: Any = None,
        date_to: Any = None,
    ) -> RouteSummary:
        route = self.get_route(assignment_id, user_id, date_from, date_to)
        summary = RouteSummary(
            assignment_id=assignment_id,
            user_id=user_id,
            route=route,
            total_distance_km=total_distance(route),
        )
        logger.debug(
            "Route assignment=%s user=%s points=%d km=%.2f",
            assignment_id,
            user_id,
            summary.total_points,
            summary.total_distance_km,
        )
        return summary

    def current_locations(self, assignment_id: int) -> CurrentLocations:
        assignment = self._assignments.get(assignment_id)
        latest = {uid: self._locations.latest_for(assignment.id, uid) for uid in assignment.user_ids}
        return CurrentLocations(assignment_id=assignment.id, locations=latest)

    def statistics(self, *, assignment_id: int | None = None, user_id: str | None = None) -> dict[str, Any]:
        """
        Aggregate counts for one scope:
        - assignment_id -> grouped by user
        - user_id       -> grouped by assignment (+ today's count)
        - neither       -> global, grouped by assignment
        """
        if assignment_id is not None and user_id is not None:
            raise ValidationError("statistics take either assignment_id or user_id, not both")

        if assignment_id is not None:
            self._assignments.get(assignment_id)
            agg = self._locations.aggregate(SampleQuery(assignment_id=assignment_id), group_by="user_id")
            groups = agg.pop("groups")
            agg["scope"] = {"assignment_id": assignment_id}
            agg["tracking_by_user"] = [{"user_id": g, "location_count": n} for g, n in groups]
            return agg

        if user_id is not None:
            agg = self._locations.aggregate(SampleQuery(user_id=user_id), group_by="assignment_id")
            groups = agg.pop("groups")
            agg["scope"] = {"user_id": user_id}
            agg["tracking_by_assignment"] = [{"assignment_id": g, "location_count": n} for g, n in groups]
            agg["locations_today"] = self._locations.count(SampleQuery.for_day(ddate.today(), user_id=user_id))
            return agg

        agg = self._locations.aggregate(SampleQuery(), group_by="assignment_id")
        groups = agg.pop("groups")
        agg["scope"] = {}
        agg["tracking_by_assignment"] = [{"assignment_id": g, "location_count": n} for g, n in groups]
        return agg

    def samples_for_assignment(
        self,
        assignment_id: int,
        *,
        user_id: str | None = None,
        tracking_status: TrackingStatus | None = None,
        date_from: Any = None,
        date_to: Any = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Page[LocationSample]:
        self._assignments.get(assignment_id)
        q = SampleQuery(
            assignment_id=assignment_id,
            user_id=user_id,
            tracking_status=tracking_status,
            date_from=date_from,
            date_to=date_to,
        )
        return self._page(q, page=page, per_page=per_page)

    def samples_for_user(
        self,
        user_id: str,
        *,
        assignment_id: int | None = None,
        date_from: Any = None,
        date_to: Any = None,
        day: str | ddate | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Page[LocationSample]:
        if day is not None:
            q = SampleQuery.for_day(day, user_id=user_id, assignment_id=assignment_id)
        else:
            q = SampleQuery(user_id=user_id, assignment_id=assignment_id, date_from=date_from, date_to=date_to)
        return self._page(q, page=page, per_page=per_page)

    def _page(self, q: SampleQuery, *, page: int, per_page: int) -> Page[LocationSample]:
        if page < 1 or per_page < 1:
            raise ValidationError("page and per_page must be >= 1")
        items = self._locations.query(q, newest_first=True, limit=per_page, offset=(page - 1) * per_page)
        return Page(items=items, total=self._locations.count(q), page=page, per_page=per_page)
