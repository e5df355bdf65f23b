# src/fieldtrack/tracking/proximity.py

from __future__ import annotations

import logging
from typing import Any

from ..assignments.models import Page, paginate
from ..errors import ValidationError
from .geodesy import bounding_box, haversine_km, round_km
from .models import NearbySample, validate_coordinates
from .store import LocationStore, SampleQuery

logger = logging.getLogger(__name__)

MIN_RADIUS_KM = 0.1
MAX_RADIUS_KM = 50.0
DEFAULT_RADIUS_KM = 1.0


class ProximitySearch:
    """
    Samples within a radius of a coordinate.

    SQL narrows candidates with a lat/lon box; haversine_km (the same routine
    route distances use) decides membership and ordering.
    """

    def __init__(self, locations: LocationStore) -> None:
        self._locations = locations

    def find_nearby(
        self,
        latitude: Any,
        longitude: Any,
        radius_km: Any = DEFAULT_RADIUS_KM,
        assignment_id: int | None = None,
        date_from: Any = None,
        date_to: Any = None,
        *,
        page: int = 1,
        per_page: int = 50,
    ) -> Page[NearbySample]:
        lat, lon = validate_coordinates(latitude, longitude)
        try:
            radius = float(radius_km)
        except (TypeError, ValueError):
            raise ValidationError(f"radius must be numeric, got {radius_km!r}") from None
        if not MIN_RADIUS_KM <= radius <= MAX_RADIUS_KM:
            raise ValidationError(f"radius must be between {MIN_RADIUS_KM} and {MAX_RADIUS_KM} km")

        q = SampleQuery(assignment_id=assignment_id, date_from=date_from, date_to=date_to)
        candidates = self._locations.in_box(bounding_box(lat, lon, radius), q)

        scored: list[tuple[float, int, NearbySample]] = []
        for s in candidates:
            d = haversine_km(lat, lon, s.latitude, s.longitude)
            if d <= radius:
                scored.append((d, s.id, NearbySample(sample=s, distance_km=round_km(d))))
        # Exact distance first, sample id as tie-break for stable pages.
        scored.sort(key=lambda t: (t[0], t[1]))
        hits = [t[2] for t in scored]

        logger.debug(
            "Nearby lat=%.6f lon=%.6f r=%.2f candidates=%d hits=%d",
            lat,
            lon,
            radius,
            len(candidates),
            len(hits),
        )
        result = paginate(hits, page=page, per_page=per_page)
        result.extra["search_center"] = {"latitude": lat, "longitude": lon, "radius_km": radius}
        return result
