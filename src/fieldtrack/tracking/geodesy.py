# src/fieldtrack/tracking/geodesy.py

"""
The one great-circle routine of the project.

Route distance and proximity search both go through haversine_km so the two
call sites can never disagree numerically.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = math.pi * EARTH_RADIUS_KM / 180.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km on a sphere of radius 6371 km (unrounded)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    # Rounding noise can push a a hair outside [0, 1].
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def round_km(value: float) -> float:
    return round(value, 2)


@dataclass(slots=True, frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float
    wraps_antimeridian: bool = False


def bounding_box(lat: float, lon: float, radius_km: float) -> BoundingBox:
    """
    Coarse lat/lon box that contains every point within radius_km of (lat, lon).

    Only a prefilter: exact membership is decided by haversine_km.
    """
    dlat = radius_km / KM_PER_DEGREE_LAT
    min_lat = max(-90.0, lat - dlat)
    max_lat = min(90.0, lat + dlat)

    # Near the poles every longitude may be in range.
    cos_lat = math.cos(math.radians(max(abs(min_lat), abs(max_lat))))
    if cos_lat <= 1e-9 or max_lat >= 90.0 or min_lat <= -90.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    dlon = radius_km / (KM_PER_DEGREE_LAT * cos_lat)
    if dlon >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    min_lon = lon - dlon
    max_lon = lon + dlon
    if min_lon < -180.0:
        return BoundingBox(min_lat, max_lat, min_lon + 360.0, max_lon, wraps_antimeridian=True)
    if max_lon > 180.0:
        return BoundingBox(min_lat, max_lat, min_lon, max_lon - 360.0, wraps_antimeridian=True)
    return BoundingBox(min_lat, max_lat, min_lon, max_lon)
