# src/fieldtrack/tracking/models.py

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..errors import PartialBatchFailure, ValidationError

MAX_ADDRESS_LENGTH = 255


class TrackingStatus(StrEnum):
    """auto = periodic device sampler, manual = explicit user action."""

    AUTO = "auto"
    MANUAL = "manual"

    @classmethod
    def parse(cls, raw: str | TrackingStatus | None, default: TrackingStatus) -> TrackingStatus:
        if raw is None or raw == "":
            return default
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"tracking_status must be 'auto' or 'manual', got {raw!r}") from None


@dataclass(slots=True, frozen=True)
class LocationSample:
    id: int
    assignment_id: int
    user_id: str
    latitude: float
    longitude: float
    accuracy: float | None
    address: str | None
    tracking_status: TrackingStatus
    recorded_at: float
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "user_id": self.user_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "address": self.address,
            "tracking_status": self.tracking_status.value,
            "recorded_at": self.recorded_at,
        }


def _coerce_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric")
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be numeric, got {value!r}") from None
    if not math.isfinite(out):
        raise ValidationError(f"{name} must be finite")
    return out


def validate_coordinates(latitude: Any, longitude: Any) -> tuple[float, float]:
    lat = _coerce_float(latitude, "latitude")
    lon = _coerce_float(longitude, "longitude")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"latitude must be between -90 and 90, got {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValidationError(f"longitude must be between -180 and 180, got {lon}")
    return lat, lon


def coerce_timestamp(value: Any, name: str = "recorded_at") -> float | None:
    """Accept epoch seconds, datetimes or ISO-8601 strings."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).timestamp()
        except ValueError:
            raise ValidationError(f"{name} must be an ISO-8601 datetime, got {value!r}") from None
    return _coerce_float(value, name)


@dataclass(slots=True)
class SampleInput:
    """One location sample as submitted by a device (single or inside a batch)."""

    assignment_id: int
    latitude: Any
    longitude: Any
    user_id: str | None = None
    accuracy: Any = None
    address: str | None = None
    tracking_status: str | TrackingStatus | None = None
    recorded_at: Any = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SampleInput:
        if not isinstance(data, Mapping):
            raise ValidationError("batch item must be an object")
        raw_id = data.get("assignment_id", data.get("taken_task_id"))
        if raw_id is None:
            raise ValidationError("assignment_id is required")
        try:
            assignment_id = int(raw_id)
        except (TypeError, ValueError):
            raise ValidationError(f"assignment_id must be an integer, got {raw_id!r}") from None
        if "latitude" not in data or "longitude" not in data:
            raise ValidationError("latitude and longitude are required")
        return cls(
            assignment_id=assignment_id,
            latitude=data["latitude"],
            longitude=data["longitude"],
            user_id=data.get("user_id"),
            accuracy=data.get("accuracy"),
            address=data.get("address"),
            tracking_status=data.get("tracking_status"),
            recorded_at=data.get("recorded_at"),
        )


@dataclass(slots=True, frozen=True)
class BatchItemError:
    index: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "reason": self.reason}


@dataclass(slots=True)
class BatchResult:
    """
    Outcome of a batch ingestion.

    Item failures never abort the batch; the overall outcome is ok as soon as a
    single sample was stored.
    """

    samples: list[LocationSample] = field(default_factory=list)
    errors: list[BatchItemError] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.samples)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return self.created_count > 0

    @property
    def partial(self) -> bool:
        return self.ok and self.error_count > 0

    def raise_for_failure(self) -> None:
        if not self.ok:
            raise PartialBatchFailure(f"No location recorded ({self.error_count} error(s))", self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": f"{self.created_count} location(s) recorded successfully",
            "created_count": self.created_count,
            "error_count": self.error_count,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass(slots=True, frozen=True)
class NearbySample:
    sample: LocationSample
    distance_km: float

    def to_dict(self) -> dict[str, Any]:
        out = self.sample.to_dict()
        out["distance_km"] = self.distance_km
        return out


@dataclass(slots=True, frozen=True)
class RouteSummary:
    assignment_id: int
    user_id: str
    route: list[LocationSample]
    total_distance_km: float

    @property
    def total_points(self) -> int:
        return len(self.route)

    @property
    def start_time(self) -> float | None:
        return self.route[0].recorded_at if self.route else None

    @property
    def end_time(self) -> float | None:
        return self.route[-1].recorded_at if self.route else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "user_id": self.user_id,
            "route": [s.to_dict() for s in self.route],
            "total_points": self.total_points,
            "total_distance_km": self.total_distance_km,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }
