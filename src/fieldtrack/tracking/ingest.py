# src/fieldtrack/tracking/ingest.py

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..assignments.models import AssignmentStatus
from ..assignments.store import AssignmentStore
from ..errors import AuthorizationError, FieldTrackError, Rejected, ValidationError
from .models import (
    MAX_ADDRESS_LENGTH,
    BatchItemError,
    BatchResult,
    LocationSample,
    SampleInput,
    TrackingStatus,
    coerce_timestamp,
    validate_coordinates,
)
from .store import LocationStore

logger = logging.getLogger(__name__)

NOT_TRACKABLE = "Location tracking is only available for assignments in progress"


def _clean_accuracy(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("accuracy must be numeric")
    try:
        acc = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"accuracy must be numeric, got {value!r}") from None
    if acc != acc or acc < 0:
        raise ValidationError("accuracy must be >= 0 meters")
    return acc


def _clean_address(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("address must be a string")
    s = value.strip()
    if not s:
        return None
    if len(s) > MAX_ADDRESS_LENGTH:
        raise ValidationError(f"address must be at most {MAX_ADDRESS_LENGTH} characters")
    return s


class LocationIngestor:
    """
    Validates and persists location samples.

    Single samples fail fast. Batches are tolerant: each item goes through the
    same checks on its own and a failure only costs that item, because device
    connectivity is unreliable and batches are assembled opportunistically.
    """

    def __init__(
        self,
        assignments: AssignmentStore,
        locations: LocationStore,
        *,
        max_batch_size: int = 100,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._assignments = assignments
        self._locations = locations
        self._max_batch = max(1, int(max_batch_size))
        self._clock = clock or time.time

    def record(
        self,
        assignment_id: int,
        user_id: str,
        latitude: Any,
        longitude: Any,
        accuracy: Any = None,
        address: Any = None,
        tracking_status: str | TrackingStatus | None = TrackingStatus.AUTO,
        recorded_at: Any = None,
    ) -> LocationSample:
        assignment = self._assignments.get(assignment_id)
        if not assignment.has_user(user_id):
            raise AuthorizationError(f"User {user_id} is not assigned to assignment {assignment_id}")
        if assignment.status != AssignmentStatus.IN_PROGRESS:
            raise Rejected(NOT_TRACKABLE)

        lat, lon = validate_coordinates(latitude, longitude)
        acc = _clean_accuracy(accuracy)
        addr = _clean_address(address)
        status = TrackingStatus.parse(tracking_status, TrackingStatus.AUTO)
        ts = coerce_timestamp(recorded_at)
        if ts is None:
            ts = self._clock()

        sample = self._locations.insert_if_trackable(
            assignment_id=assignment.id,
            user_id=user_id,
            latitude=lat,
            longitude=lon,
            accuracy=acc,
            address=addr,
            tracking_status=status,
            recorded_at=ts,
        )
        if sample is None:
            # Completed (or reset) between the status read and the insert.
            logger.debug("Location dropped, assignment %s left in_progress mid-insert", assignment.id)
            raise Rejected(NOT_TRACKABLE)
        return sample

    def record_input(self, item: SampleInput, user_id: str | None = None) -> LocationSample:
        uid = item.user_id or user_id
        if not uid:
            raise ValidationError("user_id is required")
        if user_id is not None and item.user_id and item.user_id != user_id:
            raise AuthorizationError("Batch items must belong to the submitting user")
        return self.record(
            item.assignment_id,
            uid,
            item.latitude,
            item.longitude,
            accuracy=item.accuracy,
            address=item.address,
            tracking_status=item.tracking_status,
            recorded_at=item.recorded_at,
        )

    def record_batch(
        self,
        items: Iterable[SampleInput | Mapping[str, Any]],
        user_id: str | None = None,
    ) -> BatchResult:
        """
        Store 1..max_batch_size samples independently, in input order.

        Returns created/error counts; errors carry the item index and reason.
        Only the batch envelope (size) is validated up front.
        """
        batch = list(items)
        if not 1 <= len(batch) <= self._max_batch:
            raise ValidationError(f"locations must contain between 1 and {self._max_batch} items")

        result = BatchResult()
        for index, raw in enumerate(batch):
            try:
                item = raw if isinstance(raw, SampleInput) else SampleInput.from_mapping(raw)
                result.samples.append(self.record_input(item, user_id))
            except FieldTrackError as exc:
                result.errors.append(BatchItemError(index=index, reason=exc.message))
            except sqlite3.Error as exc:
                logger.exception("Batch item %d failed in storage", index)
                result.errors.append(BatchItemError(index=index, reason=f"storage error: {exc}"))

        logger.info(
            "Location batch user=%s size=%d created=%d errors=%d",
            user_id,
            len(batch),
            result.created_count,
            result.error_count,
        )
        return result
