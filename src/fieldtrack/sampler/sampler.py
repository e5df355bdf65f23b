# src/fieldtrack/sampler/sampler.py

"""
Device-side location sampler.

A small asyncio loop that, while a work session is active:
- acquires the current GPS fix,
- reverse-geocodes it (best-effort),
- submits it through the injected LocationSink,
- tolerates "not trackable yet" rejections and retries on the next tick.

States: IDLE -> REQUESTING_PERMISSION -> ACTIVE -> IDLE.
At most one session is active per sampler (= per device).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from enum import Enum

from ..core.ports import LocationProvider, LocationSink, Position, ReverseGeocoder, SessionMarker, SessionMarkerRepo
from ..errors import FieldTrackError, PermissionDenied, Rejected
from ..tracking.models import TrackingStatus
from .geocoder import coordinate_label

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_MARKER_MAX_AGE_SECONDS = 24 * 60 * 60.0


class SamplerState(str, Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    ACTIVE = "active"


class ClientSampler:
    def __init__(
        self,
        provider: LocationProvider,
        sink: LocationSink,
        markers: SessionMarkerRepo,
        *,
        geocoder: ReverseGeocoder | None = None,
        owns_geocoder: bool = False,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        marker_max_age_seconds: float = DEFAULT_MARKER_MAX_AGE_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._provider = provider
        self._sink = sink
        self._markers = markers
        self._geocoder = geocoder
        self._owns_geocoder = owns_geocoder
        self._interval = max(0.01, float(interval_seconds))
        self._max_age = float(marker_max_age_seconds)
        self._clock = clock or time.time

        self._state = SamplerState.IDLE
        self._assignment_id: int | None = None
        self._started_at: float | None = None
        self._loop_task: asyncio.Task[None] | None = None
        # Strong reference to the shielded submission; it may outlive _loop_task.
        self._inflight: asyncio.Task[bool] | None = None
        # One GPS acquisition + one submission at a time.
        self._flight = asyncio.Lock()

        # Bumped by stop(); a start() that sees it change gives up.
        self._generation = 0
        self._settled: asyncio.Event | None = None
        self._start_error: PermissionDenied | None = None

        self.samples_recorded = 0
        self.samples_failed = 0

    # ---- introspection ----

    @property
    def state(self) -> SamplerState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == SamplerState.ACTIVE

    @property
    def assignment_id(self) -> int | None:
        return self._assignment_id

    @property
    def started_at(self) -> float | None:
        return self._started_at

    # ---- lifecycle ----

    async def start(self, assignment_id: int, *, started_at: float | None = None) -> bool:
        """
        Begin tracking assignment_id.

        Idempotent while a session is active (returns True without touching it).
        A start issued while permission is being requested waits for that
        request and shares its outcome.
        Raises PermissionDenied when the foreground permission is refused.
        Returns False when stop() was called before the session came up.
        """
        if self._state == SamplerState.ACTIVE:
            if self._assignment_id != assignment_id:
                logger.warning(
                    "Tracking already active for assignment %s; ignoring start for %s",
                    self._assignment_id,
                    assignment_id,
                )
            else:
                logger.info("Location tracking already active for assignment %s", assignment_id)
            return True

        if self._state == SamplerState.REQUESTING_PERMISSION:
            return await self._join_pending_start(assignment_id)

        self._state = SamplerState.REQUESTING_PERMISSION
        self._generation += 1
        self._start_error = None
        settled = self._settled = asyncio.Event()
        try:
            return await self._bring_up(self._generation, assignment_id, started_at)
        finally:
            settled.set()

    async def stop(self, *, clear_marker: bool = True) -> None:
        """
        Cancel the periodic tick and forget the session.

        A submission already in flight is shielded and finishes on its own.
        A start() still waiting on permissions is abandoned.
        With clear_marker=False the persisted session survives (app shutdown).
        """
        self._generation += 1
        task = self._loop_task
        self._loop_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if clear_marker:
            self._markers.clear()
        was = self._assignment_id
        self._assignment_id = None
        self._started_at = None
        self._state = SamplerState.IDLE
        if was is not None:
            logger.info("Location tracking stopped assignment=%s", was)

    async def aclose(self) -> None:
        """Stop without touching the marker and release an owned geocoder."""
        if self._state != SamplerState.IDLE:
            await self.stop(clear_marker=False)
        if self._owns_geocoder:
            close = getattr(self._geocoder, "aclose", None)
            if close is not None:
                await close()
            self._geocoder = None

    async def resume(self) -> bool:
        """Pick up a session persisted before a restart; stale markers are dropped."""
        marker = self._markers.load()
        if marker is None:
            logger.debug("No stored tracking session found")
            return False

        age = self._clock() - marker.started_at
        if age > self._max_age:
            logger.info("Stored tracking session for assignment %s expired", marker.assignment_id)
            self._markers.clear()
            return False

        logger.info("Resuming location tracking for assignment %s", marker.assignment_id)
        try:
            return await self.start(marker.assignment_id, started_at=marker.started_at)
        except PermissionDenied:
            self._markers.clear()
            raise

    async def record_now(self) -> bool:
        """On-demand sample for the active session, tagged manual."""
        if not self.is_active:
            return False
        return await self._sample(TrackingStatus.MANUAL)

    # ---- internals ----

    def _superseded(self, generation: int) -> bool:
        if generation == self._generation:
            return False
        logger.info("Location tracking start abandoned after stop()")
        return True

    async def _join_pending_start(self, assignment_id: int) -> bool:
        logger.info("Permission request in progress; start for assignment %s waits for it", assignment_id)
        settled = self._settled
        if settled is not None:
            await settled.wait()
        if self._state == SamplerState.ACTIVE:
            return True
        if self._start_error is not None:
            raise PermissionDenied(self._start_error.message)
        return False

    async def _bring_up(self, generation: int, assignment_id: int, started_at: float | None) -> bool:
        try:
            granted = await self._provider.request_foreground_permission()
        except Exception:
            logger.exception("Foreground permission request failed")
            granted = False
        if self._superseded(generation):
            return False
        if not granted:
            self._state = SamplerState.IDLE
            self._start_error = PermissionDenied("Location permission not granted")
            raise self._start_error

        try:
            if not await self._provider.request_background_permission():
                logger.info("Background location permission denied, continuing with foreground only")
        except Exception:
            logger.warning("Background permission request failed; foreground only", exc_info=True)
        if self._superseded(generation):
            return False

        self._assignment_id = int(assignment_id)
        self._started_at = started_at if started_at is not None else self._clock()
        self._state = SamplerState.ACTIVE

        # The server may not see the session as in progress yet; a miss here is fine.
        if not await self._sample(TrackingStatus.AUTO):
            logger.info("Initial location skipped, will record at next interval")
        if self._superseded(generation):
            return False

        self._loop_task = asyncio.create_task(self._run(), name=f"location-sampler-{assignment_id}")
        self._markers.save(SessionMarker(assignment_id=self._assignment_id, started_at=self._started_at))

        logger.info(
            "Location tracking started assignment=%s interval=%.1fs",
            assignment_id,
            self._interval,
        )
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._inflight = asyncio.create_task(self._sample(TrackingStatus.AUTO))
            ok = await asyncio.shield(self._inflight)
            if not ok:
                logger.debug("Periodic location update failed, will retry next tick")

    async def _address_for(self, pos: Position) -> str:
        if self._geocoder is not None:
            try:
                address = await self._geocoder.reverse(pos.latitude, pos.longitude)
            except Exception:
                logger.warning("Reverse geocoder crashed", exc_info=True)
                address = None
            if address:
                return address
        return coordinate_label(pos.latitude, pos.longitude)

    async def _sample(self, tracking_status: TrackingStatus) -> bool:
        async with self._flight:
            assignment_id = self._assignment_id
            if assignment_id is None:
                return False

            try:
                pos = await self._provider.current_position()
            except Exception:
                logger.warning("Failed to get current location", exc_info=True)
                self.samples_failed += 1
                return False

            address = await self._address_for(pos)

            try:
                await self._sink.record(
                    assignment_id=assignment_id,
                    latitude=pos.latitude,
                    longitude=pos.longitude,
                    accuracy=pos.accuracy,
                    address=address,
                    tracking_status=tracking_status.value,
                    recorded_at=self._clock(),
                )
            except Rejected:
                logger.info("Assignment %s not ready for location recording yet, will retry", assignment_id)
                self.samples_failed += 1
                return False
            except FieldTrackError as exc:
                logger.warning("Location rejected assignment=%s: %s", assignment_id, exc.message)
                self.samples_failed += 1
                return False
            except Exception:
                logger.exception("Location submit failed assignment=%s", assignment_id)
                self.samples_failed += 1
                return False

            self.samples_recorded += 1
            logger.debug(
                "Location recorded assignment=%s lat=%.6f lon=%.6f address=%s",
                assignment_id,
                pos.latitude,
                pos.longitude,
                address,
            )
            return True
