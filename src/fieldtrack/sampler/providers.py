# src/fieldtrack/sampler/providers.py

"""
Concrete adapters for the sampler ports that run in-process.

- IngestorSink: submits straight into a LocationIngestor (console / local runs)
- StaticLocationProvider: a fixed position, for the console /track command
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..core.ports import Position
from ..tracking.ingest import LocationIngestor
from ..tracking.models import LocationSample

logger = logging.getLogger(__name__)


class IngestorSink:
    """LocationSink bound to one worker identity; store calls run in a worker thread."""

    def __init__(self, ingestor: LocationIngestor, user_id: str) -> None:
        self._ingestor = ingestor
        self._user_id = user_id

    async def record(
        self,
        *,
        assignment_id: int,
        latitude: float,
        longitude: float,
        accuracy: float | None = None,
        address: str | None = None,
        tracking_status: str = "auto",
        recorded_at: float | None = None,
    ) -> LocationSample:
        return await asyncio.to_thread(
            self._ingestor.record,
            assignment_id,
            self._user_id,
            latitude,
            longitude,
            accuracy,
            address,
            tracking_status,
            recorded_at,
        )


class StaticLocationProvider:
    def __init__(
        self,
        position: Position,
        *,
        foreground_granted: bool = True,
        background_granted: bool = True,
    ) -> None:
        self.position = position
        self.foreground_granted = foreground_granted
        self.background_granted = background_granted

    async def request_foreground_permission(self) -> bool:
        return self.foreground_granted

    async def request_background_permission(self) -> bool:
        return self.background_granted

    async def current_position(self) -> Position:
        return self.position

    def move_to(self, latitude: float, longitude: float, accuracy: Any = None) -> None:
        self.position = Position(latitude=latitude, longitude=longitude, accuracy=accuracy)
