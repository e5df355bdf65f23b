# src/fieldtrack/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite stores and services into AppState,
- builds the device sampler for the console /track command.
"""

from __future__ import annotations

import logging

from ..assignments.directory import DirectoryStore
from ..assignments.status import StatusComputer
from ..assignments.store import AssignmentStore
from ..config import get_settings
from ..core.ports import Position, ReverseGeocoder
from ..core.state import AppState
from ..sampler.geocoder import NominatimGeocoder, NullGeocoder
from ..sampler.marker import JsonSessionMarkerStore
from ..sampler.providers import IngestorSink, StaticLocationProvider
from ..sampler.sampler import ClientSampler
from ..tracking.analytics import RouteAnalytics
from ..tracking.ingest import LocationIngestor
from ..tracking.proximity import ProximitySearch
from ..tracking.store import LocationStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.marker_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, status_computer: StatusComputer | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    directory = DirectoryStore(settings.db_path)
    assignments = AssignmentStore(
        settings.db_path,
        directory,
        status_computer=status_computer,
        enforce_work_hours_on_start=settings.enforce_work_hours_on_start,
        elevated_overrides_work_hours=settings.elevated_overrides_work_hours,
    )
    # Same file: sample inserts are guarded by the assignment's status in SQL.
    locations = LocationStore(settings.db_path)

    return AppState(
        settings=settings,
        directory=directory,
        assignments=assignments,
        locations=locations,
        ingestor=LocationIngestor(assignments, locations, max_batch_size=settings.max_batch_size),
        analytics=RouteAnalytics(assignments, locations),
        proximity=ProximitySearch(locations),
    )


def build_geocoder(settings) -> ReverseGeocoder:
    if not getattr(settings, "geocoder_enabled", False):
        return NullGeocoder()
    return NominatimGeocoder(
        base_url=settings.geocoder_base_url,
        user_agent=settings.geocoder_user_agent,
        timeout_seconds=settings.geocoder_timeout_seconds,
    )


def build_sampler(state: AppState, user_id: str, position: Position) -> ClientSampler:
    """A sampler that reports a fixed position for user_id straight into the local ingestor."""
    settings = state.settings
    return ClientSampler(
        StaticLocationProvider(position),
        IngestorSink(state.ingestor, user_id),
        JsonSessionMarkerStore(settings.marker_path),
        geocoder=build_geocoder(settings),
        owns_geocoder=True,
        interval_seconds=settings.sample_interval_seconds,
        marker_max_age_seconds=settings.marker_max_age_seconds,
    )
