# src/fieldtrack/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..assignments.directory import DirectoryStore
from ..assignments.models import Actor, User
from ..assignments.store import AssignmentStore
from ..tracking.analytics import RouteAnalytics
from ..tracking.ingest import LocationIngestor
from ..tracking.proximity import ProximitySearch
from ..tracking.store import LocationStore

if TYPE_CHECKING:
    from ..sampler.sampler import ClientSampler


@dataclass
class AppState:
    """Everything a request handler or console command needs, wired once at startup."""

    settings: Any

    directory: DirectoryStore
    assignments: AssignmentStore
    locations: LocationStore
    ingestor: LocationIngestor
    analytics: RouteAnalytics
    proximity: ProximitySearch

    # Console-only: who is typing, and the simulated device sampler.
    current_actor: Actor | None = None
    sampler: ClientSampler | None = None

    def actor_for(self, user: User) -> Actor:
        roles = getattr(self.settings, "elevated_roles", None)
        return Actor.for_user(user, roles)
