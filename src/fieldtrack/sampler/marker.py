# src/fieldtrack/sampler/marker.py

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path

from ..core.ports import SessionMarker

logger = logging.getLogger(__name__)


class JsonSessionMarkerStore:
    """
    Active-session marker persisted as a small JSON file.

    Writes go to a temp file first and are swapped in with os.replace, so a
    crash never leaves a half-written marker behind.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SessionMarker | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text("utf-8"))
            return SessionMarker(
                assignment_id=int(data["assignment_id"]),
                started_at=float(data["started_at"]),
            )
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning("Ignoring unreadable session marker at %s", self._path, exc_info=True)
            return None

    def save(self, marker: SessionMarker) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        payload = {"assignment_id": marker.assignment_id, "started_at": marker.started_at}
        tmp.write_text(json.dumps(payload), "utf-8")
        os.replace(tmp, self._path)
        with contextlib.suppress(OSError):
            os.chmod(self._path, 0o600)
        logger.debug("Session marker saved assignment=%s", marker.assignment_id)

    def clear(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()
        logger.debug("Session marker cleared")
