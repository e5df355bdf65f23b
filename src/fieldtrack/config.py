# src/fieldtrack/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Every tunable the stores and the sampler read lives here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List

from dotenv import load_dotenv

ENV_PREFIX = "FIELDTRACK"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    marker_path: Path

    # ---- Assignment lifecycle ----
    elevated_roles: List[str]
    enforce_work_hours_on_start: bool
    elevated_overrides_work_hours: bool

    # ---- Listings / ingestion ----
    assignments_page_size: int
    locations_page_size: int
    max_batch_size: int

    # ---- Device sampler ----
    sample_interval_seconds: float
    marker_max_age_seconds: float

    # ---- Reverse geocoding ----
    geocoder_enabled: bool
    geocoder_base_url: str
    geocoder_user_agent: str
    geocoder_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "fieldtrack")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/fieldtrack"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "fieldtrack.sqlite3")
        marker_path = _env_path(_k("MARKER_PATH"), data_dir / "active_tracking.json")

        elevated_roles = _env_list(_k("ELEVATED_ROLES"), ["admin", "superadmin"])
        enforce_work_hours_on_start = _env_bool(_k("ENFORCE_WORK_HOURS_ON_START"), True)
        elevated_overrides_work_hours = _env_bool(_k("ELEVATED_OVERRIDES_WORK_HOURS"), True)

        assignments_page_size = _env_int(_k("ASSIGNMENTS_PAGE_SIZE"), 15)
        locations_page_size = _env_int(_k("LOCATIONS_PAGE_SIZE"), 50)
        max_batch_size = _env_int(_k("MAX_BATCH_SIZE"), 100)

        sample_interval_seconds = _env_float(_k("SAMPLE_INTERVAL_SECONDS"), 60.0)
        marker_max_age_seconds = _env_float(_k("MARKER_MAX_AGE_SECONDS"), 24 * 60 * 60.0)

        geocoder_enabled = _env_bool(_k("GEOCODER_ENABLED"), False)
        geocoder_base_url = _env(_k("GEOCODER_BASE_URL"), "https://nominatim.openstreetmap.org")
        geocoder_user_agent = _env(_k("GEOCODER_USER_AGENT"), f"{app_name}/0.1")
        geocoder_timeout_seconds = _env_float(_k("GEOCODER_TIMEOUT_SECONDS"), 5.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            marker_path=marker_path,
            elevated_roles=elevated_roles,
            enforce_work_hours_on_start=enforce_work_hours_on_start,
            elevated_overrides_work_hours=elevated_overrides_work_hours,
            assignments_page_size=assignments_page_size,
            locations_page_size=locations_page_size,
            max_batch_size=max_batch_size,
            sample_interval_seconds=sample_interval_seconds,
            marker_max_age_seconds=marker_max_age_seconds,
            geocoder_enabled=geocoder_enabled,
            geocoder_base_url=geocoder_base_url,
            geocoder_user_agent=geocoder_user_agent,
            geocoder_timeout_seconds=geocoder_timeout_seconds,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
