# src/fieldtrack/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path


# Loggers that fire once per location sample; their chatter belongs in the file.
_PER_SAMPLE_LOGGERS = (
    "fieldtrack.tracking.ingest",
    "fieldtrack.tracking.store",
)


class _ConsoleNoiseFilter(logging.Filter):
    """
    Console routing for fieldtrack's own loggers:
    - per-sample ingest and store records only at INFO+ (DEBUG goes to the file)
    - the background sampler only at WARNING+, it ticks while the prompt waits
    - the rest of fieldtrack (assignments, api, cli) passes through
    - third-party and py.warnings records only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if not name.startswith("fieldtrack."):
            return record.levelno >= logging.ERROR

        if name.startswith(_PER_SAMPLE_LOGGERS):
            return record.levelno >= logging.INFO
        if name.startswith("fieldtrack.sampler."):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/fieldtrack",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> None:
    """
    Configure logging with:
    - Console handler: readable + filtered for interactive use
    - File handler: full logs for debugging

    Call this ONCE, very early (before first logger.info).
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "fieldtrack.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
