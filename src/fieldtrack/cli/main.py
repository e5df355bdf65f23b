# src/fieldtrack/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs the console REPL in the main
thread. The simulated device sampler (/track) runs on a background loop that
is started lazily and torn down here.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..logging_setup import setup_logging
from .bootstrap import create_initial_state
from .console import run_console_loop
from .runner import get_background_loop, shutdown_background_loop

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    sampler = getattr(state, "sampler", None)
    if sampler is not None:
        # aclose() leaves the session marker in place so the next run can resume.
        try:
            get_background_loop().run(sampler.aclose(), timeout=10.0)
        except Exception:
            logger.exception("Failed to stop the sampler.")

    try:
        shutdown_background_loop()
    except Exception:
        logger.debug("Background loop shutdown failed.", exc_info=True)

    # Stores use short-lived sqlite connections per call; close() is a no-op kept for symmetry.
    for name in ("directory", "assignments", "locations"):
        store = getattr(state, name, None)
        if store is not None and hasattr(store, "close"):
            store.close()


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/fieldtrack")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "fieldtrack"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        run_console_loop(state)
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
