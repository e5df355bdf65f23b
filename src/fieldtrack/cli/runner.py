# src/fieldtrack/cli/runner.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_lock = threading.Lock()
_current: BackgroundLoop | None = None


@dataclass
class BackgroundLoop:
    """
    An asyncio loop living in a daemon thread.

    The console REPL blocks on input(), so the device sampler (which wants a
    running loop for its periodic task) is driven from here.
    """

    thread: threading.Thread
    loop: asyncio.AbstractEventLoop

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = 30.0) -> T:
        fut = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return fut.result(timeout=timeout)

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.loop.stop)
        except RuntimeError:
            logger.debug("Background loop already closed.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_background_loop() -> BackgroundLoop:
    ready = threading.Event()
    holder: dict[str, asyncio.AbstractEventLoop] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        holder["loop"] = loop
        ready.set()
        try:
            loop.run_forever()
        finally:
            with contextlib.suppress(Exception):
                loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    t = threading.Thread(target=runner, name="fieldtrack-sampler", daemon=True)
    t.start()

    if not ready.wait(timeout=5.0) or "loop" not in holder:
        raise RuntimeError("Background event loop did not start")

    logger.info("Sampler background loop started.")
    return BackgroundLoop(thread=t, loop=holder["loop"])


def get_background_loop() -> BackgroundLoop:
    global _current
    with _lock:
        if _current is None or not _current.thread.is_alive():
            _current = start_background_loop()
        return _current


def shutdown_background_loop(timeout: float = 5.0) -> None:
    global _current
    with _lock:
        runner, _current = _current, None
    if runner is None:
        return
    runner.stop()
    runner.join(timeout=timeout)
