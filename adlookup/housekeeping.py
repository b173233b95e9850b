from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .sessions import SessionRegistry

log = logging.getLogger(__name__)


class Housekeeper:
    """Periodic tick: expired login sweep, keepalive broadcast, coverage reset."""

    def __init__(self, registry: SessionRegistry, broadcast: Callable[[], int], interval_s: float) -> None:
        self.registry = registry
        self.broadcast = broadcast
        self.interval_s = max(1.0, float(interval_s))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> dict:
        evicted = self.registry.sweep()
        pinged = self.broadcast()
        cleared = self.registry.clear_coverage()
        summary = {"pinged": pinged, "cleared": cleared, "evicted": evicted}
        log.debug("Housekeeping: %s", summary)
        return summary

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self.tick()
            except Exception:
                log.exception("Housekeeping tick failed")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="adlookup-housekeeping", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
