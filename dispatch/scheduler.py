"""
Purpose: In-process delayed work for assignment retries.
What it does:
Runs a callback after a delay on a daemon timer thread, one pending timer per
key (scheduling the same key again replaces the old timer).

Rule: nothing here is persisted. A process restart drops every pending retry;
rescan_active_donations() on the dispatcher is the recovery path.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class RetryScheduler:
    def __init__(self):
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, key: str, delay_seconds: float, callback: Callable[[], None]) -> None:
        def run() -> None:
            with self._lock:
                if self._timers.get(key) is timer:
                    del self._timers[key]
            try:
                callback()
            except Exception:
                logger.exception("Scheduled job %s failed", key)

        timer = threading.Timer(delay_seconds, run)
        timer.daemon = True

        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer

        timer.start()
        logger.info("Scheduled %s in %.0f s", key, delay_seconds)

    def cancel(self, key: str) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
