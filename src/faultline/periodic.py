# src/faultline/periodic.py
"""Background timer for housekeeping work.

Each PeriodicTask owns one daemon thread that sleeps on a threading.Event,
so stop() wakes it immediately instead of waiting out the interval. Work
never runs on a sender thread, so a stalled request cannot delay a sweep or
a client report flush.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)


class PeriodicTask:
    """Run fn every interval seconds until stopped.

    Exceptions raised by fn are logged and swallowed; the next tick still runs.

    Example:
        sweeper = PeriodicTask("dedup-sweep", 10.0, cache.sweep)
        sweeper.start()
        ...
        sweeper.stop()
    """

    def __init__(self, name: str, interval: float, fn: Callable[[], object]) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self.name = name
        self._interval = interval
        self._fn = fn
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"faultline-{self.name}", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            self.run_once()

    def run_once(self) -> None:
        """Run the task body now, on the calling thread."""
        try:
            self._fn()
        except Exception as e:
            logger.warning("Periodic task failed", task=self.name, error=str(e), error_type=type(e).__name__)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the timer thread. Idempotent."""
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.error("Periodic task did not exit cleanly within timeout", task=self.name)
