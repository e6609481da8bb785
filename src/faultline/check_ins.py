# src/faultline/check_ins.py
"""Check-in correlation.

When a monitor run starts (status in_progress) the collector answers with a
check-in id. The finishing check-in (ok/error) for the same monitor slug must
carry that id so the collector closes the same run instead of opening a new
one. This module remembers slug -> id for as long as the run may plausibly
last, then forgets it so monitors that never finish cannot grow the map.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)


class CheckInIdMappings:
    """Expiring monitor slug -> in-progress check-in id map.

    Example:
        mappings = CheckInIdMappings(default_ttl_seconds=600)
        mappings.record("nightly-backup", "c0ffee", ttl_seconds=30 * 60)
        mappings.pop("nightly-backup")   # "c0ffee"
    """

    def __init__(
        self,
        default_ttl_seconds: float = 600.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError(f"default_ttl_seconds must be > 0, got {default_ttl_seconds}")
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[str, float]] = {}

    def record(self, monitor_slug: str, check_in_id: str, ttl_seconds: float | None = None) -> None:
        """Remember the id of the run that just started for monitor_slug."""
        ttl = ttl_seconds if ttl_seconds is not None and ttl_seconds > 0 else self._default_ttl
        with self._lock:
            self._entries[monitor_slug] = (check_in_id, self._clock() + ttl)

    def lookup(self, monitor_slug: str) -> str | None:
        """Return the recorded id for monitor_slug if it has not expired."""
        with self._lock:
            entry = self._entries.get(monitor_slug)
            if entry is None:
                return None
            check_in_id, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[monitor_slug]
                return None
            return check_in_id

    def pop(self, monitor_slug: str) -> str | None:
        """Return and forget the recorded id for monitor_slug."""
        with self._lock:
            entry = self._entries.pop(monitor_slug, None)
        if entry is None:
            return None
        check_in_id, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return check_in_id

    def sweep(self) -> int:
        """Forget expired runs. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [slug for slug, (_, expires_at) in self._entries.items() if now >= expires_at]
            for slug in expired:
                del self._entries[slug]
        if expired:
            logger.debug("Expired check-in mappings removed", removed=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
