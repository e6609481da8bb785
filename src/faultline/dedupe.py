# src/faultline/dedupe.py
"""Time-windowed duplicate suppression.

The first occurrence of a fingerprint within the window is sent; every
repeat inside the window is dropped without re-arming the window. This
breaks feedback loops (an error handler that reports its own failure) while
letting genuinely recurring errors through once the window has passed.

Thread Safety:
    Fingerprints are spread over a fixed number of shards, each guarded by
    its own lock. should_send() is an atomic test-and-set within one shard,
    so two concurrent duplicates can never both pass, and unrelated
    fingerprints rarely contend.
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable
from typing import Any

import rfc8785
import structlog

from faultline.contracts.events import Event

logger = structlog.get_logger(__name__)

_SHARD_COUNT = 16


def event_fingerprint(event: Event) -> str:
    """Derive the dedup key for an event.

    An explicit event fingerprint wins. Otherwise the key covers the message
    template and parameters, the exception types and values, the level and
    the source tag; ids and timestamps never contribute.
    """
    if event.fingerprint:
        shape: dict[str, Any] = {"fingerprint": list(event.fingerprint)}
    else:
        shape = {
            "message": event.message,
            "params": [str(p) for p in event.message_params],
            "exceptions": [[info.type, info.value] for info in event.exceptions],
            "level": event.level.value,
            "source": event.source,
        }
    return hashlib.sha256(rfc8785.dumps(shape)).hexdigest()


class _Shard:
    __slots__ = ("entries", "lock")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, float] = {}


class DedupCache:
    """Fingerprint -> last-seen time, expiring after a fixed window.

    Expired entries are treated as absent on lookup and overwritten; sweep()
    removes them in bulk to bound memory and is run periodically by the Client.

    Example:
        cache = DedupCache(window_seconds=5.0)
        if cache.should_send(event_fingerprint(event)):
            send(event)
    """

    def __init__(self, window_seconds: float = 5.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the cache.

        Args:
            window_seconds: How long a fingerprint suppresses repeats
            clock: Monotonic time source (injectable for tests)

        Raises:
            ValueError: If window_seconds is not positive.
        """
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {window_seconds}")
        self._window = window_seconds
        self._clock = clock
        self._shards = tuple(_Shard() for _ in range(_SHARD_COUNT))

    @property
    def window_seconds(self) -> float:
        return self._window

    def _shard_for(self, fingerprint: str) -> _Shard:
        return self._shards[hash(fingerprint) % _SHARD_COUNT]

    def should_send(self, fingerprint: str) -> bool:
        """Return True and record fingerprint unless it was seen within the window."""
        shard = self._shard_for(fingerprint)
        now = self._clock()
        with shard.lock:
            last_seen = shard.entries.get(fingerprint)
            if last_seen is not None and now - last_seen < self._window:
                return False
            shard.entries[fingerprint] = now
            return True

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired = [fp for fp, seen in shard.entries.items() if now - seen >= self._window]
                for fp in expired:
                    del shard.entries[fp]
                removed += len(expired)
        if removed:
            logger.debug("Dedup cache swept", removed=removed, remaining=len(self))
        return removed

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)
