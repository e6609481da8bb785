# src/faultline/rate_limit.py
"""Collector-driven rate limiting.

Unlike a token bucket, these limits are not configured locally: the
collector tells the client to back off via response headers, and the client
stops sending the affected categories until the deadline passes.

Supported directives:
- X-Sentry-Rate-Limits: "60:transaction;error:organization, 2700::key"
  (seconds:categories:scope..., an empty category list means all categories)
- Retry-After: seconds or an HTTP date, applied to the DEFAULT category
- A bare 429 with neither header backs off DEFAULT for 60 seconds

Thread Safety:
    Deadlines only move forward. Writers hold a lock while taking the max of
    the existing and the new deadline; readers (check) do a plain dict lookup
    and never block.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import structlog

from faultline.contracts.enums import DataCategory

logger = structlog.get_logger(__name__)

RATE_LIMITS_HEADER = "X-Sentry-Rate-Limits"
RETRY_AFTER_HEADER = "Retry-After"

DEFAULT_RETRY_AFTER_SECONDS = 60.0

# Category names the collector uses that differ from ours
_CATEGORY_ALIASES: dict[str, str] = {"monitor": DataCategory.CHECK_IN.value}


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into seconds from now.

    Returns None when the header is missing or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    current = now or datetime.now(tz=UTC)
    return max(0.0, (when - current).total_seconds())


def parse_rate_limits(value: str) -> list[tuple[float, tuple[str, ...]]]:
    """Parse a rate limits header into (seconds, categories) pairs.

    An empty categories tuple means every category. Malformed entries are
    skipped.
    """
    limits: list[tuple[float, tuple[str, ...]]] = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        seconds_str, _, rest = entry.partition(":")
        try:
            seconds = float(seconds_str)
        except ValueError:
            logger.debug("Skipping malformed rate limit entry", entry=entry)
            continue
        categories_str = rest.split(":", 1)[0]
        categories = tuple(
            _CATEGORY_ALIASES.get(category, category)
            for category in (c.strip() for c in categories_str.split(";"))
            if category
        )
        limits.append((max(0.0, seconds), categories))
    return limits


class RateLimiter:
    """Per-category "do not send until" deadlines learned from the collector.

    Example:
        limiter = RateLimiter()
        limiter.apply(response.headers.get(RATE_LIMITS_HEADER), response.headers.get(RETRY_AFTER_HEADER))
        if not limiter.check(DataCategory.ERROR):
            ...  # drop, counted as ratelimit_backoff
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize with no active limits.

        Args:
            clock: Monotonic time source (injectable for tests)
        """
        self._clock = clock
        self._deadlines: dict[str, float] = {}
        self._write_lock = threading.Lock()

    def check(self, category: str) -> bool:
        """Return True if category may be sent now.

        DEFAULT blocks every category.
        """
        now = self._clock()
        for key in (str(category), DataCategory.DEFAULT.value):
            deadline = self._deadlines.get(key)
            if deadline is None:
                continue
            if now < deadline:
                return False
            self._purge_if_expired(key, deadline)
        return True

    def blocked_until(self, category: str) -> float | None:
        """Effective deadline (clock units) for category, or None if not blocked."""
        now = self._clock()
        deadlines = [
            d for d in (self._deadlines.get(str(category)), self._deadlines.get(DataCategory.DEFAULT.value)) if d is not None and d > now
        ]
        return max(deadlines, default=None)

    def update(self, category: str, seconds: float) -> None:
        """Block category for seconds from now, never shortening an existing block."""
        deadline = self._clock() + seconds
        key = str(category)
        with self._write_lock:
            current = self._deadlines.get(key)
            if current is None or deadline > current:
                self._deadlines[key] = deadline

    def apply(
        self,
        rate_limits: str | None,
        retry_after: str | None,
        *,
        status_code: int | None = None,
    ) -> None:
        """Install backoff directives from a collector response.

        Called for every response regardless of status.

        Args:
            rate_limits: Value of the rate limits header, if present
            retry_after: Value of the Retry-After header, if present
            status_code: HTTP status; a bare 429 installs the default backoff
        """
        if rate_limits:
            for seconds, categories in parse_rate_limits(rate_limits):
                for category in categories or (DataCategory.DEFAULT.value,):
                    self.update(category, seconds)
                logger.info(
                    "Collector rate limit applied",
                    seconds=seconds,
                    categories=list(categories) or [DataCategory.DEFAULT.value],
                )
            return

        seconds = parse_retry_after(retry_after)
        if seconds is None and status_code == 429:
            seconds = DEFAULT_RETRY_AFTER_SECONDS
        if seconds is not None:
            self.update(DataCategory.DEFAULT.value, seconds)
            logger.info("Collector requested global backoff", seconds=seconds, status_code=status_code)

    def _purge_if_expired(self, key: str, deadline: float) -> None:
        with self._write_lock:
            # A writer may have installed a newer deadline since we read it
            if self._deadlines.get(key) == deadline:
                del self._deadlines[key]

    def active(self) -> dict[str, float]:
        """Snapshot of unexpired deadlines, for diagnostics."""
        now = self._clock()
        return {key: deadline for key, deadline in list(self._deadlines.items()) if deadline > now}

    def reset(self) -> None:
        with self._write_lock:
            self._deadlines.clear()
