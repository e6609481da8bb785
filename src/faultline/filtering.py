# src/faultline/filtering.py
"""Event filter capability.

A filter decides, from an exception and the source tag of the capture call,
whether an event should be excluded outright. Typical use: ignore a specific
exception type only when it comes from a specific integration.

    class IgnoreClientDisconnects:
        def exclude_exception(self, exception, source):
            return source == "web" and isinstance(exception, ConnectionResetError)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import structlog

from faultline.contracts.events import Event

logger = structlog.get_logger(__name__)


@runtime_checkable
class EventFilter(Protocol):
    """Capability consulted before an exception event is sampled."""

    def exclude_exception(self, exception: BaseException, source: str | None) -> bool:
        """Return True to drop the event.

        Only called for events that carry the original exception object.
        """
        ...


def is_excluded(event_filter: EventFilter | None, event: Event) -> bool:
    """Ask event_filter whether event should be dropped.

    A filter that raises excludes the event; the failure is logged.
    """
    if event_filter is None or event.original_exception is None:
        return False
    try:
        return bool(event_filter.exclude_exception(event.original_exception, event.source))
    except Exception as e:
        logger.warning(
            "Event filter raised; excluding event",
            filter=type(event_filter).__name__,
            error=str(e),
            error_type=type(e).__name__,
        )
        return True
