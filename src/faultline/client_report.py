# src/faultline/client_report.py
"""Client-side drop accounting.

Every item the client drops locally (sampling, hooks, dedup, rate limits,
network failures, queue overflow) is counted here by (reason, category).
Periodically, and at shutdown, the counts are sent to the collector as a
client_report item so the server can see how much telemetry never arrived.

Reports are best-effort: a failed report is logged at debug level and
discarded, never retried and never counted in a later report.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from faultline.contracts.enums import DataCategory, DiscardReason, ItemType
from faultline.envelope import Item

logger = structlog.get_logger(__name__)

# Reasons the wire protocol knows about; local-only reasons are folded in
_WIRE_REASON: dict[DiscardReason, DiscardReason] = {DiscardReason.DUPLICATE: DiscardReason.EVENT_PROCESSOR}


@dataclass(frozen=True, slots=True)
class ClientReport:
    """Snapshot of drop counts since the previous report."""

    timestamp: float
    discarded: tuple[tuple[str, str, int], ...]

    @property
    def total(self) -> int:
        return sum(quantity for _, _, quantity in self.discarded)

    def to_payload(self) -> dict[str, Any]:
        return {
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=UTC).isoformat(),
            "discarded_events": [
                {"reason": reason, "category": category, "quantity": quantity}
                for reason, category, quantity in self.discarded
            ],
        }

    def to_item(self) -> Item:
        return Item.from_json(ItemType.CLIENT_REPORT, self.to_payload())


class ClientReportAggregator:
    """Counts dropped items and periodically emits them as a client report.

    Thread Safety:
        record() and take() may be called from any thread; the counter map
        is swapped out atomically under a lock so no drop is counted twice
        or lost between reports.

    Example:
        aggregator = ClientReportAggregator(send=client.send_internal_item)
        aggregator.record(DiscardReason.SAMPLE_RATE, DataCategory.ERROR)
        aggregator.flush()
    """

    def __init__(
        self,
        send: Callable[[Item], object] | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize with empty counters.

        Args:
            send: Delivers a client_report item through the normal pipeline
                (rate limits included). None disables sending.
            clock: Wall-clock source for report timestamps
        """
        self._send = send
        self._clock = clock
        self._lock = threading.Lock()
        self._counts: dict[tuple[str, str], int] = {}
        self._reports_sent = 0

    def record(self, reason: DiscardReason, category: DataCategory | str, quantity: int = 1) -> None:
        """Count quantity dropped items of category for reason."""
        if quantity <= 0:
            return
        key = (_WIRE_REASON.get(reason, reason).value, str(category))
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + quantity

    def take(self) -> ClientReport | None:
        """Return the counts accumulated so far and reset them, or None if empty."""
        with self._lock:
            counts, self._counts = self._counts, {}
        if not counts:
            return None
        discarded = tuple((reason, category, quantity) for (reason, category), quantity in sorted(counts.items()))
        return ClientReport(timestamp=self._clock(), discarded=discarded)

    def snapshot(self) -> dict[tuple[str, str], int]:
        """Current counts without resetting them."""
        with self._lock:
            return dict(self._counts)

    @property
    def reports_sent(self) -> int:
        return self._reports_sent

    def flush(self) -> ClientReport | None:
        """Send pending counts, if any. Never raises.

        Returns:
            The report that was handed to the sender, or None if there was
            nothing to report or sending is disabled.
        """
        if self._send is None:
            return None
        report = self.take()
        if report is None:
            return None
        try:
            self._send(report.to_item())
        except Exception as e:
            logger.debug("Client report could not be sent", dropped_total=report.total, error=str(e))
            return None
        self._reports_sent += 1
        logger.debug("Client report sent", dropped_total=report.total, entries=len(report.discarded))
        return report
