# src/faultline/contracts/results.py
"""Capture outcomes returned to callers.

Only FAILED is an error. Every other status is a normal, expected outcome
that callers branch on without exception handling.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from faultline.contracts.enums import DiscardReason

if TYPE_CHECKING:
    from faultline.transport.errors import ClientError


class CaptureStatus(StrEnum):
    """Terminal state of one item in the capture pipeline."""

    DELIVERED = "delivered"  # Collector accepted it (or test mode synthesized success)
    QUEUED = "queued"  # Handed to the sender pool asynchronously
    IGNORED = "ignored"  # No destination configured, or nothing to report
    EXCLUDED = "excluded"  # Filter, sampling, before_send, dedup or rate limit dropped it
    FAILED = "failed"  # Transport failure or queue overflow


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """Outcome of a capture call.

    Attributes:
        status: Terminal pipeline state
        event_id: Server-assigned id for DELIVERED (may be ""), client id for QUEUED
        reason: Why an EXCLUDED item was dropped
        error: Failure detail for FAILED
    """

    status: CaptureStatus
    event_id: str | None = None
    reason: DiscardReason | None = None
    error: ClientError | None = None

    @classmethod
    def delivered(cls, event_id: str) -> CaptureResult:
        return cls(CaptureStatus.DELIVERED, event_id=event_id)

    @classmethod
    def queued(cls, event_id: str) -> CaptureResult:
        return cls(CaptureStatus.QUEUED, event_id=event_id)

    @classmethod
    def ignored(cls) -> CaptureResult:
        return cls(CaptureStatus.IGNORED)

    @classmethod
    def excluded(cls, reason: DiscardReason) -> CaptureResult:
        return cls(CaptureStatus.EXCLUDED, reason=reason)

    @classmethod
    def failed(cls, error: ClientError) -> CaptureResult:
        return cls(CaptureStatus.FAILED, error=error)

    @property
    def ok(self) -> bool:
        """True when the item was accepted for delivery."""
        return self.status in (CaptureStatus.DELIVERED, CaptureStatus.QUEUED)
