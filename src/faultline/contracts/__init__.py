# src/faultline/contracts/__init__.py
"""Shared data types for the faultline client.

This is a leaf package: it imports nothing from the rest of faultline at
runtime, so integrations can depend on it without pulling in the transport.
"""

from faultline.contracts.enums import (
    CheckInStatus,
    DataCategory,
    DiscardReason,
    IntervalUnit,
    ItemType,
    Level,
    ScheduleType,
    SendResult,
)
from faultline.contracts.events import (
    CheckIn,
    Event,
    ExceptionInfo,
    MonitorConfig,
    MonitorSchedule,
    Span,
    Transaction,
    new_event_id,
)
from faultline.contracts.results import CaptureResult, CaptureStatus

__all__ = [
    "CaptureResult",
    "CaptureStatus",
    "CheckIn",
    "CheckInStatus",
    "DataCategory",
    "DiscardReason",
    "Event",
    "ExceptionInfo",
    "IntervalUnit",
    "ItemType",
    "Level",
    "MonitorConfig",
    "MonitorSchedule",
    "ScheduleType",
    "SendResult",
    "Span",
    "Transaction",
    "new_event_id",
]
