# src/faultline/contracts/enums.py
"""Enumerations shared across the delivery pipeline.

All enums use StrEnum so their values serialize directly into wire payloads
and client reports without a mapping step.
"""

from enum import StrEnum


class Level(StrEnum):
    """Event severity levels accepted by the collector."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class CheckInStatus(StrEnum):
    """Monitor check-in status.

    IN_PROGRESS marks the start of a monitor run. OK and ERROR are terminal
    and finish the run started by a previous IN_PROGRESS check-in.
    """

    IN_PROGRESS = "in_progress"
    OK = "ok"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not CheckInStatus.IN_PROGRESS


class ItemType(StrEnum):
    """Envelope item type tags used by this client.

    The codec accepts any other string as an opaque item type.
    """

    EVENT = "event"
    TRANSACTION = "transaction"
    CHECK_IN = "check_in"
    CLIENT_REPORT = "client_report"


class DataCategory(StrEnum):
    """Rate limit and client report categories.

    DEFAULT applies to every category when the collector backs off globally.
    """

    DEFAULT = "default"
    ERROR = "error"
    TRANSACTION = "transaction"
    CHECK_IN = "check_in"
    INTERNAL = "internal"

    @classmethod
    def for_item_type(cls, item_type: str) -> "DataCategory":
        """Map an envelope item type to the category it is limited under."""
        match item_type:
            case ItemType.EVENT:
                return cls.ERROR
            case ItemType.TRANSACTION:
                return cls.TRANSACTION
            case ItemType.CHECK_IN:
                return cls.CHECK_IN
            case ItemType.CLIENT_REPORT:
                return cls.INTERNAL
            case _:
                return cls.DEFAULT


class DiscardReason(StrEnum):
    """Why an item was dropped locally, as reported in client reports."""

    BEFORE_SEND = "before_send"
    EVENT_PROCESSOR = "event_processor"
    SAMPLE_RATE = "sample_rate"
    NETWORK_ERROR = "network_error"
    RATELIMIT_BACKOFF = "ratelimit_backoff"
    QUEUE_OVERFLOW = "queue_overflow"
    # Dedup drops are reported to the aggregator as EVENT_PROCESSOR but stay
    # distinguishable in the CaptureResult returned to the caller.
    DUPLICATE = "duplicate"


class SendResult(StrEnum):
    """Whether a capture call waits for the transport result."""

    SYNC = "sync"
    NONE = "none"


class ScheduleType(StrEnum):
    """Monitor schedule kinds."""

    CRONTAB = "crontab"
    INTERVAL = "interval"


class IntervalUnit(StrEnum):
    """Units for interval monitor schedules."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
