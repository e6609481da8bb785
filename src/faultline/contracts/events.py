# src/faultline/contracts/events.py
"""Records consumed by the capture pipeline.

Events, transactions and check-ins are built by collaborators (framework
integrations, logging bridge, application code) and handed to the Client
fully formed. They are frozen: hooks that want to change one return a copy
made with dataclasses.replace().

Each record knows how to render its own wire payload via to_payload(); the
envelope codec only ever sees plain JSON-compatible dicts.
"""

from __future__ import annotations

import socket
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from faultline.contracts.enums import CheckInStatus, IntervalUnit, Level, ScheduleType


def new_event_id() -> str:
    """Client-generated 32-character hex identifier."""
    return uuid4().hex


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _interpolate(template: str, params: tuple[Any, ...]) -> str:
    """Replace each %s placeholder in order; extra placeholders are left as-is."""
    pieces = template.split("%s")
    if len(pieces) == 1 or not params:
        return template
    out = [pieces[0]]
    for index, piece in enumerate(pieces[1:]):
        out.append(str(params[index]) if index < len(params) else "%s")
        out.append(piece)
    return "".join(out)


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True, slots=True)
class ExceptionInfo:
    """One entry of an event's exception list.

    Attributes:
        type: Exception class name
        value: String form of the exception
        module: Module that defines the exception class
    """

    type: str
    value: str
    module: str | None = None

    @classmethod
    def chain_from(cls, exc: BaseException) -> tuple[ExceptionInfo, ...]:
        """Build the exception list for exc, oldest cause first."""
        chain: list[ExceptionInfo] = []
        seen: set[int] = set()
        current: BaseException | None = exc
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            chain.append(
                cls(
                    type=type(current).__name__,
                    value=str(current),
                    module=type(current).__module__,
                )
            )
            if current.__cause__ is not None:
                current = current.__cause__
            elif not current.__suppress_context__:
                current = current.__context__
            else:
                current = None
        chain.reverse()
        return tuple(chain)

    def to_payload(self) -> dict[str, Any]:
        return _drop_none({"type": self.type, "value": self.value, "module": self.module})


@dataclass(frozen=True, slots=True)
class Event:
    """An error or message event.

    An event must carry a message, an exception list, or both; the client
    ignores events with neither.

    Attributes:
        event_id: Client-generated unique id
        message: Message template (may contain %s placeholders)
        message_params: Values interpolated into the message template
        exceptions: Exception list, oldest cause first
        level: Severity
        timestamp: When the event happened (UTC)
        environment: Environment tag; filled from settings when None
        release: Release tag; filled from settings when None
        server_name: Host name; filled from settings when None
        tags: Indexed string tags
        extra: Arbitrary structured context
        user: User context
        contexts: Named context blocks
        fingerprint: Explicit grouping key; also overrides the dedup fingerprint
        source: Origin tag (e.g. "logger", "web") used by event filters
        original_exception: The raised exception object, not serialized
    """

    event_id: str = field(default_factory=new_event_id)
    message: str | None = None
    message_params: tuple[Any, ...] = ()
    exceptions: tuple[ExceptionInfo, ...] = ()
    level: Level = Level.ERROR
    timestamp: datetime = field(default_factory=_now)
    environment: str | None = None
    release: str | None = None
    server_name: str | None = None
    tags: Mapping[str, str] = field(default_factory=dict)
    extra: Mapping[str, Any] = field(default_factory=dict)
    user: Mapping[str, Any] = field(default_factory=dict)
    contexts: Mapping[str, Any] = field(default_factory=dict)
    fingerprint: tuple[str, ...] = ()
    source: str | None = None
    original_exception: BaseException | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_exception(cls, exc: BaseException, **attrs: Any) -> Event:
        """Create an event describing exc (and its cause chain)."""
        return cls(exceptions=ExceptionInfo.chain_from(exc), original_exception=exc, **attrs)

    @classmethod
    def from_message(cls, message: str, params: tuple[Any, ...] | list[Any] = (), **attrs: Any) -> Event:
        """Create a message event; %s placeholders are filled from params."""
        attrs.setdefault("level", Level.INFO)
        return cls(message=message, message_params=tuple(params), **attrs)

    @property
    def is_reportable(self) -> bool:
        return self.message is not None or bool(self.exceptions)

    @property
    def formatted_message(self) -> str | None:
        if self.message is None:
            return None
        return _interpolate(self.message, self.message_params)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "platform": "python",
            "environment": self.environment,
            "release": self.release,
            "server_name": self.server_name,
        }
        if self.message is not None:
            payload["message"] = {
                "formatted": self.formatted_message,
                "message": self.message,
                "params": [str(p) for p in self.message_params],
            }
        if self.exceptions:
            payload["exception"] = {"values": [info.to_payload() for info in self.exceptions]}
        for key in ("tags", "extra", "user", "contexts"):
            value = getattr(self, key)
            if value:
                payload[key] = dict(value)
        if self.fingerprint:
            payload["fingerprint"] = list(self.fingerprint)
        return _drop_none(payload)


# =============================================================================
# Transactions
# =============================================================================


@dataclass(frozen=True, slots=True)
class Span:
    """A timed operation inside a transaction.

    Timestamps are seconds since the epoch as floats.
    """

    span_id: str
    trace_id: str
    start_timestamp: float
    timestamp: float
    parent_span_id: str | None = None
    op: str | None = None
    description: str | None = None
    status: str | None = None
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.start_timestamp > self.timestamp:
            raise ValueError(
                f"Span {self.span_id!r} ends before it starts: start_timestamp={self.start_timestamp}, timestamp={self.timestamp}"
            )

    def to_payload(self) -> dict[str, Any]:
        payload = _drop_none(
            {
                "span_id": self.span_id,
                "trace_id": self.trace_id,
                "parent_span_id": self.parent_span_id,
                "start_timestamp": self.start_timestamp,
                "timestamp": self.timestamp,
                "op": self.op,
                "description": self.description,
                "status": self.status,
            }
        )
        if self.data:
            payload["data"] = dict(self.data)
        return payload


@dataclass(frozen=True, slots=True)
class Transaction:
    """A traced unit of work: a named root span plus its child spans.

    Invariants (checked on construction):
        - every span's trace_id equals the transaction's trace_id
        - every span starts no later than it ends

    When start_timestamp/timestamp are omitted they are derived from the
    spans, or from the current time if there are none.
    """

    name: str
    trace_id: str
    span_id: str
    spans: tuple[Span, ...] = ()
    event_id: str = field(default_factory=new_event_id)
    op: str | None = None
    start_timestamp: float | None = None
    timestamp: float | None = None
    environment: str | None = None
    release: str | None = None
    tags: Mapping[str, str] = field(default_factory=dict)
    contexts: Mapping[str, Any] = field(default_factory=dict)
    source: str | None = None

    def __post_init__(self) -> None:
        for span in self.spans:
            if span.trace_id != self.trace_id:
                raise ValueError(
                    f"Span {span.span_id!r} has trace_id {span.trace_id!r}, expected transaction trace_id {self.trace_id!r}"
                )

    def to_payload(self) -> dict[str, Any]:
        now = time.time()
        start = self.start_timestamp
        if start is None:
            start = min((s.start_timestamp for s in self.spans), default=now)
        end = self.timestamp
        if end is None:
            end = max((s.timestamp for s in self.spans), default=now)

        contexts = dict(self.contexts)
        contexts["trace"] = _drop_none(
            {
                **contexts.get("trace", {}),
                "trace_id": self.trace_id,
                "span_id": self.span_id,
                "op": self.op,
            }
        )
        payload: dict[str, Any] = {
            "type": "transaction",
            "event_id": self.event_id,
            "transaction": self.name,
            "start_timestamp": start,
            "timestamp": end,
            "platform": "python",
            "contexts": contexts,
            "spans": [span.to_payload() for span in self.spans],
            "environment": self.environment,
            "release": self.release,
        }
        if self.tags:
            payload["tags"] = dict(self.tags)
        return _drop_none(payload)


# =============================================================================
# Check-ins
# =============================================================================


@dataclass(frozen=True, slots=True)
class MonitorSchedule:
    """Crontab expression or fixed interval a monitor is expected to run on."""

    type: ScheduleType
    value: str | int
    unit: IntervalUnit | None = None

    def __post_init__(self) -> None:
        if self.type is ScheduleType.CRONTAB:
            if not isinstance(self.value, str) or self.unit is not None:
                raise ValueError("crontab schedules take a string expression and no unit")
        elif not isinstance(self.value, int) or isinstance(self.value, bool) or self.unit is None:
            raise ValueError("interval schedules take an integer value and a unit")

    @classmethod
    def crontab(cls, expression: str) -> MonitorSchedule:
        return cls(type=ScheduleType.CRONTAB, value=expression)

    @classmethod
    def interval(cls, value: int, unit: IntervalUnit | str) -> MonitorSchedule:
        return cls(type=ScheduleType.INTERVAL, value=value, unit=IntervalUnit(unit))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value, "value": self.value}
        if self.unit is not None:
            payload["unit"] = self.unit.value
        return payload


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    """Monitor upsert configuration sent along with a check-in.

    Attributes:
        schedule: When the job is expected to run
        checkin_margin: Minutes of grace before a missed check-in is flagged
        max_runtime: Minutes a run may stay in progress; also bounds how long
            the client remembers the run's check-in id
        failure_issue_threshold: Consecutive failures before an issue opens
        recovery_threshold: Consecutive successes before the issue resolves
        timezone: tz database name the schedule is evaluated in
    """

    schedule: MonitorSchedule
    checkin_margin: int | None = None
    max_runtime: int | None = None
    failure_issue_threshold: int | None = None
    recovery_threshold: int | None = None
    timezone: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return _drop_none(
            {
                "schedule": self.schedule.to_payload(),
                "checkin_margin": self.checkin_margin,
                "max_runtime": self.max_runtime,
                "failure_issue_threshold": self.failure_issue_threshold,
                "recovery_threshold": self.recovery_threshold,
                "timezone": self.timezone,
            }
        )


@dataclass(frozen=True, slots=True)
class CheckIn:
    """Heartbeat marking the start (IN_PROGRESS) or finish (OK/ERROR) of a monitor run."""

    monitor_slug: str
    status: CheckInStatus
    check_in_id: str | None = None
    duration: float | None = None
    monitor_config: MonitorConfig | None = None
    environment: str | None = None
    release: str | None = None

    def __post_init__(self) -> None:
        if not self.monitor_slug:
            raise ValueError("monitor_slug must be a non-empty string")
        if self.duration is not None and self.duration < 0:
            raise ValueError(f"duration must be >= 0, got {self.duration}")

    def to_payload(self) -> dict[str, Any]:
        return _drop_none(
            {
                "check_in_id": self.check_in_id,
                "monitor_slug": self.monitor_slug,
                "status": self.status.value,
                "duration": self.duration,
                "environment": self.environment,
                "release": self.release,
                "monitor_config": self.monitor_config.to_payload() if self.monitor_config else None,
            }
        )


def default_server_name() -> str:
    return socket.gethostname()
