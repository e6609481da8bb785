# src/faultline/client.py
"""Capture pipeline.

A Client owns every piece of delivery state for its lifetime: the dedup
cache, the rate limiter, the client report aggregator, the check-in id
mappings, the sender pool and the housekeeping timers. Nothing is stored at
module level, so independent clients can coexist (tests build one each).

Per item the pipeline runs:

    reportable? -> destination? -> filter -> sample -> before_send
        -> dedup -> encode -> rate-limit gate -> dispatch -> after_send_event

Every step that drops the item returns a CaptureResult immediately and
counts the drop in the client report; nothing here raises for runtime
delivery problems.

Thread Safety:
    Capture methods may be called from any thread. In asynchronous mode the
    after-hook runs on the sender worker that finished the send.
"""

from __future__ import annotations

import random
import sys
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from contextvars import ContextVar
from dataclasses import replace
from typing import Any, TypeVar

import httpx
import structlog

from faultline import __version__
from faultline.check_ins import CheckInIdMappings
from faultline.client_report import ClientReport, ClientReportAggregator
from faultline.config import CallOptions, ClientSettings, resolve_call_options
from faultline.contracts.enums import CheckInStatus, DataCategory, DiscardReason, SendResult
from faultline.contracts.events import CheckIn, Event, MonitorConfig, Transaction, new_event_id
from faultline.contracts.results import CaptureResult, CaptureStatus
from faultline.dedupe import DedupCache, event_fingerprint
from faultline.dsn import Dsn
from faultline.envelope import Item, Record, build_envelope, item_for, record_id
from faultline.errors import ConfigurationError
from faultline.filtering import is_excluded
from faultline.periodic import PeriodicTask
from faultline.rate_limit import RateLimiter
from faultline.transport.errors import ClientError, ClientErrorReason
from faultline.transport.http import HTTPTransport, SendResponse
from faultline.transport.pool import SenderPool

logger = structlog.get_logger(__name__)

SDK_NAME = "faultline.python"
CLIENT_NAME = f"{SDK_NAME}/{__version__}"

CHECK_IN_SWEEP_INTERVAL_SECONDS = 60.0

_OPTION_NAMES = frozenset(CallOptions.model_fields)

R = TypeVar("R", Event, Transaction, CheckIn)


def _split_options(kwargs: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate per-call options from record attributes."""
    options = {k: v for k, v in kwargs.items() if k in _OPTION_NAMES}
    attrs = {k: v for k, v in kwargs.items() if k not in _OPTION_NAMES}
    return options, attrs


class Client:
    """Deduplicates, encodes, rate-limits and delivers records to one collector.

    Example:
        with Client(dsn="https://public@collector.example.com/42", release="1.4.0") as client:
            try:
                run_job()
            except Exception as e:
                result = client.capture_exception(e)
                if result.status is CaptureStatus.FAILED:
                    ...
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        sampler: Callable[[], float] = random.random,
        start_timers: bool = True,
        **options: Any,
    ) -> None:
        """Build every component. Fails before starting any thread on bad options.

        Args:
            settings: Validated settings; built from options when None
            http_client: Pre-built httpx client (tests)
            clock: Monotonic time source for dedup, rate limit and check-in expiry
            sleep: Sleep used between retries
            sampler: Returns a uniform draw in [0, 1) for sampling decisions
            start_timers: Start the housekeeping timers (tests may drive them by hand)
            **options: ClientSettings fields, when settings is None

        Raises:
            ConfigurationError: On invalid options, or settings plus options
        """
        if settings is None:
            settings = ClientSettings.from_options(**options)
        elif options:
            raise ConfigurationError(f"Pass either settings or options, not both (got options {sorted(options)})")

        self._settings = settings
        self._dsn: Dsn | None = settings.parsed_dsn
        self._sampler = sampler
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self._last_event: ContextVar[tuple[str, str | None] | None] = ContextVar(
            f"faultline_last_event_{id(self)}", default=None
        )

        self._dedup = DedupCache(settings.dedup_window_seconds, clock=clock) if settings.dedup_events else None
        self._rate_limiter = RateLimiter(clock=clock)
        self._check_ins = CheckInIdMappings(settings.max_expected_check_in_time_seconds, clock=clock)

        self._transport: HTTPTransport | None = None
        self._pool: SenderPool | None = None
        if self._dsn is not None:
            self._transport = HTTPTransport(
                self._dsn,
                rate_limiter=self._rate_limiter,
                client_name=CLIENT_NAME,
                timeout=settings.timeout_seconds,
                gzip_body=settings.gzip,
                http_client=http_client,
                sleep=sleep,
            )
            self._pool = SenderPool(self._transport, size=settings.pool_size, max_queue_size=settings.max_queue_size)

        reports_enabled = settings.send_client_reports and self._pool is not None
        self._client_reports = ClientReportAggregator(send=self._send_client_report if reports_enabled else None)

        self._timers: list[PeriodicTask] = []
        if self._dedup is not None:
            self._timers.append(PeriodicTask("dedup-sweep", max(settings.dedup_window_seconds, 1.0), self._dedup.sweep))
        self._timers.append(PeriodicTask("check-in-sweep", CHECK_IN_SWEEP_INTERVAL_SECONDS, self._check_ins.sweep))
        self._report_timer: PeriodicTask | None = None
        if reports_enabled:
            self._report_timer = PeriodicTask(
                "client-report", settings.client_report_interval_seconds, self._client_reports.flush
            )
            self._timers.append(self._report_timer)
        if start_timers:
            for timer in self._timers:
                timer.start()

        logger.debug(
            "Client started",
            dsn=repr(self._dsn) if self._dsn else None,
            test_mode=settings.test_mode,
            pool_size=settings.pool_size if self._pool else 0,
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def dedup_cache(self) -> DedupCache | None:
        return self._dedup

    @property
    def check_in_mappings(self) -> CheckInIdMappings:
        return self._check_ins

    @property
    def client_reports(self) -> ClientReportAggregator:
        return self._client_reports

    @property
    def sender_pool(self) -> SenderPool | None:
        return self._pool

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def get_dsn(self) -> str | None:
        return self._dsn.raw if self._dsn else None

    def get_last_event_id_and_source(self) -> tuple[str, str | None] | None:
        """(event id, source) of the last event this caller context let through before_send."""
        return self._last_event.get()

    # =========================================================================
    # Capture API
    # =========================================================================

    def capture_exception(self, exception: BaseException | None = None, **kwargs: Any) -> CaptureResult:
        """Report an exception (the one being handled when exception is None).

        Keyword arguments are Event attributes (level, tags, extra, ...) or
        per-call options (sample_rate, before_send, result, ...).
        """
        if exception is None:
            exception = sys.exc_info()[1]
        options, attrs = _split_options(kwargs)
        if exception is None:
            return self.send_event(Event(**attrs), **options)
        return self.send_event(Event.from_exception(exception, **attrs), **options)

    def capture_message(self, message: str, params: tuple[Any, ...] | list[Any] = (), **kwargs: Any) -> CaptureResult:
        """Report a message; %s placeholders are filled from params."""
        options, attrs = _split_options(kwargs)
        return self.send_event(Event.from_message(message, params, **attrs), **options)

    def send_event(self, event: Event, **options: Any) -> CaptureResult:
        opts = resolve_call_options(options)
        if opts.source is not None:
            event = replace(event, source=opts.source)

        if not event.is_reportable:
            logger.warning("Cannot report event without message or exception", event_id=event.event_id)
            return CaptureResult.ignored()
        if not self._accepting():
            return CaptureResult.ignored()

        event = self._with_event_defaults(event)
        category = DataCategory.ERROR

        if is_excluded(self._settings.filter, event):
            return self._drop(DiscardReason.EVENT_PROCESSOR, category)

        rate = opts.sample_rate if opts.sample_rate is not None else self._settings.sample_rate
        if not self._sampled(rate):
            return self._drop(DiscardReason.SAMPLE_RATE, category)

        processed = self._before_send(event, opts)
        if processed is None:
            return self._drop(DiscardReason.BEFORE_SEND, category)
        event = processed

        self._last_event.set((event.event_id, event.source))

        if self._dedup is not None and not self._dedup.should_send(event_fingerprint(event)):
            logger.info("Event dropped due to being a duplicate", event_id=event.event_id, source=event.source)
            return self._drop(DiscardReason.DUPLICATE, category)

        return self._dispatch(event, opts)

    def send_transaction(self, transaction: Transaction, **options: Any) -> CaptureResult:
        opts = resolve_call_options(options)
        if opts.source is not None:
            transaction = replace(transaction, source=opts.source)
        if not self._accepting():
            return CaptureResult.ignored()

        transaction = replace(
            transaction,
            environment=transaction.environment or self._settings.environment_name,
            release=transaction.release or self._settings.release,
            tags={**self._settings.tags, **transaction.tags},
        )
        category = DataCategory.TRANSACTION

        rate = opts.sample_rate if opts.sample_rate is not None else self._settings.traces_sample_rate
        if not self._sampled(rate):
            return self._drop(DiscardReason.SAMPLE_RATE, category)

        processed = self._before_send(transaction, opts)
        if processed is None:
            return self._drop(DiscardReason.BEFORE_SEND, category)

        return self._dispatch(processed, opts)

    def capture_check_in(
        self,
        check_in: CheckIn | None = None,
        *,
        status: CheckInStatus | str | None = None,
        monitor_slug: str | None = None,
        check_in_id: str | None = None,
        duration: float | None = None,
        monitor_config: MonitorConfig | None = None,
        **options: Any,
    ) -> CaptureResult:
        """Report the start (in_progress) or finish (ok/error) of a monitor run.

        Either pass a CheckIn or its fields. A start without an id is given a
        fresh one; a finish without an id reuses the id recorded for the
        slug's last successful start, if one is still remembered.

        Returns:
            CaptureResult whose event_id is the check-in id the collector used

        Raises:
            ConfigurationError: When neither a CheckIn nor status and slug are
                given, or status is not a known check-in status
        """
        if check_in is None:
            if status is None or monitor_slug is None:
                raise ConfigurationError("capture_check_in needs a CheckIn or both status and monitor_slug")
            try:
                parsed_status = CheckInStatus(status)
            except ValueError:
                valid = ", ".join(s.value for s in CheckInStatus)
                raise ConfigurationError(f"Invalid check-in status {status!r}; expected one of: {valid}") from None
            check_in = CheckIn(
                monitor_slug=monitor_slug,
                status=parsed_status,
                check_in_id=check_in_id,
                duration=duration,
                monitor_config=monitor_config,
            )
        opts = resolve_call_options(options)
        if not self._accepting():
            return CaptureResult.ignored()

        check_in = replace(
            check_in,
            environment=check_in.environment or self._settings.environment_name,
            release=check_in.release or self._settings.release,
        )

        on_delivered: Callable[[str], None] | None = None
        if check_in.status.is_terminal:
            if check_in.check_in_id is None:
                recorded = self._check_ins.pop(check_in.monitor_slug)
                if recorded is not None:
                    check_in = replace(check_in, check_in_id=recorded)
        else:
            if check_in.check_in_id is None:
                check_in = replace(check_in, check_in_id=new_event_id())
            on_delivered = self._check_in_started(check_in)

        return self._dispatch(check_in, opts, on_delivered=on_delivered)

    def flush_client_report(self) -> ClientReport | None:
        """Send pending drop counts now. Never raises."""
        return self._client_reports.flush()

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued envelopes to be sent. True if the queue drained."""
        if self._pool is None:
            return True
        return self._pool.flush(timeout)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self, timeout: float = 5.0) -> None:
        """Ordered shutdown. Idempotent.

        1. Stop accepting new records
        2. Stop the client report timer and send a final report
        3. Stop the other timers
        4. Let the sender pool finish queued envelopes and stop its workers
        5. Close the HTTP client
        """
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()

        if self._report_timer is not None:
            self._report_timer.stop(timeout)
        self._client_reports.flush()

        for timer in self._timers:
            timer.stop(timeout)

        if self._pool is not None:
            self._pool.close(timeout)
        if self._transport is not None:
            self._transport.close()
        logger.debug("Client closed")

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # =========================================================================
    # Pipeline steps
    # =========================================================================

    def _accepting(self) -> bool:
        if self._closed.is_set():
            logger.debug("Capture after close ignored")
            return False
        return self._dsn is not None or self._settings.test_mode

    def _with_event_defaults(self, event: Event) -> Event:
        return replace(
            event,
            environment=event.environment or self._settings.environment_name,
            release=event.release or self._settings.release,
            server_name=event.server_name or self._settings.server_name,
            tags={**self._settings.tags, **event.tags},
        )

    def _sampled(self, rate: float) -> bool:
        return self._sampler() < rate

    def _drop(self, reason: DiscardReason, category: DataCategory) -> CaptureResult:
        self._client_reports.record(reason, category)
        return CaptureResult.excluded(reason)

    def _before_send(self, record: R, opts: CallOptions) -> R | None:
        """Apply the before-hook once. None means drop."""
        hook = opts.before_send if opts.before_send is not None else self._settings.before_send
        if hook is None:
            return record
        try:
            result = hook(record)
        except Exception as e:
            logger.warning("before_send hook raised; dropping record", error=str(e), error_type=type(e).__name__)
            return None
        if result is None or result is False:
            return None
        if not isinstance(result, type(record)):
            logger.warning(
                "before_send hook returned an unexpected type; dropping record",
                expected=type(record).__name__,
                got=type(result).__name__,
            )
            return None
        return result

    def _check_in_started(self, check_in: CheckIn) -> Callable[[str], None]:
        ttl: float | None = None
        if check_in.monitor_config is not None and check_in.monitor_config.max_runtime is not None:
            ttl = check_in.monitor_config.max_runtime * 60.0
        client_id = check_in.check_in_id or ""

        def record(server_id: str) -> None:
            self._check_ins.record(check_in.monitor_slug, server_id or client_id, ttl)

        return record

    def _dispatch(
        self,
        record: Record,
        opts: CallOptions,
        *,
        on_delivered: Callable[[str], None] | None = None,
    ) -> CaptureResult:
        after = opts.after_send_event if opts.after_send_event is not None else self._settings.after_send_event

        if self._pool is None:
            # Test mode without a destination: accept with synthetic success
            result = CaptureResult.delivered("")
            self._complete(record, result, after, on_delivered)
            return result

        item = item_for(record)
        category = DataCategory.for_item_type(item.type)
        envelope = build_envelope(
            [item],
            event_id=record_id(record),
            dsn=self._dsn.raw if self._dsn else None,
            sdk={"name": SDK_NAME, "version": __version__},
        )

        if not self._rate_limiter.check(category):
            logger.debug("Record dropped, category is rate limited", category=category.value)
            return self._drop(DiscardReason.RATELIMIT_BACKOFF, category)

        retries = opts.request_retries if opts.request_retries is not None else self._settings.request_retries
        try:
            future = self._pool.submit(envelope.encode(), category.value, retries)
        except ClientError as e:
            logger.warning("Sender queue full; record dropped", category=category.value)
            self._client_reports.record(DiscardReason.QUEUE_OVERFLOW, category)
            result = CaptureResult.failed(e)
            self._complete(record, result, after, on_delivered)
            return result

        mode = opts.result or self._settings.send_result
        if mode is SendResult.SYNC:
            result = self._outcome(future, category)
            self._complete(record, result, after, on_delivered)
            return result

        future.add_done_callback(
            lambda f: self._complete(record, self._outcome(f, category), after, on_delivered),
        )
        return CaptureResult.queued(record_id(record) or "")

    def _outcome(self, future: Future[SendResponse], category: DataCategory) -> CaptureResult:
        try:
            response = future.result()
        except ClientError as e:
            if e.backed_off:
                # A retry was stopped by a backoff learned mid-schedule
                logger.info(
                    "Envelope retry stopped by rate limit",
                    category=category.value,
                    status_code=e.status_code,
                    attempts=e.attempts,
                )
                self._client_reports.record(DiscardReason.RATELIMIT_BACKOFF, category)
                return CaptureResult.failed(e)
            logger.warning(
                "Failed to send envelope",
                category=category.value,
                reason=e.reason.value,
                status_code=e.status_code,
                attempts=e.attempts,
                error=str(e),
            )
            self._client_reports.record(DiscardReason.NETWORK_ERROR, category)
            return CaptureResult.failed(e)
        return CaptureResult.delivered(response.event_id)

    def _complete(
        self,
        record: Record,
        result: CaptureResult,
        after: Callable[[Any, CaptureResult], Any] | None,
        on_delivered: Callable[[str], None] | None,
    ) -> None:
        if on_delivered is not None and result.event_id is not None and result.status is CaptureStatus.DELIVERED:
            try:
                on_delivered(result.event_id)
            except Exception as e:
                logger.debug("Check-in correlation failed", error=str(e))
        if after is None or result.status is CaptureStatus.EXCLUDED:
            return
        try:
            after(record, result)
        except Exception as e:
            logger.warning("after_send_event hook raised", error=str(e), error_type=type(e).__name__)

    def _send_client_report(self, item: Item) -> None:
        """Queue a client report envelope; raises when it cannot be queued."""
        if self._pool is None:
            return
        category = DataCategory.for_item_type(item.type)
        if not self._rate_limiter.check(category):
            raise ClientError.rate_limited(category.value)
        envelope = build_envelope([item], dsn=self._dsn.raw if self._dsn else None)
        future = self._pool.submit(envelope.encode(), category.value, ())
        future.add_done_callback(_log_report_failure)


def _log_report_failure(future: Future[SendResponse]) -> None:
    error = future.exception()
    if error is not None:
        logger.debug("Client report delivery failed", error=str(error))
