# src/faultline/transport/pool.py
"""Fixed-size sender pool.

The pool is the only bounded concurrency point in the client: a fixed number
of worker threads, registered under stable keys ("sender-0", "sender-1", ...),
pull send jobs from one bounded queue. Admission never blocks: when the queue
is full the submission fails immediately with a queue_overflow ClientError.

Thread Safety:
    submit() may be called from any thread. Workers share the transport
    (and its httpx.Client) but never each other's in-flight request state.
    Counters are guarded by _stats_lock; health_metrics reads are
    approximately consistent. _admission_lock orders submit() against
    close(): a job is either queued ahead of the shutdown sentinels or
    rejected, never stranded behind them.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any

import structlog

from faultline.transport.errors import ClientError, ClientErrorReason
from faultline.transport.http import HTTPTransport, SendResponse

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class _SendJob:
    body: bytes
    category: str
    retries: tuple[float, ...]
    future: Future[SendResponse] = field(default_factory=Future)


class SenderPool:
    """Worker threads delivering envelopes through a shared transport.

    Example:
        pool = SenderPool(transport, size=4, max_queue_size=1000)
        future = pool.submit(envelope.encode(), "error", retries=(1.0, 2.0))
        response = future.result()
        pool.close()
    """

    def __init__(self, transport: HTTPTransport, *, size: int, max_queue_size: int) -> None:
        """Start size workers.

        Args:
            transport: Performs the HTTP work for every worker
            size: Number of worker threads (>= 1)
            max_queue_size: Maximum number of jobs waiting for a worker (>= 1)
        """
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        if max_queue_size < 1:
            raise ValueError(f"max_queue_size must be >= 1, got {max_queue_size}")

        self._transport = transport
        self._queue: queue.Queue[_SendJob | None] = queue.Queue(maxsize=max_queue_size)
        self._shutdown_event = threading.Event()
        self._admission_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._busy = 0
        self._sent = 0
        self._failed = 0
        self._rejected = 0

        self._workers: dict[str, threading.Thread] = {}
        for index in range(size):
            key = f"sender-{index}"
            worker = threading.Thread(target=self._worker_loop, args=(key,), name=f"faultline-{key}", daemon=True)
            self._workers[key] = worker
            worker.start()

    @property
    def size(self) -> int:
        return len(self._workers)

    @property
    def worker_keys(self) -> tuple[str, ...]:
        return tuple(self._workers)

    def worker(self, key: str) -> threading.Thread:
        """Look up a worker by its registry key."""
        return self._workers[key]

    @property
    def closed(self) -> bool:
        return self._shutdown_event.is_set()

    def submit(self, body: bytes, category: str, retries: Sequence[float] = ()) -> Future[SendResponse]:
        """Queue an envelope for delivery.

        Returns:
            Future resolving to the SendResponse, or failing with ClientError

        Raises:
            ClientError: queue_overflow when the queue is full or the pool is closed
        """
        job = _SendJob(body=body, category=category, retries=tuple(retries))
        with self._admission_lock:
            if self._shutdown_event.is_set():
                raise ClientError.queue_overflow(self._queue.maxsize)
            try:
                self._queue.put_nowait(job)
            except queue.Full:
                with self._stats_lock:
                    self._rejected += 1
                raise ClientError.queue_overflow(self._queue.maxsize) from None
        return job.future

    def _worker_loop(self, key: str) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:  # Shutdown sentinel
                    break
                self._run(key, job)
            finally:
                self._queue.task_done()

    def _run(self, key: str, job: _SendJob) -> None:
        if not job.future.set_running_or_notify_cancel():
            return
        with self._stats_lock:
            self._busy += 1
        try:
            response = self._transport.send(job.body, job.category, job.retries)
        except ClientError as e:
            with self._stats_lock:
                self._failed += 1
            job.future.set_exception(e)
        except Exception as e:
            # Unexpected failures still resolve the future
            logger.error("Sender worker failed unexpectedly", worker=key, error=str(e), error_type=type(e).__name__)
            with self._stats_lock:
                self._failed += 1
            job.future.set_exception(
                ClientError(ClientErrorReason.CONNECTION_ERROR, f"Sender failed unexpectedly: {e}", cause=e)
            )
        else:
            with self._stats_lock:
                self._sent += 1
            job.future.set_result(response)
        finally:
            with self._stats_lock:
                self._busy -= 1

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every queued job has been processed.

        Returns:
            True if the queue drained, False if timeout elapsed first
        """
        if timeout is None:
            self._queue.join()
            return True
        done = threading.Event()

        def _join() -> None:
            self._queue.join()
            done.set()

        threading.Thread(target=_join, name="faultline-flush", daemon=True).start()
        return done.wait(timeout)

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of pool health for diagnostics."""
        with self._stats_lock:
            return {
                "workers": len(self._workers),
                "workers_alive": sum(1 for w in self._workers.values() if w.is_alive()),
                "busy": self._busy,
                "sent": self._sent,
                "failed": self._failed,
                "rejected": self._rejected,
                "queue_depth": self._queue.qsize(),
                "queue_maxsize": self._queue.maxsize,
            }

    def close(self, timeout: float = 5.0) -> None:
        """Stop accepting jobs, let workers finish queued ones, then stop them.

        Idempotent. Jobs that cannot be queued ahead of the shutdown
        sentinels, or are still queued once the workers have stopped, are
        failed with queue_overflow.
        """
        with self._admission_lock:
            if self._shutdown_event.is_set():
                return
            self._shutdown_event.set()

        for _ in self._workers:
            self._put_sentinel()

        for key, worker in self._workers.items():
            worker.join(timeout=timeout)
            if worker.is_alive():
                logger.error("Sender worker did not exit cleanly within timeout", worker=key)

        self._fail_pending()
        logger.info("Sender pool closed", **self.health_metrics)

    def _fail_pending(self) -> None:
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                return
            self._queue.task_done()
            if job is None:
                continue
            with self._stats_lock:
                self._rejected += 1
            if job.future.set_running_or_notify_cancel():
                job.future.set_exception(ClientError.queue_overflow(self._queue.maxsize))
            logger.debug("Discarded envelope left in queue after shutdown", category=job.category)

    def _put_sentinel(self) -> None:
        # The sentinel must get in; drop pending jobs if the queue stays full
        for _ in range(self._queue.maxsize + 10):
            try:
                self._queue.put(None, timeout=0.1)
                return
            except queue.Full:
                try:
                    discarded = self._queue.get_nowait()
                except queue.Empty:
                    continue
                self._queue.task_done()
                if discarded is not None:
                    with self._stats_lock:
                        self._rejected += 1
                    discarded.future.set_exception(ClientError.queue_overflow(self._queue.maxsize))
                    logger.debug("Discarded envelope during shutdown drain", category=discarded.category)
        logger.error("Failed to send shutdown sentinel after drain attempts - sender may hang")
