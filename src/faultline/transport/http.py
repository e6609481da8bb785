# src/faultline/transport/http.py
"""HTTP delivery of encoded envelopes with retry and timeout.

One HTTPTransport is shared by every sender worker. It owns a single
httpx.Client (connection pooling is thread-safe) and applies the caller's
retry schedule with tenacity.

Retry semantics:
    - The schedule is an explicit list of delays; len(delays) + 1 attempts.
    - Only retryable ClientErrors are retried (timeouts, connection errors,
      and every non-2xx response).
    - Before every retry the rate limiter is consulted again; a category
      that became backed off in the meantime is not re-sent.
    - Rate-limit headers are applied for every response, whatever the status.
"""

from __future__ import annotations

import gzip
import json
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import httpx
import structlog
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from faultline.dsn import Dsn
from faultline.rate_limit import RATE_LIMITS_HEADER, RETRY_AFTER_HEADER, RateLimiter
from faultline.transport.errors import ClientError, ClientErrorReason

logger = structlog.get_logger(__name__)

ENVELOPE_CONTENT_TYPE = "application/x-sentry-envelope"
AUTH_HEADER = "X-Sentry-Auth"


@dataclass(frozen=True, slots=True)
class SendResponse:
    """A 2xx answer from the collector.

    Attributes:
        event_id: Id assigned by the collector ("" if none was assigned)
        status_code: HTTP status of the final attempt
        attempts: Number of HTTP attempts made
    """

    event_id: str
    status_code: int
    attempts: int


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ClientError) and error.retryable


class HTTPTransport:
    """POSTs envelopes to the collector.

    Example:
        transport = HTTPTransport(dsn, rate_limiter=limiter, timeout=5.0)
        response = transport.send(envelope.encode(), "error", retries=[1.0, 2.0])
        response.event_id
    """

    def __init__(
        self,
        dsn: Dsn,
        *,
        rate_limiter: RateLimiter,
        client_name: str,
        timeout: float = 30.0,
        gzip_body: bool = False,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the transport.

        Args:
            dsn: Destination the envelopes go to
            rate_limiter: Shared limiter; updated from every response
            client_name: SDK identifier sent in the auth header
            timeout: Per-attempt timeout in seconds
            gzip_body: Compress request bodies
            http_client: Pre-built client (tests); a new one is created otherwise
            sleep: Sleep function used between retries (injectable for tests)
        """
        self._dsn = dsn
        self._rate_limiter = rate_limiter
        self._client_name = client_name
        self._timeout = timeout
        self._gzip = gzip_body
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout, follow_redirects=False)

    @property
    def dsn(self) -> Dsn:
        return self._dsn

    def send(self, body: bytes, category: str, retries: Sequence[float] = ()) -> SendResponse:
        """Deliver one encoded envelope.

        Args:
            body: Encoded envelope bytes
            category: Rate-limit category of the envelope's primary item
            retries: Delays in seconds before each retry; empty means one attempt

        Returns:
            The collector's answer for the successful attempt

        Raises:
            ClientError: When the final attempt failed, a non-retryable
                status was returned, or a retry was blocked by a rate limit
                (backed_off set, status_code of the last response kept).
                attempts is set to the number of HTTP attempts made.
        """
        delays = [float(d) for d in retries]
        wait = wait_chain(*(wait_fixed(d) for d in delays)) if delays else wait_none()
        attempt = 0
        last_status: int | None = None
        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(len(delays) + 1),
                wait=wait,
                retry=retry_if_exception(_is_retryable),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    if attempt > 1 and not self._rate_limiter.check(category):
                        logger.debug("Retry skipped, category is rate limited", category=category, attempt=attempt)
                        raise ClientError.rate_limited(category, last_status=last_status)
                    try:
                        event_id, status_code = self._attempt(body)
                    except ClientError as e:
                        last_status = e.status_code
                        raise
                    return SendResponse(event_id=event_id, status_code=status_code, attempts=attempt)
        except ClientError as e:
            # A retry blocked by the limiter made no request of its own
            e.attempts = attempt - 1 if e.backed_off else attempt
            raise

        # Retrying always returns or raises
        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    def _attempt(self, body: bytes) -> tuple[str, int]:
        headers = {
            AUTH_HEADER: self._dsn.auth_header(self._client_name),
            "Content-Type": ENVELOPE_CONTENT_TYPE,
        }
        if self._gzip:
            body = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"

        try:
            response = self._client.post(
                self._dsn.envelope_url,
                content=body,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.debug("Envelope send timed out", timeout=self._timeout, error=str(e))
            raise ClientError.timeout(e) from e
        except httpx.TransportError as e:
            logger.debug("Envelope send failed to connect", error=str(e), error_type=type(e).__name__)
            raise ClientError.connection(e) from e

        self._rate_limiter.apply(
            response.headers.get(RATE_LIMITS_HEADER),
            response.headers.get(RETRY_AFTER_HEADER),
            status_code=response.status_code,
        )

        if not response.is_success:
            raise ClientError.from_status(response.status_code, response.text)

        return _parse_event_id(response), response.status_code

    def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            self._client.close()


def _parse_event_id(response: httpx.Response) -> str:
    """Extract the assigned id from a 2xx body. Missing or null ids become ""."""
    if not response.content:
        return ""
    try:
        parsed = json.loads(response.content)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ClientError(
            ClientErrorReason.INVALID_RESPONSE,
            f"Collector returned a non-JSON body with HTTP {response.status_code}: {e}",
            status_code=response.status_code,
        ) from e
    if not isinstance(parsed, dict):
        raise ClientError(
            ClientErrorReason.INVALID_RESPONSE,
            f"Collector returned {type(parsed).__name__} instead of a JSON object",
            status_code=response.status_code,
        )
    event_id = parsed.get("id")
    return event_id if isinstance(event_id, str) else ""
