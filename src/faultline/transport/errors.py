# src/faultline/transport/errors.py
"""Transport failure classification.

Retryable failures get another attempt on the caller's retry schedule:
timeouts, connection errors and every non-2xx response (a 429 also installs
a rate-limit backoff, which the transport re-checks before retrying).
Local conditions (queue overflow, an active backoff) and unparseable 2xx
bodies fail on the first attempt.
"""

from __future__ import annotations

from enum import StrEnum


class ClientErrorReason(StrEnum):
    """Underlying cause of a transport failure."""

    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    QUEUE_OVERFLOW = "queue_overflow"
    INVALID_RESPONSE = "invalid_response"


class ClientError(Exception):
    """An envelope could not be delivered.

    Raised inside the transport and the sender pool, and handed back to
    callers inside a CaptureResult; capture functions never let it escape.

    Attributes:
        reason: Classified cause
        status_code: HTTP status for SERVER_ERROR / RATE_LIMITED responses
        cause: The underlying exception for TIMEOUT / CONNECTION_ERROR
        retryable: Whether the retry schedule may try again
        attempts: Number of HTTP attempts made before giving up
        backed_off: Set when an active rate-limit backoff stopped the send;
            status_code is then the status of the last response, if any
    """

    def __init__(
        self,
        reason: ClientErrorReason,
        message: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
        retryable: bool = False,
        backed_off: bool = False,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code
        self.cause = cause
        self.retryable = retryable
        self.backed_off = backed_off
        self.attempts = 0

    @classmethod
    def timeout(cls, cause: BaseException) -> ClientError:
        return cls(ClientErrorReason.TIMEOUT, f"Request timed out: {cause}", cause=cause, retryable=True)

    @classmethod
    def connection(cls, cause: BaseException) -> ClientError:
        return cls(ClientErrorReason.CONNECTION_ERROR, f"Connection failed: {cause}", cause=cause, retryable=True)

    @classmethod
    def from_status(cls, status_code: int, body: str) -> ClientError:
        reason = ClientErrorReason.RATE_LIMITED if status_code == 429 else ClientErrorReason.SERVER_ERROR
        return cls(
            reason,
            f"Collector responded with HTTP {status_code}: {body[:200]}",
            status_code=status_code,
            retryable=True,
        )

    @classmethod
    def rate_limited(cls, category: str, *, last_status: int | None = None) -> ClientError:
        return cls(
            ClientErrorReason.RATE_LIMITED,
            f"Category {category!r} is backed off by the collector",
            status_code=last_status,
            backed_off=True,
        )

    @classmethod
    def queue_overflow(cls, max_queue_size: int) -> ClientError:
        return cls(
            ClientErrorReason.QUEUE_OVERFLOW,
            f"Sender queue is full ({max_queue_size} pending); envelope was not sent",
        )

    def __repr__(self) -> str:
        return f"ClientError(reason={self.reason.value!r}, status_code={self.status_code!r}, message={str(self)!r})"
