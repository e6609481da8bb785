# src/faultline/__init__.py
"""
Faultline: error, message, check-in and transaction delivery to a collector.

Records are deduplicated, encoded as envelopes, gated by collector-driven
rate limits and delivered by a bounded sender pool with retries.

    import faultline

    faultline.init(dsn="https://public@collector.example.com/42", release="1.4.0")
    try:
        run_job()
    except Exception as e:
        faultline.capture_exception(e)
"""

__version__ = "0.1.0"

import threading
from typing import Any

from faultline.client import Client
from faultline.config import ClientSettings, load_settings
from faultline.contracts import (
    CaptureResult,
    CaptureStatus,
    CheckIn,
    CheckInStatus,
    Event,
    Level,
    MonitorConfig,
    MonitorSchedule,
    Span,
    Transaction,
)
from faultline.errors import ConfigurationError
from faultline.filtering import EventFilter
from faultline.transport.errors import ClientError, ClientErrorReason

_default_client: Client | None = None
_default_lock = threading.Lock()


def init(settings: ClientSettings | None = None, **options: Any) -> Client:
    """Create the process-default client, closing any previous one."""
    global _default_client
    client = Client(settings, **options)
    with _default_lock:
        previous, _default_client = _default_client, client
    if previous is not None:
        previous.close()
    return client


def get_client() -> Client | None:
    return _default_client


def shutdown(timeout: float = 5.0) -> None:
    """Close the process-default client, if any."""
    global _default_client
    with _default_lock:
        client, _default_client = _default_client, None
    if client is not None:
        client.close(timeout)


def capture_exception(exception: BaseException | None = None, **kwargs: Any) -> CaptureResult:
    client = _default_client
    if client is None:
        return CaptureResult.ignored()
    return client.capture_exception(exception, **kwargs)


def capture_message(message: str, params: tuple[Any, ...] | list[Any] = (), **kwargs: Any) -> CaptureResult:
    client = _default_client
    if client is None:
        return CaptureResult.ignored()
    return client.capture_message(message, params, **kwargs)


def capture_check_in(check_in: CheckIn | None = None, **kwargs: Any) -> CaptureResult:
    client = _default_client
    if client is None:
        return CaptureResult.ignored()
    return client.capture_check_in(check_in, **kwargs)


def send_transaction(transaction: Transaction, **options: Any) -> CaptureResult:
    client = _default_client
    if client is None:
        return CaptureResult.ignored()
    return client.send_transaction(transaction, **options)


__all__ = [
    "CaptureResult",
    "CaptureStatus",
    "CheckIn",
    "CheckInStatus",
    "Client",
    "ClientError",
    "ClientErrorReason",
    "ClientSettings",
    "ConfigurationError",
    "Event",
    "EventFilter",
    "Level",
    "MonitorConfig",
    "MonitorSchedule",
    "Span",
    "Transaction",
    "__version__",
    "capture_check_in",
    "capture_exception",
    "capture_message",
    "get_client",
    "init",
    "load_settings",
    "send_transaction",
    "shutdown",
]
