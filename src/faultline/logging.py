# src/faultline/logging.py
"""Structured logging configuration and the stdlib logging bridge.

configure_logging() sets up structlog and stdlib logging to emit the same
output (JSON or console) through structlog's ProcessorFormatter, so modules
using logging.getLogger(__name__) and structlog.get_logger(__name__) render
identically.

LoggingBridgeHandler turns application log records into captured events.
Records from the faultline logger namespace are never captured, so the
client's own diagnostics cannot feed back into the pipeline.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import TYPE_CHECKING, Any

import structlog
from structlog.stdlib import ProcessorFormatter

from faultline.contracts.enums import Level

if TYPE_CHECKING:
    from faultline.client import Client

# Verbose at DEBUG with request-level noise; kept at WARNING or above
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "urllib3",
    "urllib3.connectionpool",
)

# Logger namespace of this package; records from it are never bridged
INTERNAL_LOGGER_PREFIX = "faultline"


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove ProcessorFormatter bookkeeping fields from output."""
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure logging; cached loggers would go stale
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if isinstance(h, LoggingBridgeHandler)]
    root.addHandler(handler)
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the root level
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


_LEVELS: tuple[tuple[int, Level], ...] = (
    (logging.CRITICAL, Level.FATAL),
    (logging.ERROR, Level.ERROR),
    (logging.WARNING, Level.WARNING),
    (logging.INFO, Level.INFO),
)


def level_for(levelno: int) -> Level:
    """Map a stdlib log level number to an event level."""
    for threshold, level in _LEVELS:
        if levelno >= threshold:
            return level
    return Level.DEBUG


def is_internal_record(record: logging.LogRecord) -> bool:
    return record.name == INTERNAL_LOGGER_PREFIX or record.name.startswith(INTERNAL_LOGGER_PREFIX + ".")


class LoggingBridgeHandler(logging.Handler):
    """Capture stdlib log records at or above level as events.

    Records carrying exc_info become exception events; others become
    message events. Every captured event gets source "logger" and the
    logger name in its extra context.

    Example:
        logging.getLogger().addHandler(LoggingBridgeHandler(client))
    """

    SOURCE = "logger"

    def __init__(self, client: Client, level: int = logging.ERROR) -> None:
        super().__init__(level=level)
        self._client = client
        self._local = threading.local()

    def emit(self, record: logging.LogRecord) -> None:
        if is_internal_record(record) or getattr(self._local, "active", False):
            return
        self._local.active = True
        try:
            extra = {"logger": record.name}
            level = level_for(record.levelno)
            exc = record.exc_info[1] if record.exc_info else None
            if exc is not None:
                self._client.capture_exception(exc, level=level, extra=extra, source=self.SOURCE)
            else:
                self._client.capture_message(record.getMessage(), level=level, extra=extra, source=self.SOURCE)
        except Exception:
            self.handleError(record)
        finally:
            self._local.active = False
