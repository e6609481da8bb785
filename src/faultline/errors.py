# src/faultline/errors.py
"""Startup-time errors.

Runtime delivery problems never raise out of capture calls; see
faultline.contracts.results.CaptureResult and
faultline.transport.errors.ClientError for those.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pydantic import ValidationError


class ConfigurationError(Exception):
    """Invalid client options. Raised before any worker thread starts."""

    def __init__(self, message: str, *, validation_error: ValidationError | None = None) -> None:
        super().__init__(message)
        self.validation_error = validation_error

    @classmethod
    def from_validation_error(cls, error: ValidationError, *, source: str = "options") -> ConfigurationError:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}" for item in error.errors()
        )
        return cls(f"Invalid faultline {source}: {problems}", validation_error=error)
