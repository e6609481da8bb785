# src/faultline/config.py
"""Client configuration.

ClientSettings is the single, frozen source of truth for a Client. It can be
built directly from keyword options or loaded from a YAML file plus
FAULTLINE_* environment variables with load_settings().

Per-call options (sample_rate, before_send, after_send_event, result,
request_retries, source) override the settings for one capture call only;
see CallOptions.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from faultline.contracts.enums import SendResult
from faultline.contracts.events import default_server_name
from faultline.dsn import Dsn, InvalidDsnError
from faultline.errors import ConfigurationError
from faultline.filtering import EventFilter


def _validate_rate(value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"must be between 0.0 and 1.0, got {value}")
    return value


def _validate_retries(value: list[float]) -> list[float]:
    for delay in value:
        if delay < 0:
            raise ValueError(f"retry delays must be >= 0, got {delay}")
    return value


def _validate_callable(value: Any) -> Any:
    if value is not None and not callable(value):
        raise ValueError(f"must be callable, got {type(value).__name__}")
    return value


class ClientSettings(BaseModel):
    """Validated client options.

    Example:
        settings = ClientSettings(dsn="https://public@collector.example.com/42", release="1.4.0")
    """

    model_config = {"frozen": True, "extra": "forbid"}

    dsn: str | None = Field(default=None, description="Destination descriptor; None disables sending")
    environment_name: str = Field(default="production", description="Environment tag copied into records")
    release: str | None = Field(default=None, description="Release tag copied into records")
    server_name: str = Field(default_factory=default_server_name, description="Host name copied into events")
    tags: dict[str, str] = Field(default_factory=dict, description="Default tags merged under per-event tags")

    sample_rate: float = Field(default=1.0, description="Fraction of events sent")
    traces_sample_rate: float = Field(default=1.0, description="Fraction of transactions sent")

    dedup_events: bool = Field(default=True, description="Drop repeats of the same event inside the window")
    dedup_window_seconds: float = Field(default=5.0, gt=0, description="Dedup window")

    test_mode: bool = Field(default=False, description="Accept sends with synthetic success when no DSN is set")
    send_result: SendResult = Field(default=SendResult.SYNC, description="sync blocks for the outcome, none returns queued")
    request_retries: list[float] = Field(
        default_factory=lambda: [1.0, 2.0, 4.0, 8.0],
        description="Delays in seconds before each retry; empty disables retries",
    )
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-attempt HTTP timeout")
    pool_size: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1, description="Sender worker count")
    max_queue_size: int = Field(default=1000, ge=1, description="Envelopes allowed to wait for a worker")
    gzip: bool = Field(default=False, description="Compress request bodies")

    client_report_interval_seconds: float = Field(default=30.0, gt=0, description="Client report flush tick")
    send_client_reports: bool = Field(default=True, description="Report locally dropped items to the collector")
    max_expected_check_in_time_seconds: float = Field(
        default=600.0,
        gt=0,
        description="How long an in-progress check-in id is remembered when the monitor sets no max_runtime",
    )

    filter: Any = Field(default=None, description="EventFilter consulted for exception events")
    before_send: Any = Field(default=None, description="Callable(record) -> record | None | False")
    after_send_event: Any = Field(default=None, description="Callable(record, CaptureResult) -> None")

    @field_validator("dsn")
    @classmethod
    def validate_dsn(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        try:
            Dsn.parse(v.strip())
        except InvalidDsnError as e:
            raise ValueError(str(e)) from None
        return v.strip()

    @field_validator("sample_rate", "traces_sample_rate")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        return _validate_rate(v)

    @field_validator("request_retries")
    @classmethod
    def validate_request_retries(cls, v: list[float]) -> list[float]:
        return _validate_retries(v)

    @field_validator("filter")
    @classmethod
    def validate_filter(cls, v: Any) -> Any:
        if v is not None and not isinstance(v, EventFilter):
            raise ValueError(f"must implement exclude_exception(exception, source), got {type(v).__name__}")
        return v

    @field_validator("before_send", "after_send_event")
    @classmethod
    def validate_hook(cls, v: Any) -> Any:
        return _validate_callable(v)

    @property
    def parsed_dsn(self) -> Dsn | None:
        return Dsn.parse(self.dsn) if self.dsn else None

    @classmethod
    def from_options(cls, **options: Any) -> ClientSettings:
        """Validate keyword options, raising ConfigurationError on failure."""
        try:
            return cls(**options)
        except ValidationError as e:
            raise ConfigurationError.from_validation_error(e) from e


class CallOptions(BaseModel):
    """Overrides for a single capture call. Unset fields fall back to settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    sample_rate: float | None = None
    before_send: Any = None
    after_send_event: Any = None
    result: SendResult | None = None
    request_retries: list[float] | None = None
    source: str | None = None

    @field_validator("sample_rate")
    @classmethod
    def validate_rate(cls, v: float | None) -> float | None:
        return None if v is None else _validate_rate(v)

    @field_validator("request_retries")
    @classmethod
    def validate_request_retries(cls, v: list[float] | None) -> list[float] | None:
        return None if v is None else _validate_retries(v)

    @field_validator("before_send", "after_send_event")
    @classmethod
    def validate_hook(cls, v: Any) -> Any:
        return _validate_callable(v)


def resolve_call_options(options: Mapping[str, Any]) -> CallOptions:
    """Validate per-call options.

    Raises:
        ConfigurationError: On unknown options or invalid values
    """
    try:
        return CallOptions(**options)
    except ValidationError as e:
        raise ConfigurationError.from_validation_error(e, source="call options") from e


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Unset variables without a default are left as written.
    """

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        default = match.group(2)
        return default if default is not None else match.group(0)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_VAR_PATTERN.sub(replacer, value)
        if isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_expand_value(item) for item in value]
        return value

    return {k: _expand_value(v) for k, v in config.items()}


def load_settings(config_path: Path | None = None, **overrides: Any) -> ClientSettings:
    """Load settings from an optional YAML file and FAULTLINE_* environment variables.

    Precedence, highest first:
    1. overrides passed to this function
    2. Environment variables (FAULTLINE_DSN, FAULTLINE_RELEASE, ...)
    3. Config file
    4. ClientSettings defaults

    Raises:
        FileNotFoundError: If config_path is given and does not exist
        ConfigurationError: If the merged configuration fails validation
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="FAULTLINE",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys and mixes in its own settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(raw_config)
    raw_config.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ClientSettings(**raw_config)
    except ValidationError as e:
        raise ConfigurationError.from_validation_error(e, source="configuration") from e
