# tests/unit/test_config.py
"""Unit tests for client settings, per-call options and settings loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from faultline.config import ClientSettings, load_settings, resolve_call_options
from faultline.contracts import SendResult
from faultline.errors import ConfigurationError
from tests.helpers import DSN


class ExcludeNothing:
    def exclude_exception(self, exception: BaseException, source: str | None) -> bool:
        return False


class TestClientSettingsDefaults:
    def test_defaults(self) -> None:
        settings = ClientSettings()

        assert settings.dsn is None
        assert settings.environment_name == "production"
        assert settings.sample_rate == 1.0
        assert settings.dedup_window_seconds == 5.0
        assert settings.send_result is SendResult.SYNC
        assert settings.request_retries == [1.0, 2.0, 4.0, 8.0]
        assert settings.max_queue_size == 1000
        assert settings.pool_size >= 1
        assert settings.parsed_dsn is None

    def test_blank_dsn_means_no_destination(self) -> None:
        assert ClientSettings(dsn="  ").dsn is None

    def test_parsed_dsn(self) -> None:
        assert ClientSettings(dsn=DSN).parsed_dsn.project_id == "42"

    def test_frozen(self) -> None:
        settings = ClientSettings()

        with pytest.raises(ValidationError):
            settings.release = "2.0"  # type: ignore[misc]


class TestClientSettingsValidation:
    @pytest.mark.parametrize(
        ("options", "field"),
        [
            ({"dsn": "not a dsn"}, "dsn"),
            ({"sample_rate": 1.5}, "sample_rate"),
            ({"traces_sample_rate": -0.1}, "traces_sample_rate"),
            ({"request_retries": [1.0, -1.0]}, "request_retries"),
            ({"send_result": "later"}, "send_result"),
            ({"pool_size": 0}, "pool_size"),
            ({"dedup_window_seconds": 0}, "dedup_window_seconds"),
            ({"before_send": "not callable"}, "before_send"),
            ({"filter": object()}, "filter"),
            ({"unknown_option": True}, "unknown_option"),
        ],
    )
    def test_invalid_options_raise_configuration_error(self, options: dict, field: str) -> None:
        with pytest.raises(ConfigurationError, match=field) as exc_info:
            ClientSettings.from_options(**options)

        assert isinstance(exc_info.value.validation_error, ValidationError)

    def test_event_filter_accepted(self) -> None:
        event_filter = ExcludeNothing()

        assert ClientSettings(filter=event_filter).filter is event_filter

    def test_hooks_accepted(self) -> None:
        settings = ClientSettings(before_send=lambda record: record, after_send_event=lambda record, result: None)

        assert callable(settings.before_send)


class TestCallOptions:
    def test_known_options(self) -> None:
        options = resolve_call_options({"sample_rate": 0.0, "result": "none", "source": "web"})

        assert options.sample_rate == 0.0
        assert options.result is SendResult.NONE
        assert options.source == "web"

    def test_unknown_option_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="call options"):
            resolve_call_options({"sampel_rate": 0.5})


class TestLoadSettings:
    def test_yaml_with_env_var_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COLLECTOR_HOST", "collector.internal")
        monkeypatch.delenv("DEPLOY_ENV", raising=False)
        config = tmp_path / "faultline.yaml"
        config.write_text(
            "dsn: https://public@${COLLECTOR_HOST}/7\n"
            "environment_name: ${DEPLOY_ENV:-staging}\n"
            "request_retries: [0.5]\n"
            "tags:\n"
            "  team: core\n"
        )

        settings = load_settings(config)

        assert settings.dsn == "https://public@collector.internal/7"
        assert settings.environment_name == "staging"
        assert settings.request_retries == [0.5]
        assert settings.tags == {"team": "core"}

    def test_environment_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config = tmp_path / "faultline.yaml"
        config.write_text("release: from-file\n")
        monkeypatch.setenv("FAULTLINE_RELEASE", "from-env")

        assert load_settings(config).release == "from-env"

    def test_explicit_overrides_win(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAULTLINE_DSN", DSN)

        settings = load_settings(dsn="https://other@collector.example.com/9", release=None)

        assert settings.dsn == "https://other@collector.example.com/9"
        assert settings.release is None

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_invalid_values_raise_configuration_error(self, tmp_path: Path) -> None:
        config = tmp_path / "faultline.yaml"
        config.write_text("sample_rate: 2\n")

        with pytest.raises(ConfigurationError, match="sample_rate"):
            load_settings(config)
