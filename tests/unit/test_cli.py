# tests/unit/test_cli.py
"""Tests for the faultline CLI."""

import json
import logging
import os
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest
import respx
import structlog
from typer.testing import CliRunner

from faultline import __version__
from faultline.cli import app
from tests.helpers import DSN, ENVELOPE_URL, decode_items

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """No FAULTLINE_* variables, no .env pickup, and logging restored afterwards."""
    for name in list(os.environ):
        if name.startswith("FAULTLINE_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def router() -> Iterator[respx.MockRouter]:
    with respx.mock(assert_all_called=False) as router:
        yield router


class TestCLIBasics:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"faultline version {__version__}" in result.stdout

    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "send-test-event" in result.stdout

    def test_missing_env_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--env-file", str(tmp_path / "nope.env"), "send-test-event"])

        assert result.exit_code == 1


class TestSendTestEvent:
    def test_no_destination_is_ignored(self, router: respx.MockRouter) -> None:
        result = runner.invoke(app, ["--no-dotenv", "send-test-event"])

        assert result.exit_code == 0
        assert "Event ignored: no destination configured" in result.stdout
        assert len(router.calls) == 0

    def test_delivered(self, router: respx.MockRouter) -> None:
        route = router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, json={"id": "abc123"}))

        result = runner.invoke(app, ["--no-dotenv", "send-test-event", "--dsn", DSN, "-m", "smoke test"])

        assert result.exit_code == 0
        assert "Event delivered (id: abc123)" in result.stdout
        events = [body for call in route.calls for kind, body in decode_items(call.request.content) if kind == "event"]
        (event,) = events
        assert event["exception"]["values"][-1] == {
            "type": "FaultlineTestError",
            "value": "smoke test",
            "module": "faultline.cli",
        }

    def test_dsn_from_environment(self, router: respx.MockRouter, monkeypatch: pytest.MonkeyPatch) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, json={}))
        monkeypatch.setenv("FAULTLINE_DSN", DSN)

        result = runner.invoke(app, ["--no-dotenv", "send-test-event"])

        assert result.exit_code == 0
        assert "Event delivered (id: unassigned)" in result.stdout

    def test_dsn_from_dotenv_file(self, router: respx.MockRouter, tmp_path: Path) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, json={"id": "from-dotenv"}))
        env_file = tmp_path / "collector.env"
        env_file.write_text(f"FAULTLINE_DSN={DSN}\n")

        try:
            result = runner.invoke(app, ["--env-file", str(env_file), "send-test-event"])
        finally:
            os.environ.pop("FAULTLINE_DSN", None)

        assert result.exit_code == 0
        assert "from-dotenv" in result.stdout

    def test_delivery_failure_exits_nonzero(self, router: respx.MockRouter, monkeypatch: pytest.MonkeyPatch) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(400, text="bad envelope"))
        monkeypatch.setenv("FAULTLINE_REQUEST_RETRIES", "[]")

        result = runner.invoke(app, ["--no-dotenv", "send-test-event", "--dsn", DSN])

        assert result.exit_code == 1
        assert "Event delivery failed" in result.output

    def test_invalid_dsn(self) -> None:
        result = runner.invoke(app, ["--no-dotenv", "send-test-event", "--dsn", "ftp://collector.example.com/42"])

        assert result.exit_code == 1
        assert "Invalid faultline configuration" in result.output

    def test_missing_settings_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "send-test-event", "--settings", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_settings_file_with_env_expansion(
        self, router: respx.MockRouter, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, json={"id": "x"}))
        monkeypatch.setenv("APP_RELEASE", "3.1.4")
        settings_file = tmp_path / "faultline.yaml"
        settings_file.write_text(f'dsn: "{DSN}"\nenvironment_name: qa\nrelease: "${{APP_RELEASE:-0.0.0}}"\n')

        result = runner.invoke(app, ["--no-dotenv", "send-test-event", "--settings", str(settings_file)])

        assert result.exit_code == 0
        assert "Environment: qa" in result.stdout
        assert "3.1.4" in result.stdout

    def test_json_output(self, router: respx.MockRouter) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, json={"id": "abc123"}))

        result = runner.invoke(app, ["--no-dotenv", "send-test-event", "--dsn", DSN, "--format", "json"])

        assert result.exit_code == 0
        summary = json.loads(result.stdout.strip().splitlines()[-1])
        assert summary == {
            "dsn": DSN,
            "environment": "production",
            "release": None,
            "status": "delivered",
            "event_id": "abc123",
            "error": None,
            "accepted": True,
        }

    def test_json_output_for_failed_delivery(self, router: respx.MockRouter, monkeypatch: pytest.MonkeyPatch) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(500, text="down"))
        monkeypatch.setenv("FAULTLINE_REQUEST_RETRIES", "[]")

        result = runner.invoke(app, ["--no-dotenv", "send-test-event", "--dsn", DSN, "--format", "json"])

        assert result.exit_code == 1
        summary = json.loads(result.stdout.strip().splitlines()[-1])
        assert summary["status"] == "failed"
        assert summary["accepted"] is False
