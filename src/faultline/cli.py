# src/faultline/cli.py
"""Faultline command line interface.

Entry point for the faultline CLI tool. Its main use is checking that a
configuration can actually deliver to the collector:

    faultline send-test-event --settings faultline.yaml
    FAULTLINE_DSN=https://public@collector.example.com/42 faultline send-test-event
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError

from faultline import __version__
from faultline.client import Client
from faultline.config import load_settings
from faultline.contracts.enums import SendResult
from faultline.contracts.results import CaptureStatus
from faultline.errors import ConfigurationError

__all__ = ["app"]

app = typer.Typer(
    name="faultline",
    help="Faultline: error and check-in delivery client.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"faultline version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """Faultline: error and check-in delivery client."""
    from faultline.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


class FaultlineTestError(Exception):
    """Raised on purpose so the test event carries a real exception."""


@app.command("send-test-event")
def send_test_event(
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Destination descriptor; overrides settings and FAULTLINE_DSN.",
    ),
    message: str = typer.Option(
        "Testing faultline delivery",
        "--message",
        "-m",
        help="Exception message of the test event.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Send one synthetic exception event and report the outcome."""
    try:
        client_settings = load_settings(settings, dsn=dsn, send_result=SendResult.SYNC)
    except FileNotFoundError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None
    except (YamlParserError, YamlScannerError) as e:
        typer.secho(f"Error: invalid YAML in {settings}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None
    except ConfigurationError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    with Client(client_settings) as client:
        try:
            raise FaultlineTestError(message)
        except FaultlineTestError as e:
            result = client.capture_exception(e, source="cli")

    summary = {
        "dsn": client.get_dsn(),
        "environment": client_settings.environment_name,
        "release": client_settings.release,
        "status": result.status.value,
        "event_id": result.event_id,
        "error": str(result.error) if result.error else None,
        "accepted": result.ok,
    }

    if output_format == "json":
        typer.echo(json.dumps(summary))
    else:
        typer.echo(f"Destination: {summary['dsn'] or '(none)'}")
        typer.echo(f"Environment: {summary['environment']}")
        typer.echo(f"Release:     {summary['release'] or '(none)'}")
        match result.status:
            case CaptureStatus.DELIVERED:
                typer.secho(f"Event delivered (id: {result.event_id or 'unassigned'})", fg=typer.colors.GREEN)
            case CaptureStatus.IGNORED:
                typer.echo("Event ignored: no destination configured")
            case CaptureStatus.EXCLUDED:
                typer.secho(f"Event excluded: {result.reason}", fg=typer.colors.YELLOW)
            case _:
                typer.secho(f"Event delivery failed: {result.error}", fg=typer.colors.RED, err=True)

    if result.status is CaptureStatus.FAILED:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
