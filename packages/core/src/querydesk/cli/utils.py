"""Shared helpers for the querydesk CLI."""

import signal
import sys
from importlib.metadata import PackageNotFoundError, version

import click
from rich.console import Console

from querydesk_models import ParameterValue

console = Console()


def _get_cli_version() -> str:
    """Version string from installed metadata, or "unknown" in a bare source checkout."""
    try:
        return version("querydesk")
    except PackageNotFoundError:
        return "unknown"


def _handle_sigint(signum, frame):
    """Exit quietly on Ctrl-C instead of dumping a traceback."""
    console.print("\n[dim]Cancelled.[/dim]")
    sys.exit(130)


signal.signal(signal.SIGINT, _handle_sigint)


def parse_param_option(value: str) -> ParameterValue:
    """Parse ``--param name=value``, ``--param name:type=value`` or a bare value."""
    if "=" not in value:
        return ParameterValue(value=value)
    key, raw = value.split("=", 1)
    name, _, type_name = key.partition(":")
    if type_name and type_name not in ("string", "number", "boolean", "date"):
        raise click.BadParameter(f"Unknown parameter type '{type_name}'", param_hint="--param")
    return ParameterValue(name=name.strip() or None, value=raw, type=type_name or None)
