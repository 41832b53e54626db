"""Output formatters for human-readable and JSON output."""

import json
import sys
import traceback
from typing import Any

import click


def format_json(data: Any, success: bool = True) -> str:
    """Format data as JSON output."""
    if success:
        output = {"success": True, "data": data}
    else:
        output = data  # Error dict already has success: false
    return json.dumps(output, indent=2, default=str)


def format_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
    include_traceback: bool = False,
) -> str:
    """Format an error as JSON with helpful information."""
    error_data: dict[str, Any] = {
        "type": error_type or type(error).__name__,
        "message": str(error),
        "help": help_text or "",
    }
    if include_traceback:
        error_data["traceback"] = traceback.format_exc()

    return json.dumps({"success": False, "error": error_data}, indent=2)


def output_json(data: Any, success: bool = True) -> None:
    """Output data as JSON to stdout."""
    click.echo(format_json(data, success))


def output_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
    include_traceback: bool = False,
) -> None:
    """Output an error as JSON to stdout."""
    click.echo(format_error_json(error, error_type, help_text, include_traceback))
    sys.exit(1)


def output_human(message: str) -> None:
    """Output a human-readable message."""
    click.echo(message)


def output_error_human(
    error: Exception,
    help_text: str | None = None,
    include_traceback: bool = False,
) -> None:
    """Output an error in human-readable format."""
    click.secho(f"Error: {error}", fg="red", err=True)
    if help_text:
        click.echo(f"\n{help_text}", err=True)
    if include_traceback:
        click.echo(f"\n{traceback.format_exc()}", err=True)
    sys.exit(1)


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False, verbose: bool = False):
        self.json_mode = json_mode
        self.verbose = verbose

    def status(self, message: str) -> None:
        """Progress message; goes to stderr in JSON mode to keep stdout parseable."""
        click.echo(message, err=self.json_mode)

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Output success response."""
        if self.json_mode:
            output_json(data)
        else:
            if human_message:
                output_human(human_message)
            else:
                output_human(json.dumps(data, indent=2, default=str))

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> None:
        """Output error response and exit with status 1."""
        if self.json_mode:
            output_error_json(error, error_type, help_text, self.verbose)
        else:
            output_error_human(error, help_text, self.verbose)
