"""Typer application and CLI entry point for the ``festivals`` tool.

This module wires together the top-level Typer application and registers
the built-in sub-commands (``fetch``, ``search``, ``related``, ``cache``,
``config``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app;
any :class:`~festivals_api.exceptions.FestivalsAPIError` escaping a command
becomes an error message and the error's exit code.

See Also:
    :mod:`festivals_api.config`: Configuration resolution and client construction.
    :mod:`festivals_api.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
from typing import Any, Optional

import typer

from festivals_api import __version__
from festivals_api.commands.cache import cache_app
from festivals_api.commands.config import config_app
from festivals_api.commands.data import fetch_command, related_command, search_command
from festivals_api.exceptions import FestivalsAPIError
from festivals_api.output import (
    OutputFormat,
    OutputManager,
    configure_logging,
    error,
    set_output,
)

app = typer.Typer(
    name="festivals",
    help="Query the Festivals web service.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"festivals-api {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="Web service base URL (overrides config)."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to config.json."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~festivals_api.output.OutputManager` and
    library logging from CLI flags, and stores the connection options in
    the Typer context so that sub-commands can read them via ``ctx.obj``.
    """
    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    configure_logging(output)

    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url
    ctx.obj["config_path"] = config_path


app.command("fetch")(fetch_command)
app.command("search")(search_command)
app.command("related")(related_command)
app.add_typer(cache_app, name="cache", help="Response cache management.")
app.add_typer(config_app, name="config", help="Configuration management.")


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``festivals`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except FestivalsAPIError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
