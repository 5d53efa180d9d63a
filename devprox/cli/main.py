"""Command-line interface for the devprox package."""

from __future__ import annotations

import datetime as dt
import os
from pathlib import Path

import typer
from rich.console import Console

from devprox import __version__
from devprox.cli.config import app as config_app
from devprox.cli.run import routes, serve
from devprox.env import load_env_files
from devprox.logging import configure_logging, log_startup_paths

console = Console()

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Serve static files and proxy API prefixes to local dev servers.",
)
app.add_typer(config_app, name="config")
app.command("serve")(serve)
app.command("routes")(routes)


def _version_callback(value: bool) -> None:
    """Render the CLI version when the eager --version flag is provided."""
    if value:
        console.print(f"[bold green]devprox[/] v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show the CLI version and exit.",
        is_eager=True,
        callback=_version_callback,
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Log level for console (and file) output. [env: DEVPROX_LOG_LEVEL, default: INFO]",
    ),
) -> None:
    """Handle global CLI options before dispatching to sub-commands."""

    load_env_files()
    log_dir = os.getenv("DEVPROX_LOG_DIR")
    configure_logging(
        level=log_level or os.getenv("DEVPROX_LOG_LEVEL") or "INFO",
        log_dir=Path(log_dir) if log_dir else None,
        prefix=ctx.invoked_subcommand or "devprox",
        started_at=dt.datetime.now(),
    )
    log_startup_paths()


def main() -> None:
    """Invoke the Typer application."""
    app(prog_name="devprox")
