"""Global options shared by every subcommand."""

from pathlib import Path
from typing import Optional

import typer

from .. import __version__
from ..config import load_config
from ..exceptions import ConfigurationError
from ..logging_config import setup_logging
from . import app
from ._common import console


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"codefamily {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "-c",
        "--config",
        help="Configuration file (TOML)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only log errors",
    ),
    log_file: Optional[str] = typer.Option(
        None,
        "--log-file",
        help="Also append logs to this file",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """
    Track who owns what in a repository, who keeps getting replaced,
    and which pushes collide with open review requests.

    [bold cyan]Examples:[/bold cyan]

      codefamily analyze acme/widgets

      codefamily worker --log-file worker.log

      codefamily scores acme/widgets --json
    """
    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    try:
        settings = load_config(config_file=config, verbose=verbose, quiet=quiet)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)
    ctx.obj = {"config": settings}
