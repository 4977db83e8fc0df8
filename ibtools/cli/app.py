"""CLI app entry point.

Provides the main Typer app with global logging flags. Subcommand groups are
registered here.
"""

import logging
from typing import Optional

import typer

from ibtools.cli.ib_commands import ib_app
from ibtools.config import get_logging_settings
from ibtools.logging import configure_logging, set_debug_mode
from ibtools.version import __version__

app = typer.Typer(
    name="ibtools",
    help="ibtools - keep an Interactive Brokers gateway connection alive.",
    add_completion=False,
)
app.add_typer(ib_app, name="ib")


def _version_callback(value: bool):
    if value:
        typer.echo(f"ibtools {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output"
    ),
    log_dir: Optional[str] = typer.Option(
        None, "--log-dir", help="Also write rotating log files to this directory"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Configure logging before any command runs."""
    settings = get_logging_settings()
    debug = verbose or settings.debug
    console_level = (
        logging.DEBUG if debug else logging.getLevelName(settings.level.upper())
    )
    if not isinstance(console_level, int):
        console_level = logging.INFO

    configure_logging(
        log_dir=log_dir or settings.log_dir,
        console_level=console_level,
        config={"debug_mode": debug},
    )
    set_debug_mode(debug)


if __name__ == "__main__":
    app()
