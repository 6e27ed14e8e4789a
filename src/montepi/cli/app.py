"""Main Typer application, the entry point for the ``montepi`` CLI."""

from __future__ import annotations

import typer

from montepi import __version__
from montepi.cli.run import run_cmd

app = typer.Typer(
    name="montepi",
    help="Estimate pi by distributed Monte Carlo sampling.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Estimate pi across worker processes.")(run_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"montepi {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """MontePi: estimate pi by distributed Monte Carlo sampling."""
