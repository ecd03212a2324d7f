"""
Root Typer application for the cqlrepro CLI.

Usage::

    cqlrepro run                 # full reproduction, pauses on the defect
    cqlrepro run --no-pause      # same, for unattended runs
    cqlrepro run --json          # print the RunResult as JSON
    cqlrepro teardown            # remove a container left by a crashed run
    cqlrepro config              # show resolved CASSANDRA_13592_* settings
"""

from __future__ import annotations

import typer
from typer import Typer

from cqlrepro.cli import commands

app = Typer(
    name="cqlrepro",
    help="cqlrepro: reproduce a Cassandra paging defect in a throwaway container.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from cqlrepro import __version__

        typer.echo(f"cqlrepro {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cqlrepro CLI: run the reproduction, tear down leftovers, inspect config."""


app.command("run")(commands.run)
app.command("teardown")(commands.teardown)
app.command("config")(commands.show_config)
