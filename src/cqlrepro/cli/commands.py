"""
CLI commands: ``run``, ``teardown`` and ``config``.
"""

from __future__ import annotations

import json
import sys

import typer
from rich.console import Console
from rich.table import Table

from cqlrepro.core.errors import ConfigError, ContainerError
from cqlrepro.core.logging import configure_logging
from cqlrepro.deploy.acknowledge import ConsoleAcknowledger, NoopAcknowledger
from cqlrepro.deploy.config import EnvironmentConfig, load_config
from cqlrepro.deploy.results import RunResult, RunStatus

console = Console()
err_console = Console(stderr=True)


def _load(**overrides: object) -> EnvironmentConfig:
    try:
        return load_config(**{k: v for k, v in overrides.items() if v is not None})
    except ConfigError as exc:
        err_console.print(f"[bold red]Error[/bold red] (CONFIG): {exc.message}")
        if exc.cause is not None:
            err_console.print(str(exc.cause))
        raise typer.Exit(code=2) from exc


# ── run ──────────────────────────────────────────────────────────────────


def run(
    no_pause: bool = typer.Option(False, "--no-pause", help="Do not wait for input when the defect appears."),
    json_out: bool = typer.Option(False, "--json", help="Print the run result as JSON."),
    timeout: int | None = typer.Option(None, "--timeout", "-t", help="Readiness probe attempts."),
    fetch_size: int | None = typer.Option(
        None, "--fetch-size", help="Internal page size for capped scans (defaults to the cap)."
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Log level."),
) -> None:
    """Provision Cassandra, run the paged-scan sequence and tear everything down."""
    from cqlrepro.deploy.workflow import ReproductionDriver

    config = _load(timeout=timeout, log_level=log_level)
    configure_logging(
        level=config.log_level,
        json_format=True if json_out else None,
        stream=sys.stderr if json_out else None,
    )

    if not json_out:
        console.print(f"[bold]cqlrepro[/] container: {config.name}  keyspace: {config.keyspace}")

    acknowledger = NoopAcknowledger() if no_pause or json_out else ConsoleAcknowledger(console)
    driver = ReproductionDriver(config, acknowledger=acknowledger, fetch_size=fetch_size)
    result = driver.run()

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_run_result(result)

    if result.status is RunStatus.FAILED:
        raise typer.Exit(code=1)


# ── teardown ─────────────────────────────────────────────────────────────


def teardown(
    name: str | None = typer.Option(None, "--name", "-n", help="Container name (defaults to config)."),
) -> None:
    """Remove a container left behind by an interrupted run."""
    from cqlrepro.deploy.workflow import teardown_by_name

    config = _load(name=name)
    configure_logging(level=config.log_level)
    try:
        removed = teardown_by_name(config.name)
    except ContainerError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=1) from exc

    if removed:
        console.print(f"[green]Removed container {config.name}[/green]")
    else:
        console.print(f"[dim]No container named {config.name}.[/dim]")


# ── config ───────────────────────────────────────────────────────────────


def show_config(
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show the resolved CASSANDRA_13592_* configuration."""
    config = _load()
    data = config.masked()
    if json_out:
        console.print_json(json.dumps(data, default=str))
        return
    console.print("[bold]Configuration[/bold]")
    for key, value in data.items():
        console.print(f"  [cyan]{key}[/cyan]: {value if value is not None else '(unset)'}")


# ── Output helpers ───────────────────────────────────────────────────────


def _print_run_result(result: RunResult) -> None:
    """Pretty-print a RunResult."""
    status_style = {
        RunStatus.REPRODUCED: "yellow bold",
        RunStatus.NOT_REPRODUCED: "green",
        RunStatus.FAILED: "red bold",
    }.get(result.status, "white")

    steps = Table(title="Steps")
    steps.add_column("Step", style="bold")
    steps.add_column("Status")
    steps.add_column("Time")
    steps.add_column("Error")
    for step in result.steps:
        style = {"passed": "green", "failed": "red", "skipped": "dim"}[step.status]
        steps.add_row(
            step.name,
            f"[{style}]{step.status}[/{style}]",
            f"{step.duration_ms:.0f}ms",
            (step.error or {}).get("message", ""),
        )
    console.print(steps)

    for scan in result.scans:
        console.print(f"\n[bold]Query {scan.label}[/bold] (cap {scan.page_size_cap or 'none'})")
        if scan.error:
            console.print(f"  [red]{scan.error}[/red]")
            continue
        for record in scan.records:
            console.print(f"    {record['first_name']} {record['last_name']}, {record['age']}")

    if result.defect_detected:
        console.print(f"\n[yellow]{result.defect_message}[/yellow]")
    if result.teardown_error:
        console.print(f"\n[red]Teardown failed:[/red] {result.teardown_error.get('message')}")

    console.print(f"\n[{status_style}]{result.summary}[/{status_style}]")
