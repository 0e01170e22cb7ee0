"""
i3x3 command-line interface.

Usage:
    i3x3 [--config PATH] daemon [--interval S] [--threshold N] [--timeout S]
    i3x3 redistribute [--json]
    i3x3 status [--json]
    i3x3 move N
    i3x3 switch N
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import click
from rich.console import Console
from rich.table import Table

from .config import load_config
from .connection import ResilientI3Connection
from .distributor import WorkspaceDistributor
from .errors import ConfigError, I3x3Error
from .queries import I3Queries, active_outputs, expected_assignments, sort_primary_first

T = TypeVar("T")

console = Console()


async def open_queries(timeout: float) -> I3Queries:
    """Connect to i3 for a one-shot command."""
    connection = ResilientI3Connection()
    conn = await connection.connect_with_retry(max_attempts=3)
    return I3Queries(conn, timeout=timeout)


def _run(ctx: click.Context, action: Callable[[I3Queries], Awaitable[T]]) -> T:
    """Connect, run an async action, and turn i3x3 errors into exit code 1."""
    timeout = ctx.obj["config"].command_timeout_seconds

    async def runner() -> T:
        queries = await open_queries(timeout)
        return await action(queries)

    try:
        return asyncio.run(runner())
    except (I3x3Error, ConnectionError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/i3x3/config.json)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path]):
    """Keep i3 workspaces on predictable outputs."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.option("--interval", type=float, default=None, help="Seconds between automatic passes")
@click.option("--threshold", type=int, default=None, help="Consecutive failures before exiting")
@click.option("--timeout", type=float, default=None, help="Seconds before an i3 call fails")
@click.pass_context
def daemon(ctx: click.Context, interval: Optional[float], threshold: Optional[int], timeout: Optional[float]):
    """Run the redistribution daemon in the foreground."""
    from .daemon import run_daemon

    try:
        config = ctx.obj["config"].with_overrides(
            interval_seconds=interval,
            failure_threshold=threshold,
            command_timeout_seconds=timeout,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    sys.exit(run_daemon(config))


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output JSON instead of text")
@click.pass_context
def redistribute(ctx: click.Context, output_json: bool):
    """Run a single redistribution pass now."""

    async def action(queries: I3Queries):
        return await WorkspaceDistributor(queries).redistribute()

    result = _run(ctx, action)

    if output_json:
        click.echo(json.dumps(result.model_dump(), indent=2))
        return

    if not result.moves:
        click.echo("All workspaces are on their expected outputs")
    for move in result.moves:
        click.echo(f"Moved workspace {move.workspace_num}: {move.current_output} -> {move.expected_output}")


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output JSON instead of a table")
@click.pass_context
def status(ctx: click.Context, output_json: bool):
    """Show where each workspace is and where it belongs."""

    async def action(queries: I3Queries):
        outputs = await queries.list_outputs()
        workspaces = await queries.list_workspaces()
        return outputs, expected_assignments(outputs, workspaces)

    outputs, assignments = _run(ctx, action)
    ordered = [o.name for o in sort_primary_first(active_outputs(outputs))]

    if output_json:
        data: Dict[str, Any] = {
            "active_outputs": ordered,
            "workspaces": [
                {**a.model_dump(), "needs_move": a.needs_move}
                for a in assignments
            ],
        }
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(title=f"Active outputs: {', '.join(ordered)}")
    table.add_column("Workspace", justify="right")
    table.add_column("Current output")
    table.add_column("Expected output")
    table.add_column("Status")
    for a in sorted(assignments, key=lambda a: a.workspace_num):
        state = "[yellow]drift[/yellow]" if a.needs_move else "[green]ok[/green]"
        table.add_row(str(a.workspace_num), a.current_output, f"{a.expected_output} (#{a.expected_index})", state)
    console.print(table)


@cli.command()
@click.argument("workspace", type=click.IntRange(min=1))
@click.pass_context
def move(ctx: click.Context, workspace: int):
    """Move the focused container to WORKSPACE without following it."""
    _run(ctx, lambda queries: queries.move_container_to_workspace(workspace))


@cli.command()
@click.argument("workspace", type=click.IntRange(min=1))
@click.pass_context
def switch(ctx: click.Context, workspace: int):
    """Switch focus to WORKSPACE."""
    _run(ctx, lambda queries: queries.switch_to_workspace(workspace))


def main() -> None:
    cli(obj={})
