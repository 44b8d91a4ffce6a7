"""Main CLI application."""

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from tilo import __version__
from tilo.cli.config_commands import config, get_config
from tilo.cli.server_commands import server
from tilo.core.messages import Request, Response
from tilo.core.models import parse_task_names, validate_task_names
from tilo.core.quantifier import parameter_help, parse_arguments
from tilo.daemon.ipc import IPCClient, IPCError

console = Console()
error_console = Console(stderr=True)


def get_client(ctx: click.Context) -> IPCClient:
    return IPCClient(Path(get_config(ctx).get("server.socket")).expanduser())


def print_response(response: Response) -> None:
    """Print a response body as a borderless table; exit 1 on error."""
    if response.body:
        width = max(len(row) for row in response.body) or 1
        table = Table(show_header=False, box=None, pad_edge=False)
        for _ in range(width):
            table.add_column()
        for row in response.body:
            table.add_row(*(row + [""] * (width - len(row))))
        console.print(table)

    if response.failed:
        error_console.print(f"[red]Error:[/red] {response.error}")
        sys.exit(1)


def send(ctx: click.Context, request: Request) -> None:
    try:
        response = get_client(ctx).call(request)
    except IPCError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        error_console.print("[yellow]Is the server running? Try 'tilo server start'[/yellow]")
        sys.exit(1)
    print_response(response)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", help="Configuration file", type=click.Path())
@click.option("--socket", help="Server socket path", type=click.Path())
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], socket: Optional[str]) -> None:
    """tilo - a personal activity timer.

    A background server tracks the task you are working on; these
    commands talk to it.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["socket"] = socket


@cli.command()
@click.argument("task")
@click.pass_context
def start(ctx: click.Context, task: str) -> None:
    """Start a task, stopping the active one.

    Example:
        tilo start writing
    """
    try:
        validate_task_names([task])
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    send(ctx, Request("start", tasks=[task]))


@cli.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the active task and log it."""
    send(ctx, Request("stop"))


@cli.command()
@click.pass_context
def abort(ctx: click.Context) -> None:
    """Stop the active task without logging it."""
    send(ctx, Request("abort"))


@cli.command()
@click.pass_context
def current(ctx: click.Context) -> None:
    """Show the active task."""
    send(ctx, Request("current"))


@cli.command()
@click.pass_context
def resume(ctx: click.Context) -> None:
    """Restart the most recently logged task."""
    send(ctx, Request("resume"))


@cli.command()
@click.option("-n", "--count", type=int, help="Number of tasks to show")
@click.pass_context
def recent(ctx: click.Context, count: Optional[int]) -> None:
    """Show the active task and the most recently logged ones."""
    options = {"limit": str(count)} if count is not None else {}
    send(ctx, Request("recent", options=options))


@cli.command(
    context_settings={"ignore_unknown_options": True},
    epilog="\b\nParameters:\n" + parameter_help(),
)
@click.argument("tasks")
@click.argument("params", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def query(ctx: click.Context, tasks: str, params: tuple[str, ...]) -> None:
    """Show logged time for TASKS (comma separated, or :all).

    PARAMS select the time ranges and default to today.

    Example:
        tilo query writing,reading this-week

        tilo query :all --months-ago=0,1

        tilo query writing between 2019-01-01,2019-01-31
    """
    try:
        names = parse_task_names(tasks, allow_all=True)
        quantities = parse_arguments(list(params))
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    send(ctx, Request("query", tasks=names, quantities=quantities))


@cli.command()
@click.pass_context
def listen(ctx: click.Context) -> None:
    """Print task changes as JSON lines until the server shuts down."""
    try:
        for notification in get_client(ctx).listen():
            click.echo(json.dumps(notification.to_dict()))
    except IPCError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


@cli.command()
@click.pass_context
def ping(ctx: click.Context) -> None:
    """Check that the server answers."""
    send(ctx, Request("ping"))


@cli.command()
@click.pass_context
def shutdown(ctx: click.Context) -> None:
    """Stop the active task and shut the server down."""
    send(ctx, Request("shutdown"))


cli.add_command(server)
cli.add_command(config)


if __name__ == "__main__":
    cli(obj={})
