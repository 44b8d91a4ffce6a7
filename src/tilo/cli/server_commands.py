"""CLI commands for running the tilo server."""

import os
import sys
import time

import click
from rich.console import Console

from tilo.cli.config_commands import get_config
from tilo.daemon.daemon import DaemonError, TiloDaemon
from tilo.daemon.ipc import IPCClient
from tilo.daemon.platform import get_socket_path

console = Console()
error_console = Console(stderr=True)


@click.group()
def server() -> None:
    """Run the tilo background server."""
    pass


@server.command("run")
@click.pass_context
def server_run(ctx: click.Context) -> None:
    """Run the server in the foreground until shut down."""
    config_mgr = get_config(ctx)
    client = IPCClient(get_socket_path(config_mgr))
    if client.is_daemon_running():
        console.print("[yellow]Server is already running[/yellow]")
        return

    console.print("[cyan]Starting server in foreground...[/cyan]")
    try:
        TiloDaemon(config_mgr).start(foreground=True)
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped by user[/yellow]")
    except DaemonError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@server.command("start")
@click.option("--wait", default=5.0, help="Seconds to wait for the server to answer")
@click.pass_context
def server_start(ctx: click.Context, wait: float) -> None:
    """Start the server in the background."""
    config_mgr = get_config(ctx)
    client = IPCClient(get_socket_path(config_mgr))
    if client.is_daemon_running():
        console.print("[yellow]Server is already running[/yellow]")
        return

    try:
        daemon_instance = TiloDaemon(config_mgr)
    except DaemonError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    pid = os.fork()
    if pid == 0:
        # Child process: detaches and serves until shutdown
        try:
            daemon_instance.start(foreground=False)
        except DaemonError:
            os._exit(1)
        os._exit(0)

    os.waitpid(pid, 0)
    deadline = time.monotonic() + wait
    while time.monotonic() < deadline:
        if client.is_daemon_running():
            console.print(f"[green]✓[/green] Server listening on {client.socket_path}")
            return
        time.sleep(0.1)

    error_console.print("[red]Error:[/red] Server did not come up, check the log file")
    sys.exit(1)
