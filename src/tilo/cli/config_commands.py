"""CLI commands for configuration management."""

import json
import sys
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from tilo.core.config import ConfigManager

console = Console()
error_console = Console(stderr=True)


def get_config(ctx: click.Context) -> ConfigManager:
    """Load the configuration once per invocation.

    Honors the global ``--config`` and ``--socket`` options.
    """
    obj = ctx.find_root().ensure_object(dict)
    if obj.get("config") is None:
        try:
            obj["config"] = ConfigManager(
                config_path=obj.get("config_path"),
                overrides={"server.socket": obj.get("socket")},
            )
        except ValueError as e:
            error_console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
    config_mgr: ConfigManager = obj["config"]
    return config_mgr


def convert_value(value: str) -> Any:
    """Convert a command-line value to bool, None, int, float or str."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    if value.lower() == "null":
        return None
    for kind in (int, float):
        try:
            return kind(value)
        except ValueError:
            continue
    return value


@click.group()
def config() -> None:
    """Manage tilo configuration.

    Configuration is stored in ~/.config/tilo/config.yml
    """
    pass


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def config_show(ctx: click.Context, as_json: bool) -> None:
    """Show the effective configuration.

    Example:
        tilo config show
        tilo config show --json
    """
    config_mgr = get_config(ctx)

    if as_json:
        click.echo(json.dumps(config_mgr.to_dict(), indent=2))
        return

    table = Table(title="tilo Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key in config_mgr.get_all_keys():
        table.add_row(key, str(config_mgr.get(key)))
    console.print(table)
    console.print(f"\nConfig file: {config_mgr.config_path}")


@config.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx: click.Context, key: str) -> None:
    """Get a specific configuration value.

    Example:
        tilo config get server.socket
    """
    value = get_config(ctx).get(key)

    if value is None:
        error_console.print(f"[red]Error:[/red] Configuration key '{key}' not found")
        sys.exit(1)

    if isinstance(value, dict):
        click.echo(json.dumps(value, indent=2))
    else:
        click.echo(str(value))


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value in the config file.

    Example:
        tilo config set server.recent_limit 10
        tilo config set logging.level DEBUG
    """
    config_mgr = get_config(ctx)
    converted_value = convert_value(value)

    try:
        config_mgr.set(key, converted_value)
        console.print(f"[green]✓[/green] Set {key} = {converted_value}")
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@config.command("path")
@click.pass_context
def config_path(ctx: click.Context) -> None:
    """Show path to configuration file."""
    click.echo(str(get_config(ctx).config_path))
