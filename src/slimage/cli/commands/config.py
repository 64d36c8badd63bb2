"""Configuration CLI commands.

- config show: current effective configuration
- config path: which file was loaded
- config get: one value by dotted key
- config set: change one value and save it
"""

from __future__ import annotations

import json
from typing import Any

import click
from pydantic import BaseModel, ValidationError
from rich.syntax import Syntax

from slimage.cli import ui
from slimage.cli.console import get_console
from slimage.config import ConfigManager


def _manager(ctx: click.Context) -> ConfigManager:
    obj = ctx.find_root().obj or {}
    manager = obj.get("config_manager")
    if manager is None:
        manager = ConfigManager()
        manager.load()
    return manager


def _print_json(value: Any) -> None:
    output = json.dumps(value, indent=2, ensure_ascii=False)
    get_console().print(Syntax(output, "json", theme="monokai", line_numbers=False))


def parse_value(value: str) -> Any:
    """Parse a CLI string into bool, int, float, JSON list/object or str."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.lower() in ("null", "none"):
        return None
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    if value[:1] in ("[", "{"):
        try:
            return json.loads(value)
        except ValueError:
            pass
    return value


@click.group()
def config() -> None:
    """Configuration management commands."""


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current effective configuration."""
    _print_json(_manager(ctx).config.model_dump(mode="json", exclude_none=True))


@config.command("path")
@click.pass_context
def config_path_cmd(ctx: click.Context) -> None:
    """Show which configuration file is in use."""
    manager = _manager(ctx)
    if manager.config_path:
        ui.success(f"Currently using: {manager.config_path}")
    else:
        ui.warning("Using default configuration (no config file found)")


@config.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx: click.Context, key: str) -> None:
    """Get a configuration value (e.g. scan.window_size)."""
    value = _manager(ctx).get(key)
    if value is None:
        get_console().print(f"[yellow]Key not found:[/yellow] {key}")
        raise SystemExit(1)

    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude_none=True)

    if isinstance(value, (dict, list)):
        _print_json(value)
    else:
        get_console().print(str(value))


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value and save it."""
    manager = _manager(ctx)
    parsed = parse_value(value)

    try:
        manager.set(key, parsed)
    except ValidationError as ve:
        console = get_console()
        console.print(f"[red]Invalid value for '{key}':[/red]")
        for err in ve.errors():
            loc = ".".join(str(x) for x in err["loc"])
            console.print(f"[red]  {loc}: {err['msg']}[/red]")
        raise SystemExit(1)

    path = manager.save()
    ui.success(f"Set {key} = {parsed!r} ({path})")


__all__ = ["config"]
