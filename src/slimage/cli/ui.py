"""Status line helpers for CLI output.

Usage:
    from slimage.cli import ui

    ui.title("Scan")
    ui.success("12 candidates found")
    ui.error("Run failed", detail="Conversion endpoint is not configured")
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from slimage.cli.console import get_console

MARK_SUCCESS = "✓"
MARK_ERROR = "✗"
MARK_WARNING = "!"
MARK_INFO = "•"
MARK_TITLE = "◆"
MARK_LINE = "│"


def title(text: str, *, console: Console | None = None) -> None:
    c = console or get_console()
    c.print(f"[cyan]{MARK_TITLE}[/] [bold]{escape(text)}[/]")
    c.print()


def success(text: str, *, console: Console | None = None) -> None:
    c = console or get_console()
    c.print(f"  [green]{MARK_SUCCESS}[/] {escape(text)}")


def error(
    text: str, *, detail: str | None = None, console: Console | None = None
) -> None:
    """Error line, with an optional dimmed detail line underneath."""
    c = console or get_console()
    c.print(f"  [red]{MARK_ERROR}[/] {escape(text)}")
    if detail:
        c.print(f"    [dim]{MARK_LINE} {escape(detail)}[/]")


def warning(
    text: str, *, detail: str | None = None, console: Console | None = None
) -> None:
    c = console or get_console()
    c.print(f"  [yellow]{MARK_WARNING}[/] {escape(text)}")
    if detail:
        c.print(f"    [dim]{MARK_LINE} {escape(detail)}[/]")


def info(text: str, *, console: Console | None = None) -> None:
    c = console or get_console()
    c.print(f"  [dim]{MARK_INFO}[/] {escape(text)}")


def step(text: str, *, console: Console | None = None) -> None:
    c = console or get_console()
    c.print(f"  [dim]{MARK_LINE}[/] {escape(text)}")


def summary(text: str, *, console: Console | None = None) -> None:
    c = console or get_console()
    c.print()
    c.print(f"[green]{MARK_SUCCESS}[/] {escape(text)}")
