"""Shared Rich consoles for the slimage CLI.

Usage:
    from slimage.cli.console import get_console, get_stderr_console
"""

from __future__ import annotations

from rich.console import Console

_console: Console | None = None
_stderr_console: Console | None = None


def get_console() -> Console:
    """Shared stdout console (reports, tables, JSON)."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def get_stderr_console() -> Console:
    """Shared stderr console (progress bars and spinners)."""
    global _stderr_console
    if _stderr_console is None:
        _stderr_console = Console(stderr=True)
    return _stderr_console


def reset_consoles() -> None:
    """Drop cached consoles so tests see fresh stdout/stderr."""
    global _console, _stderr_console
    _console = None
    _stderr_console = None
