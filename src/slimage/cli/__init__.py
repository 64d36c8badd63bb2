"""CLI package for slimage.

Usage:
    from slimage.cli import app
    from slimage.cli import ui
"""

from __future__ import annotations

from slimage.cli import ui
from slimage.cli.main import app

__all__ = ["app", "ui"]
