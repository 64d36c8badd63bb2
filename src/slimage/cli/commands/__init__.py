"""CLI subcommand groups."""

from slimage.cli.commands.config import config

__all__ = ["config"]
