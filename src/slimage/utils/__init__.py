"""Slimage utilities."""

from slimage.utils.executor import (
    get_codec_executor,
    run_in_codec_thread,
    shutdown_codec_executor,
)
from slimage.utils.text import format_error_message, truncate_title

__all__ = [
    "format_error_message",
    "get_codec_executor",
    "run_in_codec_thread",
    "shutdown_codec_executor",
    "truncate_title",
]
