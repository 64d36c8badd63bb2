"""Text helpers for operator-facing messages."""

from __future__ import annotations

from slimage.constants import DEFAULT_TITLE_PREVIEW_CHARS


def format_error_message(error: BaseException) -> str:
    """Render an exception for the error log.

    Falls back to the exception class name when the message is empty
    (e.g. a bare ``asyncio.TimeoutError``).
    """
    message = str(error).strip()
    return message or type(error).__name__


def truncate_title(title: str, max_len: int = DEFAULT_TITLE_PREVIEW_CHARS) -> str:
    """Shorten a record title for status lines."""
    title = " ".join(title.split())
    if len(title) <= max_len:
        return title
    return title[: max_len - 3].rstrip() + "..."
