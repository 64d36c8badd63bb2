"""Safe file writes for session state and the local record store."""

from __future__ import annotations

import json
import os
import sys
import tempfile
import time
from pathlib import Path
from typing import Any

from slimage.constants import DEFAULT_JSON_INDENT

# Windows can briefly lock the destination (antivirus, indexer)
_REPLACE_RETRIES = 5
_REPLACE_RETRY_DELAY = 0.05


def _replace(src: str, dst: Path) -> None:
    if sys.platform != "win32":
        os.replace(src, dst)
        return

    for attempt in range(_REPLACE_RETRIES):
        try:
            os.replace(src, dst)
            return
        except PermissionError:
            if attempt == _REPLACE_RETRIES - 1:
                raise
            time.sleep(_REPLACE_RETRY_DELAY * (attempt + 1))


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write text through a temp file in the same directory, then rename.

    A reader never observes a half-written file, even if the process dies
    mid-write.

    Args:
        path: Target file path
        content: Text content to write
        encoding: Text encoding (default: utf-8)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        suffix=".tmp", prefix=f".{path.name}.", dir=path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
        _replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write_json(
    path: Path,
    obj: Any,
    indent: int = DEFAULT_JSON_INDENT,
    ensure_ascii: bool = False,
) -> None:
    """Serialize ``obj`` as JSON and write it atomically."""
    content = json.dumps(obj, indent=indent, ensure_ascii=ensure_ascii)
    atomic_write_text(path, content + "\n")


async def _replace_async(src: str, dst: Path) -> None:
    import asyncio

    import aiofiles.os

    if sys.platform != "win32":
        await aiofiles.os.replace(src, dst)
        return

    for attempt in range(_REPLACE_RETRIES):
        try:
            await aiofiles.os.replace(src, dst)
            return
        except PermissionError:
            if attempt == _REPLACE_RETRIES - 1:
                raise
            await asyncio.sleep(_REPLACE_RETRY_DELAY * (attempt + 1))


async def atomic_write_text_async(
    path: Path, content: str, encoding: str = "utf-8"
) -> None:
    """Async version of ``atomic_write_text``."""
    import aiofiles
    import aiofiles.os

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        suffix=".tmp", prefix=f".{path.name}.", dir=path.parent
    )
    try:
        os.close(fd)
        async with aiofiles.open(tmp_path, "w", encoding=encoding) as f:
            await f.write(content)
        await _replace_async(tmp_path, path)
    except BaseException:
        try:
            await aiofiles.os.remove(tmp_path)
        except OSError:
            pass
        raise


async def atomic_write_json_async(
    path: Path,
    obj: Any,
    indent: int = DEFAULT_JSON_INDENT,
    ensure_ascii: bool = False,
) -> None:
    content = json.dumps(obj, indent=indent, ensure_ascii=ensure_ascii)
    await atomic_write_text_async(path, content + "\n")


async def read_text_async(path: Path, encoding: str = "utf-8") -> str:
    import aiofiles

    async with aiofiles.open(path, encoding=encoding) as f:
        return await f.read()


async def write_bytes_async(path: Path, data: bytes) -> None:
    """Write bytes to file asynchronously, creating parent directories."""
    import aiofiles

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    async with aiofiles.open(path, "wb") as f:
        await f.write(data)


def validate_file_size(path: Path, max_size_bytes: int) -> None:
    """Reject files larger than ``max_size_bytes``.

    Raises:
        ValueError: If the file exceeds the limit
    """
    if not path.exists():
        return

    size = path.stat().st_size
    if size > max_size_bytes:
        raise ValueError(
            f"File too large: {path.name} is {size} bytes (max: {max_size_bytes} bytes)"
        )
