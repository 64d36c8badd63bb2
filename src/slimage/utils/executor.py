"""Shared ThreadPoolExecutor for CPU-bound image codec work."""

from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

T = TypeVar("T")

# Decoding and encoding one image at a time; a small pool is plenty
_CODEC_MAX_WORKERS = min(os.cpu_count() or 2, 4)
_CODEC_EXECUTOR: ThreadPoolExecutor | None = None
_EXECUTOR_LOCK = threading.Lock()


def get_codec_executor() -> ThreadPoolExecutor:
    """Get or create the shared codec thread pool.

    Uses double-checked locking for thread-safe lazy initialization.
    """
    global _CODEC_EXECUTOR
    if _CODEC_EXECUTOR is None:
        with _EXECUTOR_LOCK:
            if _CODEC_EXECUTOR is None:
                _CODEC_EXECUTOR = ThreadPoolExecutor(
                    max_workers=_CODEC_MAX_WORKERS,
                    thread_name_prefix="slimage-codec",
                )
    return _CODEC_EXECUTOR


async def run_in_codec_thread(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run ``func`` in the codec pool so Pillow never blocks the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        get_codec_executor(), lambda: func(*args, **kwargs)
    )


def shutdown_codec_executor() -> None:
    """Shut the codec pool down (CLI exit)."""
    global _CODEC_EXECUTOR
    if _CODEC_EXECUTOR is not None:
        _CODEC_EXECUTOR.shutdown(wait=True)
        _CODEC_EXECUTOR = None
