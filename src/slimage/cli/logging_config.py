"""Logging setup for the slimage CLI.

- loguru is the only sink; stdlib loggers of dependencies are intercepted
- console shows INFO+ (milestones only unless --verbose), DEBUG goes to file
- optional rotating file log under ``log.dir`` or ``SLIMAGE_LOG_DIR``
"""

from __future__ import annotations

import logging
import os
import sys
import warnings
from datetime import datetime
from pathlib import Path
from typing import Any

from click import Context
from loguru import logger

from slimage import __version__

# Third-party loggers routed to loguru
INTERCEPTED_LOGGERS = [
    "httpx",
    "httpcore",
    "hpack",
    "PIL",
    "PIL.Image",
    "playwright",
    "playwright.async_api",
    "asyncio",
    "concurrent.futures",
]

SUPPRESSED_WARNINGS = [
    r"coroutine .* was never awaited",
    r"Image size \(\d+ pixels\) exceeds limit",
]

# INFO messages shown on the console without --verbose
MILESTONE_KEYWORDS = ("complete", "finished", "Stopped", "Optimized", "Loaded")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <5} | {module}:{line: <3} | {message}"


class LoggingContext:
    """Temporarily remove the console handler while a Rich progress bar runs.

    Usage:
        with LoggingContext(console_handler_id, verbose):
            ...  # progress bar owns the terminal
    """

    def __init__(self, console_handler_id: int | None, verbose: bool = False) -> None:
        self._handler_id = console_handler_id
        self.verbose = verbose
        self._suspended = False

    @property
    def current_handler_id(self) -> int | None:
        return self._handler_id

    def __enter__(self) -> LoggingContext:
        if self._handler_id is not None and not self._suspended:
            try:
                logger.remove(self._handler_id)
                self._suspended = True
            except ValueError:
                pass  # already removed
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._suspended:
            self._handler_id = _add_console_handler(self.verbose)
            self._suspended = False


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru, keeping the record's origin."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.bind(
            name=record.name,
            module=record.module,
            function=record.funcName,
            line=record.lineno,
        ).opt(exception=record.exc_info).log(level, record.getMessage())


def _add_console_handler(verbose: bool) -> int:
    return logger.add(
        sys.stderr,
        level="INFO",
        format=CONSOLE_FORMAT,
        filter=lambda record: _should_show_log(record, verbose),
    )


def setup_logging(
    verbose: bool,
    log_dir: str | None = None,
    log_level: str = "DEBUG",
    rotation: str = "10 MB",
    retention: str = "7 days",
    quiet: bool = False,
) -> tuple[int | None, Path | None]:
    """Configure loguru sinks and stdlib interception.

    Args:
        verbose: Show all INFO messages on the console, not just milestones
        log_dir: Directory for log files (``SLIMAGE_LOG_DIR`` overrides it)
        log_level: Level for the file sink
        rotation: Log file rotation size
        retention: Log file retention period
        quiet: Disable console logging entirely

    Returns:
        Tuple of (console_handler_id, log_file_path)
    """
    for pattern in SUPPRESSED_WARNINGS:
        warnings.filterwarnings("ignore", message=pattern)

    logger.remove()

    console_handler_id = None if quiet else _add_console_handler(verbose)

    log_dir = os.environ.get("SLIMAGE_LOG_DIR") or log_dir
    log_file_path: Path | None = None
    if log_dir:
        log_path = Path(log_dir).expanduser()
        log_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        log_file_path = log_path / f"slimage_{timestamp}.log"
        logger.add(
            log_file_path,
            level=log_level,
            rotation=rotation,
            retention=retention,
            format=FILE_FORMAT,
        )

    _setup_log_interception()
    return console_handler_id, log_file_path


def _setup_log_interception() -> None:
    """Route dependency loggers to loguru at WARNING+."""
    intercept_handler = InterceptHandler()
    for logger_name in INTERCEPTED_LOGGERS:
        stdlib_logger = logging.getLogger(logger_name)
        stdlib_logger.handlers.clear()
        stdlib_logger.addHandler(intercept_handler)
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(logging.WARNING)


def _is_third_party_log(name: str, module: str) -> bool:
    name_lower = name.lower()
    module_lower = module.lower()
    for intercepted in INTERCEPTED_LOGGERS:
        intercepted_lower = intercepted.lower()
        if name_lower == intercepted_lower or name_lower.startswith(f"{intercepted_lower}."):
            return True
        if module_lower == intercepted_lower:
            return True
    return False


def _should_show_log(record: Any, verbose: bool) -> bool:
    """Console filter: no DEBUG, all WARNING+, INFO milestones unless verbose."""
    level = record["level"].name

    if level == "DEBUG":
        return False
    if level in ("WARNING", "ERROR", "CRITICAL"):
        return True

    extra = record.get("extra", {})
    if _is_third_party_log(extra.get("name", ""), extra.get("module", "")):
        return False

    if not verbose:
        message = record.get("message", "")
        return any(kw in message for kw in MILESTONE_KEYWORDS)
    return True


def print_version(ctx: Context, param: Any, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    from slimage.cli.console import get_console

    get_console().print(f"slimage {__version__}")
    ctx.exit(0)
