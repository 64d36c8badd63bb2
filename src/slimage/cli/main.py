"""Command-line interface for slimage."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

if sys.platform == "win32":
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    if hasattr(sys.stderr, "reconfigure"):
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")

import click
from dotenv import load_dotenv

load_dotenv()

from click import Context
from loguru import logger
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from slimage.cli import ui
from slimage.cli.commands.config import config
from slimage.cli.console import get_stderr_console
from slimage.cli.logging_config import LoggingContext, print_version, setup_logging
from slimage.config import ConfigManager, EnvVarNotFoundError, SlimageConfig
from slimage.errors import NotConfiguredError, SlimageError, UpstreamFailure
from slimage.models import ProgressState, ScanResult
from slimage.runner import CancelToken
from slimage.session import MaintenanceSession
from slimage.utils.executor import shutdown_codec_executor
from slimage.utils.text import format_error_message

T = TypeVar("T")


# =============================================================================
# Helpers
# =============================================================================


def _report_error(error: Exception) -> None:
    cause = error.cause if isinstance(error, UpstreamFailure) else error
    hint = cause.resolution_hint if isinstance(cause, NotConfiguredError) else None
    ui.error(format_error_message(error), detail=hint)


def _run_session(
    ctx: Context,
    action: Callable[[MaintenanceSession], Awaitable[T]],
) -> T:
    """Open a session for the configured collection, run ``action``, close it."""
    cfg: SlimageConfig = ctx.obj["config"]

    async def _main() -> T:
        async with MaintenanceSession.from_config(cfg) as session:
            await session.load_state()
            return await action(session)

    try:
        return asyncio.run(_main())
    except (SlimageError, EnvVarNotFoundError, ValueError) as e:
        logger.debug(f"Command failed: {e!r}")
        _report_error(e)
        ctx.exit(1)
    finally:
        shutdown_codec_executor()


def _print_scan_result(result: ScanResult, force_all: bool) -> None:
    if result.added:
        ui.success(f"Found +{result.added} candidates")
    else:
        ui.info("No heavy images confirmed in this window")
    if result.unknown and not force_all:
        ui.warning(
            f"{result.unknown} images with unreadable size",
            detail="The server probably blocks size checks; "
            "rescan with --force-all to include them",
        )


# =============================================================================
# Main CLI app
# =============================================================================


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option("--verbose", is_flag=True, help="Enable verbose output.")
@click.option(
    "--version",
    "-v",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.pass_context
def app(ctx: Context, config_path: Path | None, verbose: bool) -> None:
    """slimage - find heavy images in a record collection and re-encode them.

    \b
    Typical session:
        slimage scan                 # classify the next window of records
        slimage scan --all           # ...or the whole collection
        slimage status               # candidates, unknowns, errors
        slimage run                  # optimize every candidate
        slimage reset                # start over from the first record
    """
    manager = ConfigManager()
    try:
        cfg = manager.load(config_path=config_path)
    except (OSError, ValueError) as e:
        ui.error("Cannot load configuration", detail=str(e))
        ctx.exit(2)

    console_handler_id, log_file_path = setup_logging(
        verbose=verbose,
        log_dir=cfg.log.dir,
        log_level=cfg.log.level,
        rotation=cfg.log.rotation,
        retention=cfg.log.retention,
    )
    if manager.config_path:
        logger.debug(f"[Config] Loaded from: {manager.config_path}")

    ctx.ensure_object(dict)
    ctx.obj.update(
        {
            "config": cfg,
            "config_manager": manager,
            "verbose": verbose,
            "console_handler_id": console_handler_id,
            "log_file_path": log_file_path,
        }
    )


app.add_command(config)


# =============================================================================
# Scanning
# =============================================================================


@app.command()
@click.option("--all", "scan_all", is_flag=True, help="Scan until the end of the collection.")
@click.option(
    "--force-all/--no-force-all",
    default=None,
    help="Treat every http(s) image as a candidate without probing its size.",
)
@click.option(
    "--window",
    "-w",
    type=click.IntRange(min=1),
    default=None,
    help="Records per scan window (default from config).",
)
@click.pass_context
def scan(
    ctx: Context, scan_all: bool, force_all: bool | None, window: int | None
) -> None:
    """Classify the next window of records into candidates."""
    status_console = get_stderr_console()

    async def action(session: MaintenanceSession):
        if force_all is not None:
            session.set_force_all(force_all)
        if window is not None:
            session.scanner.window_size = window

        results: list[ScanResult] = []
        if not (session.scanner.total and session.scanner.cursor >= session.scanner.total):
            with status_console.status("Scanning...") as status:

                def on_progress(progress: ProgressState) -> None:
                    status.update(escape(progress.message))

                if scan_all:
                    results = await session.scan_all(on_progress)
                else:
                    results = [await session.scan_window(on_progress)]

        return results, session.snapshot()

    results, snapshot = _run_session(ctx, action)

    ui.title(f"Scan {snapshot.cursor}/{snapshot.total}")
    if not results:
        ui.info("Scan already complete. Use 'slimage reset' to start over.")
    for result in results:
        _print_scan_result(result, snapshot.force_all)

    ui.step(f"Candidates: {len(snapshot.candidates)}")
    if snapshot.unknown_count:
        ui.step(f"Unknown size so far: {snapshot.unknown_count}")
    if snapshot.scan_complete:
        if snapshot.candidates:
            ui.summary("Scan complete. Run 'slimage run' to optimize the candidates.")
        else:
            ui.summary("Scan complete! No pending images found.")


# =============================================================================
# Running
# =============================================================================


@app.command()
@click.option(
    "--timeout",
    "-t",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-item timeout in seconds (default from config).",
)
@click.pass_context
def run(ctx: Context, timeout: float | None) -> None:
    """Optimize every candidate, one at a time.

    Press Ctrl+C once to stop after the current item; unprocessed
    candidates are kept for the next run.
    """
    logging_ctx = LoggingContext(ctx.obj["console_handler_id"], ctx.obj["verbose"])

    async def action(session: MaintenanceSession):
        if not session.candidates:
            return None

        token = CancelToken()
        loop = asyncio.get_running_loop()

        def request_stop() -> None:
            session.stop()
            get_stderr_console().print("[yellow]Stopping after the current item...[/]")
            # A second Ctrl+C interrupts immediately
            loop.remove_signal_handler(signal.SIGINT)

        try:
            loop.add_signal_handler(signal.SIGINT, request_stop)
        except (NotImplementedError, RuntimeError, ValueError):
            pass  # no signal support (Windows, non-main thread)

        progress_bar = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[green]{task.fields[ok]} ok[/] [red]{task.fields[failed]} failed[/]"),
            TimeElapsedColumn(),
            console=get_stderr_console(),
        )
        task_id = progress_bar.add_task(
            "Optimizing", total=len(session.candidates), ok=0, failed=0
        )

        def on_progress(progress: ProgressState) -> None:
            done = progress.success + progress.failed + progress.skipped
            progress_bar.update(
                task_id,
                completed=done,
                description=escape(progress.message),
                ok=progress.success,
                failed=progress.failed,
            )

        try:
            with logging_ctx, progress_bar:
                return await session.start_run(timeout=timeout, token=token, on_progress=on_progress)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError, ValueError):
                pass

    result = _run_session(ctx, action)

    if result is None:
        ui.info("No candidates. Run 'slimage scan' first.")
        return

    p = result.progress
    ui.title("Run")
    ui.success(f"{p.success} optimized")
    if p.failed:
        ui.error(f"{p.failed} failed")
    if p.skipped:
        ui.info(f"{p.skipped} skipped")
    for entry in result.errors:
        ui.step(str(entry))

    if result.cancelled:
        ui.warning(f"Stopped by operator, {result.remaining} candidates kept for the next run")
    else:
        ui.summary("Run finished!")


# =============================================================================
# Read model and housekeeping
# =============================================================================


@app.command()
@click.option("--json", "as_json", is_flag=True, help="Print the read model as JSON.")
@click.pass_context
def status(ctx: Context, as_json: bool) -> None:
    """Show cursor, candidates, unknown count and the error log."""

    async def action(session: MaintenanceSession):
        return session.snapshot()

    snapshot = _run_session(ctx, action)

    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False))
        return

    ui.title("Status")
    ui.step(f"Progress: {snapshot.cursor} / {snapshot.total}")
    ui.step(f"Force all: {'on' if snapshot.force_all else 'off'}")
    ui.step(f"Candidates: {len(snapshot.candidates)}")
    if snapshot.unknown_count and not snapshot.force_all:
        ui.warning(
            f"{snapshot.unknown_count} images with unreadable size",
            detail="Enable --force-all and rescan to include them",
        )
    for record in snapshot.candidates:
        ui.info(f"{record.title} ({record.id})")
    if snapshot.errors:
        ui.error(f"{len(snapshot.errors)} errors")
        for entry in snapshot.errors:
            ui.step(str(entry))
    if snapshot.scan_complete and not snapshot.candidates:
        ui.summary("Scan complete! No pending images found.")


@app.command()
@click.pass_context
def reset(ctx: Context) -> None:
    """Rewind the cursor and clear candidates, unknowns and errors."""

    async def action(session: MaintenanceSession) -> None:
        session.reset_cursor()

    _run_session(ctx, action)
    ui.success("Scan reset to the first record")


@app.command()
@click.option("--errors", "errors_only", is_flag=True, help="Clear the error log instead.")
@click.pass_context
def clear(ctx: Context, errors_only: bool) -> None:
    """Clear the candidate list (or the error log)."""

    async def action(session: MaintenanceSession) -> None:
        if errors_only:
            session.clear_errors()
        else:
            session.clear_candidates()

    _run_session(ctx, action)
    ui.success("Error log cleared" if errors_only else "Candidate list cleared")


# =============================================================================
# Single-item actions
# =============================================================================


@app.command()
@click.argument("record_id")
@click.pass_context
def optimize(ctx: Context, record_id: str) -> None:
    """Optimize one record by id."""

    async def action(session: MaintenanceSession):
        return await session.optimize_record(record_id)

    original, updated = _run_session(ctx, action)
    ui.success(f"Optimized: {original.title}")
    ui.step(f"New URL: {updated.image_ref}")


@app.command("test-connection")
@click.pass_context
def test_connection(ctx: Context) -> None:
    """Send a known public image through the conversion endpoint."""

    async def action(session: MaintenanceSession) -> str:
        return await session.test_connection()

    uri = _run_session(ctx, action)
    ui.success("Connection OK!")
    ui.step(f"Returned: {uri}")


@app.command("test-one")
@click.pass_context
def test_one(ctx: Context) -> None:
    """Optimize the first record with an http(s) image, end to end."""

    async def action(session: MaintenanceSession):
        return await session.test_one()

    original, updated = _run_session(ctx, action)
    ui.success("Success!")
    ui.step(f"Record: {original.title}")
    ui.step(f"New URL: {updated.image_ref}")


if __name__ == "__main__":
    app()
