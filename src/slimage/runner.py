"""Sequential batch runner over the candidate set."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable

from loguru import logger

from slimage.constants import (
    DEFAULT_ITEM_TIMEOUT,
    DEFAULT_PACING_DELAY,
    DEFAULT_SKIP_PATTERNS,
    TIMEOUT_MESSAGE,
)
from slimage.errors import BatchBusyError
from slimage.models import ErrorLogEntry, ProgressState, Record, RunResult
from slimage.orchestrator import OptimizationOrchestrator
from slimage.scanner import CandidateSet
from slimage.urls import is_external, matches_any
from slimage.utils.text import format_error_message, truncate_title

ProgressCallback = Callable[[ProgressState], None]
ErrorCallback = Callable[[ErrorLogEntry], None]


class CancelToken:
    """Cooperative stop request, honoured only between items.

    Safe to set from a signal handler or another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class BatchRunner:
    """Drive the orchestrator over candidates one at a time.

    Items are processed in candidate order. Each item is raced against
    ``item_timeout``; a timeout is recorded as a failure with the message
    "Timeout" and the run moves on, unless the record turns out to have
    been saved before the deadline. A candidate leaves the set only once
    its attempt has finished, so a stopped run keeps exactly the items it
    never started, in their original order.
    """

    def __init__(
        self,
        orchestrator: OptimizationOrchestrator,
        item_timeout: float = DEFAULT_ITEM_TIMEOUT,
        pacing_delay: float = DEFAULT_PACING_DELAY,
        skip_patterns: list[str] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.item_timeout = item_timeout
        self.pacing_delay = pacing_delay
        self.skip_patterns = (
            list(DEFAULT_SKIP_PATTERNS) if skip_patterns is None else skip_patterns
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def _should_skip(self, record: Record) -> bool:
        return not is_external(record.image_ref) or matches_any(
            record.image_ref, self.skip_patterns
        )

    async def run(
        self,
        candidates: CandidateSet,
        timeout: float | None = None,
        token: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> RunResult:
        """Process every candidate, or until ``token`` is cancelled.

        Raises:
            BatchBusyError: If this runner is already running
        """
        if self._running:
            raise BatchBusyError("running")

        self._running = True
        try:
            return await self._run(
                candidates,
                timeout if timeout is not None else self.item_timeout,
                token,
                on_progress,
                on_error,
            )
        finally:
            self._running = False

    async def _run(
        self,
        candidates: CandidateSet,
        timeout: float,
        token: CancelToken | None,
        on_progress: ProgressCallback | None,
        on_error: ErrorCallback | None,
    ) -> RunResult:
        progress = ProgressState(total=len(candidates))
        errors: list[ErrorLogEntry] = []
        cancelled = False

        def emit() -> None:
            if on_progress:
                on_progress(progress.copy())

        logger.info(f"[Runner] Starting run over {progress.total} candidates")

        while (record := candidates.peek()) is not None:
            if token is not None and token.cancelled:
                cancelled = True
                break

            progress.current += 1
            progress.message = f"Optimizing: {truncate_title(record.title)}"
            emit()

            if self._should_skip(record):
                logger.debug(f"[Runner] Skipping {record.id}: {record.image_ref!r}")
                progress.skipped += 1
            else:
                error = await self._process(record, timeout)
                if error is None:
                    progress.success += 1
                else:
                    progress.failed += 1
                    errors.append(error)
                    logger.warning(f"[Runner] {error}")
                    if on_error:
                        on_error(error)

            candidates.discard(record.id)
            emit()

            if candidates and self.pacing_delay:
                await asyncio.sleep(self.pacing_delay)

        if cancelled:
            progress.message = "Stopped by operator"
            logger.info(f"[Runner] Stopped, {len(candidates)} candidates retained")
        else:
            candidates.clear()
            progress.message = "Finished"
            logger.info(
                f"[Runner] Run finished: {progress.success} ok, "
                f"{progress.failed} failed, {progress.skipped} skipped"
            )
        emit()

        return RunResult(
            progress=progress.copy(),
            errors=errors,
            cancelled=cancelled,
            remaining=len(candidates),
        )

    async def _process(self, record: Record, timeout: float) -> ErrorLogEntry | None:
        try:
            await asyncio.wait_for(self.orchestrator.optimize(record), timeout=timeout)
        except asyncio.TimeoutError:
            if await self.orchestrator.is_persisted(record):
                logger.warning(
                    f"[Runner] {record.id} timed out after its record was saved, counted as done"
                )
                return None
            return ErrorLogEntry(record.title, TIMEOUT_MESSAGE)
        except Exception as e:
            return ErrorLogEntry(record.title, format_error_message(e))
        return None
