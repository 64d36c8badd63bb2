"""Operator-facing maintenance session.

``MaintenanceSession`` wires scanner, runner and orchestrator together,
keeps the read model (cursor, candidates, unknown count, progress, error
log) and enforces that scanning and running never overlap. Between
processes the resumable part of that state is kept in a small JSON file:

    <state_dir>/slimage.<hash>.state.json

where ``<hash>`` is derived from the record store location, so different
collections never share a state file. Progress counters are not persisted.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from slimage.config import SlimageConfig
from slimage.constants import MAX_STATE_FILE_SIZE, STATE_VERSION, USER_AGENT
from slimage.converter import Converter
from slimage.errors import BatchBusyError, StoreError
from slimage.gateway import ConversionGateway
from slimage.models import ErrorLogEntry, ProgressState, Record, RunResult, ScanResult
from slimage.orchestrator import OptimizationOrchestrator
from slimage.probe import SizeProbe
from slimage.runner import BatchRunner, CancelToken, ProgressCallback
from slimage.scanner import BatchScanner, CandidateSet
from slimage.security import atomic_write_json, validate_file_size
from slimage.stores import build_stores
from slimage.stores.base import RecordStore


class SessionPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    RUNNING = "running"


@dataclass
class SessionState:
    """Resumable part of a session, as stored on disk."""

    version: str = STATE_VERSION
    cursor: int = 0
    force_all: bool = False
    unknown_count: int = 0
    candidates: list[str] = field(default_factory=list)
    errors: list[ErrorLogEntry] = field(default_factory=list)
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "updated_at": self.updated_at,
            "cursor": self.cursor,
            "force_all": self.force_all,
            "unknown_count": self.unknown_count,
            "candidates": list(self.candidates),
            "errors": [{"title": e.record_title, "message": e.message} for e in self.errors],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionState:
        return cls(
            version=data.get("version", STATE_VERSION),
            cursor=max(0, int(data.get("cursor", 0))),
            force_all=bool(data.get("force_all", False)),
            unknown_count=max(0, int(data.get("unknown_count", 0))),
            candidates=[str(i) for i in data.get("candidates", [])],
            errors=[
                ErrorLogEntry(e.get("title", ""), e.get("message", ""))
                for e in data.get("errors", [])
            ],
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class SessionSnapshot:
    """Read model handed to the operator surface."""

    phase: str
    cursor: int
    total: int
    force_all: bool
    unknown_count: int
    candidates: list[Record]
    progress: ProgressState
    errors: list[ErrorLogEntry]

    @property
    def scan_complete(self) -> bool:
        return self.cursor >= self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "cursor": self.cursor,
            "total": self.total,
            "scan_complete": self.scan_complete,
            "force_all": self.force_all,
            "unknown_count": self.unknown_count,
            "candidates": [
                {"id": r.id, "title": r.title, "imageUrl": r.image_ref} for r in self.candidates
            ],
            "progress": self.progress.to_dict(),
            "errors": [str(e) for e in self.errors],
        }


def state_file_for(config: SlimageConfig) -> Path:
    """State file path for the record collection ``config`` points at."""
    digest = hashlib.md5(
        config.store.location().encode(), usedforsecurity=False
    ).hexdigest()[:6]
    return Path(config.state_dir).expanduser() / f"slimage.{digest}.state.json"


class MaintenanceSession:
    """Scan, run and inspect image maintenance for one record collection."""

    def __init__(
        self,
        records: RecordStore,
        scanner: BatchScanner,
        runner: BatchRunner,
        state_file: Path | None = None,
        client: httpx.AsyncClient | None = None,
        converter: Converter | None = None,
    ) -> None:
        self.records = records
        self.scanner = scanner
        self.runner = runner
        self.orchestrator = runner.orchestrator
        self.state_file = state_file
        self.errors: list[ErrorLogEntry] = []
        self.progress = ProgressState()
        self._phase = SessionPhase.IDLE
        self._token: CancelToken | None = None
        self._client = client
        self._converter = converter

    @classmethod
    def from_config(
        cls,
        config: SlimageConfig,
        client: httpx.AsyncClient | None = None,
        state_file: Path | None = None,
    ) -> MaintenanceSession:
        """Build the full pipeline described by ``config``.

        When ``client`` is None the session creates and owns one (closed by
        ``aclose``).
        """
        owned_client = client is None
        if client is None:
            client = httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, follow_redirects=True)

        records, assets, settings = build_stores(config, client)
        gateway = ConversionGateway(settings, client, timeout=config.gateway.timeout)
        converter = (
            None
            if config.convert.mode == "gateway"
            else Converter.from_config(config.convert, client)
        )
        orchestrator = OptimizationOrchestrator(
            records,
            assets,
            gateway,
            converter,
            mode=config.convert.mode,
            namespace=config.store.namespace,
            store_timeout=config.store.timeout,
        )
        scanner = BatchScanner(
            records,
            SizeProbe(client, timeout=config.scan.probe_timeout),
            window_size=config.scan.window_size,
            heavy_threshold=config.scan.heavy_threshold_bytes,
            force_all=config.scan.force_all,
        )
        runner = BatchRunner(
            orchestrator,
            item_timeout=config.run.item_timeout,
            pacing_delay=config.run.pacing_delay,
            skip_patterns=config.run.skip_patterns,
        )
        return cls(
            records,
            scanner,
            runner,
            state_file=state_file if state_file is not None else state_file_for(config),
            client=client if owned_client else None,
            converter=converter,
        )

    async def aclose(self) -> None:
        await self.orchestrator.wait_for_cleanups()
        if self._converter is not None:
            await self._converter.close()
        if self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> MaintenanceSession:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # -- phase exclusivity ---------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @asynccontextmanager
    async def _exclusive(self, phase: SessionPhase) -> AsyncIterator[None]:
        if self._phase is not SessionPhase.IDLE:
            raise BatchBusyError(self._phase.value)
        self._phase = phase
        try:
            yield
        finally:
            self._phase = SessionPhase.IDLE

    def _require_idle(self) -> None:
        if self._phase is not SessionPhase.IDLE:
            raise BatchBusyError(self._phase.value)

    # -- state file ----------------------------------------------------------

    def _current_state(self) -> SessionState:
        return SessionState(
            cursor=self.scanner.cursor,
            force_all=self.scanner.force_all,
            unknown_count=self.scanner.unknown_count,
            candidates=self.scanner.candidates.ids(),
            errors=list(self.errors),
            updated_at=datetime.now().astimezone().isoformat(),
        )

    def save_state(self) -> None:
        if self.state_file is None:
            return
        atomic_write_json(self.state_file, self._current_state().to_dict())

    async def load_state(self) -> bool:
        """Restore cursor, candidates and errors from the state file.

        Candidate ids that no longer resolve to a record are dropped.

        Returns:
            True if a state file was found and loaded
        """
        self.scanner.total = await self.records.count()
        if self.state_file is None or not self.state_file.exists():
            return False

        try:
            validate_file_size(self.state_file, MAX_STATE_FILE_SIZE)
            state = SessionState.from_dict(
                json.loads(self.state_file.read_text(encoding="utf-8"))
            )
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load state file {self.state_file}: {e}")
            return False

        self.scanner.cursor = min(state.cursor, self.scanner.total)
        self.scanner.force_all = state.force_all
        self.scanner.unknown_count = state.unknown_count
        self.errors = list(state.errors)

        candidates = self.scanner.candidates
        candidates.clear()
        for record_id in state.candidates:
            record = await self.records.get_by_id(record_id)
            if record is None:
                logger.debug(f"[Session] Dropping vanished candidate {record_id}")
                continue
            candidates.add(record)

        logger.debug(
            f"[Session] Resumed at {self.scanner.cursor}/{self.scanner.total} "
            f"with {len(candidates)} candidates"
        )
        return True

    # -- operations ----------------------------------------------------------

    def set_force_all(self, enabled: bool) -> None:
        self._require_idle()
        self.scanner.force_all = enabled
        self.save_state()

    async def scan_window(self, on_progress: ProgressCallback | None = None) -> ScanResult:
        async with self._exclusive(SessionPhase.SCANNING):
            result = await self.scanner.scan_window(self._tracking(on_progress))
        self.save_state()
        return result

    async def scan_all(
        self, on_progress: ProgressCallback | None = None
    ) -> list[ScanResult]:
        results = [await self.scan_window(on_progress)]
        while not results[-1].complete:
            results.append(await self.scan_window(on_progress))
        return results

    async def start_run(
        self,
        timeout: float | None = None,
        token: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> RunResult:
        """Run the batch over the current candidates.

        Raises:
            BatchBusyError: If a scan or another run is active
        """
        async with self._exclusive(SessionPhase.RUNNING):
            self._token = token or CancelToken()
            saved_remaining = len(self.scanner.candidates)

            def track(progress: ProgressState) -> None:
                nonlocal saved_remaining
                self.progress = progress
                # Save at item boundaries only, when a candidate has left the set
                remaining = len(self.scanner.candidates)
                if remaining != saved_remaining:
                    saved_remaining = remaining
                    self.save_state()
                if on_progress:
                    on_progress(progress)

            try:
                result = await self.runner.run(
                    self.scanner.candidates,
                    timeout=timeout,
                    token=self._token,
                    on_progress=track,
                    on_error=self.errors.append,
                )
            finally:
                self._token = None
                self.save_state()
        return result

    def stop(self) -> bool:
        """Request a cooperative stop; the in-flight item is allowed to finish.

        Returns:
            False if no run is active
        """
        if self._token is None:
            return False
        self._token.cancel()
        self.progress.message = "Stopping..."
        return True

    def reset_cursor(self) -> None:
        """Start over: cursor 0, no candidates, unknowns, errors or progress."""
        self._require_idle()
        self.scanner.reset()
        self.errors.clear()
        self.progress = ProgressState()
        self.save_state()

    def clear_candidates(self) -> None:
        self._require_idle()
        self.scanner.candidates.clear()
        self.save_state()

    def clear_errors(self) -> None:
        self.errors.clear()
        self.save_state()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            phase=self._phase.value,
            cursor=self.scanner.cursor,
            total=self.scanner.total,
            force_all=self.scanner.force_all,
            unknown_count=self.scanner.unknown_count,
            candidates=self.scanner.candidates.records(),
            progress=self.progress.copy(),
            errors=list(self.errors),
        )

    async def test_connection(self) -> str:
        async with self._exclusive(SessionPhase.RUNNING):
            return await self.orchestrator.test_connection()

    async def test_one(self) -> tuple[Record, Record]:
        async with self._exclusive(SessionPhase.RUNNING):
            return await self.orchestrator.test_one(self.runner.skip_patterns)

    async def optimize_record(self, record_id: str) -> tuple[Record, Record]:
        """Optimize a single record by id.

        Raises:
            StoreError: If the record does not exist
        """
        async with self._exclusive(SessionPhase.RUNNING):
            record = await self.records.get_by_id(record_id)
            if record is None:
                raise StoreError(f"Record not found: {record_id}")
            updated = await self.orchestrator.optimize(record)
            if record_id in self.scanner.candidates:
                self.scanner.candidates.discard(record_id)
                self.save_state()
            return record, updated

    def _tracking(self, on_progress: ProgressCallback | None) -> ProgressCallback:
        def track(progress: ProgressState) -> None:
            self.progress = progress
            if on_progress:
                on_progress(progress)

        return track

    @property
    def candidates(self) -> CandidateSet:
        return self.scanner.candidates
