"""Windowed classification of records into optimization candidates."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from enum import Enum

from loguru import logger

from slimage.constants import (
    DEFAULT_HEAVY_THRESHOLD_BYTES,
    DEFAULT_SCAN_YIELD_DELAY,
    DEFAULT_WINDOW_SIZE,
)
from slimage.errors import BatchBusyError
from slimage.models import ProgressState, Record, ScanResult
from slimage.probe import UNKNOWN_SIZE, SizeProbe
from slimage.stores.base import RecordStore
from slimage.urls import is_external
from slimage.utils.text import truncate_title

ProgressCallback = Callable[[ProgressState], None]


class CandidateSet:
    """Ordered, de-duplicated (by record id) collection of candidates."""

    def __init__(self, records: list[Record] | None = None) -> None:
        self._items: dict[str, Record] = {}
        for record in records or []:
            self.add(record)

    def add(self, record: Record) -> bool:
        """Append ``record`` unless its id is already present."""
        if record.id in self._items:
            return False
        self._items[record.id] = record
        return True

    def peek(self) -> Record | None:
        """The oldest candidate, left in place."""
        return next(iter(self._items.values()), None)

    def discard(self, record_id: str) -> None:
        self._items.pop(record_id, None)

    def clear(self) -> None:
        self._items.clear()

    def ids(self) -> list[str]:
        return list(self._items)

    def records(self) -> list[Record]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Record]:
        return iter(list(self._items.values()))

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._items

    def __bool__(self) -> bool:
        return bool(self._items)


class ScanPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class BatchScanner:
    """Walk the record collection in fixed-size windows.

    Each ``scan_window`` call examines ``min(window_size, remaining)``
    records from the cursor. Records with an http(s) image are candidates
    when force mode is on; otherwise their size is probed: unknown sizes
    (``0``) are counted but not added, sizes above the threshold are added
    and the rest are skipped.

    Args:
        records: Record source
        probe: Header-only size probe
        candidates: Set to accumulate into (a fresh one if None)
        window_size: Records per scan call
        heavy_threshold: Size in bytes above which an image is a candidate
        force_all: Treat every http(s) image as a candidate without probing
        yield_delay: Pause after each record so the event loop stays responsive
    """

    def __init__(
        self,
        records: RecordStore,
        probe: SizeProbe,
        candidates: CandidateSet | None = None,
        window_size: int = DEFAULT_WINDOW_SIZE,
        heavy_threshold: int = DEFAULT_HEAVY_THRESHOLD_BYTES,
        force_all: bool = False,
        yield_delay: float = DEFAULT_SCAN_YIELD_DELAY,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.records = records
        self.probe = probe
        self.candidates = candidates if candidates is not None else CandidateSet()
        self.window_size = window_size
        self.heavy_threshold = heavy_threshold
        self.force_all = force_all
        self.yield_delay = yield_delay

        self.cursor = 0
        self.total = 0
        self.unknown_count = 0
        self.phase = ScanPhase.IDLE

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.cursor >= self.total

    async def scan_window(self, on_progress: ProgressCallback | None = None) -> ScanResult:
        """Classify the next window of records.

        Raises:
            BatchBusyError: If a scan is already in progress
        """
        if self.phase is not ScanPhase.IDLE:
            raise BatchBusyError(self.phase.value)

        self.phase = ScanPhase.SCANNING
        try:
            return await self._scan_window(on_progress)
        finally:
            self.phase = ScanPhase.IDLE

    async def _scan_window(self, on_progress: ProgressCallback | None) -> ScanResult:
        self.total = await self.records.count()
        # The collection may have shrunk since the last window
        self.cursor = min(self.cursor, self.total)

        limit = min(self.window_size, self.total - self.cursor)
        batch = await self.records.list_page(self.cursor, limit) if limit else []
        batch = batch[:limit]

        added = unknown = skipped = 0
        progress = ProgressState(current=self.cursor, total=self.total)

        for i, record in enumerate(batch):
            progress.current = self.cursor + i + 1
            progress.message = (
                f"Checking ({progress.current}/{self.total}): {truncate_title(record.title)}"
            )
            if on_progress:
                on_progress(progress.copy())

            verdict = await self._classify(record)
            if verdict == "candidate":
                if self.candidates.add(record):
                    added += 1
            elif verdict == "unknown":
                unknown += 1
            else:
                skipped += 1

            if self.yield_delay:
                await asyncio.sleep(self.yield_delay)

        self.cursor += limit
        self.unknown_count += unknown

        result = ScanResult(
            processed=limit,
            added=added,
            unknown=unknown,
            skipped=skipped,
            cursor=self.cursor,
            total=self.total,
        )
        logger.info(
            f"[Scanner] Window done: {self.cursor}/{self.total}, "
            f"+{added} candidates, {unknown} unknown size"
        )
        if result.complete:
            logger.info(f"[Scanner] Scan complete: {len(self.candidates)} candidates")
        return result

    async def _classify(self, record: Record) -> str:
        if not is_external(record.image_ref):
            return "skip"
        if self.force_all:
            return "candidate"

        size = await self.probe.probe(record.image_ref)
        if size == UNKNOWN_SIZE:
            logger.debug(f"[Scanner] Unknown size: {record.image_ref}")
            return "unknown"
        if size > self.heavy_threshold:
            logger.debug(f"[Scanner] Heavy ({size} bytes): {record.image_ref}")
            return "candidate"
        return "skip"

    async def scan_all(self, on_progress: ProgressCallback | None = None) -> list[ScanResult]:
        """Scan windows until the cursor reaches the end of the collection."""
        results = [await self.scan_window(on_progress)]
        while not results[-1].complete:
            results.append(await self.scan_window(on_progress))
        return results

    def reset(self) -> None:
        """Rewind to the start and forget accumulated results."""
        if self.phase is not ScanPhase.IDLE:
            raise BatchBusyError(self.phase.value)
        self.cursor = 0
        self.unknown_count = 0
        self.candidates.clear()
