"""Single-record optimization: convert, store, persist, clean up.

The update of one record is one logical step with a fixed order:

    new asset established -> record persisted -> old asset deletion attempted

Deleting the old asset is best-effort and happens only after the record
points at the new one, so a failed cleanup can never leave a record
referencing nothing.
"""

from __future__ import annotations

import asyncio
from typing import Literal

from loguru import logger

from slimage.constants import (
    CONNECTION_TEST_IMAGE_URL,
    CONNECTION_TEST_PATH,
    DEFAULT_RECORD_NAMESPACE,
    DEFAULT_SKIP_PATTERNS,
    DEFAULT_STORE_TIMEOUT,
)
from slimage.converter import Converter
from slimage.errors import (
    DeleteFailed,
    LoadFailedError,
    NotConfiguredError,
    OperationTimeoutError,
    PersistFailure,
    SlimageError,
    StoreError,
    UpstreamFailure,
)
from slimage.gateway import ConversionGateway
from slimage.models import Record
from slimage.stores.base import AssetStore, RecordStore
from slimage.urls import (
    is_external,
    is_processed,
    mark_optimized,
    matches_any,
    strip_query,
)

ConvertMode = Literal["auto", "gateway", "local"]


class OptimizationOrchestrator:
    """Optimize one record at a time.

    Args:
        records: Record persistence collaborator
        assets: Blob store for locally converted images
        gateway: External conversion endpoint client
        converter: Local strategy chain (None disables the local path)
        mode: "gateway" or "local" forces a path; "auto" prefers the gateway
            when an endpoint is configured and falls back to local conversion
        namespace: First segment of every storage path
        store_timeout: Bound for upload, persist and delete calls
    """

    def __init__(
        self,
        records: RecordStore,
        assets: AssetStore,
        gateway: ConversionGateway,
        converter: Converter | None = None,
        mode: ConvertMode = "auto",
        namespace: str = DEFAULT_RECORD_NAMESPACE,
        store_timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        self.records = records
        self.assets = assets
        self.gateway = gateway
        self.converter = converter
        self.mode = mode
        self.namespace = namespace.strip("/")
        self.store_timeout = store_timeout
        self._cleanups: set[asyncio.Future[None]] = set()

    def target_path(self, record: Record) -> str:
        """Deterministic storage path for a record's image."""
        return f"{self.namespace}/{record.storage_slug}"

    async def _use_gateway(self) -> bool:
        if self.mode == "gateway":
            return True
        if self.mode == "local":
            return False
        if await self.gateway.is_configured():
            return True
        if self.converter is None:
            # Nothing else to fall back on
            raise NotConfiguredError()
        return False

    async def _convert_locally(self, record: Record, path: str) -> str:
        if self.converter is None:
            raise NotConfiguredError(
                "Local conversion is disabled",
                resolution_hint="Set convert.mode to 'auto' or 'gateway'",
            )
        asset = await self.converter.convert(record.image_ref)
        try:
            uri = await asyncio.wait_for(
                self.assets.upload(asset.data, asset.content_type, path),
                timeout=self.store_timeout,
            )
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError("upload", self.store_timeout) from e
        logger.debug(
            f"[Orchestrator] {record.id} converted via {asset.source_strategy}, "
            f"{len(asset.data)} bytes"
        )
        return mark_optimized(uri)

    async def _produce(self, record: Record) -> str:
        path = self.target_path(record)
        try:
            if await self._use_gateway():
                return await self.gateway.optimize_via_endpoint(record.image_ref, path)
            return await self._convert_locally(record, path)
        except SlimageError as e:
            raise UpstreamFailure(e) from e
        except Exception as e:
            logger.warning(f"[Orchestrator] Unexpected {type(e).__name__} for {record.id}: {e}")
            raise UpstreamFailure(e) from e

    async def optimize(self, record: Record) -> Record:
        """Convert the record's image and point the record at the result.

        Returns:
            The updated record (new image reference, optimized flag set)

        Raises:
            UpstreamFailure: Conversion or upload failed; nothing was changed
            PersistFailure: New asset stored but the record write failed
        """
        new_uri = await self._produce(record)
        updated = record.with_image(new_uri, optimized=True)

        try:
            await asyncio.wait_for(self.records.upsert(updated), timeout=self.store_timeout)
        except asyncio.TimeoutError as e:
            raise PersistFailure(
                OperationTimeoutError("persist", self.store_timeout), new_uri
            ) from e
        except StoreError as e:
            raise PersistFailure(e, new_uri) from e

        cleanup = asyncio.ensure_future(self._delete_old_asset(record.image_ref, new_uri))
        self._cleanups.add(cleanup)
        cleanup.add_done_callback(self._cleanups.discard)
        # The record is saved; a caller timeout from here on must not abandon the cleanup
        await asyncio.shield(cleanup)
        logger.info(f"[Orchestrator] Optimized {record.id}: {new_uri}")
        return updated

    async def _delete_old_asset(self, old_uri: str, new_uri: str) -> None:
        if not old_uri or strip_query(old_uri) == strip_query(new_uri):
            return
        if not self.assets.owns(old_uri):
            return

        try:
            await asyncio.wait_for(self.assets.delete(old_uri), timeout=self.store_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Orchestrator] Deleting {old_uri} timed out, left in storage")
        except (DeleteFailed, StoreError) as e:
            logger.warning(f"[Orchestrator] {e}")

    async def is_persisted(self, record: Record) -> bool:
        """True when the stored copy of ``record`` already points at a processed image.

        Tells an update that was saved before an interrupted ``optimize``
        from one that was lost.
        """
        try:
            current = await asyncio.wait_for(
                self.records.get_by_id(record.id), timeout=self.store_timeout
            )
        except (asyncio.TimeoutError, StoreError) as e:
            logger.debug(f"[Orchestrator] Cannot re-read {record.id}: {e}")
            return False
        return (
            current is not None
            and current.image_ref != record.image_ref
            and is_processed(current)
        )

    async def wait_for_cleanups(self) -> None:
        """Wait for old-asset deletions still running after an interrupted call."""
        if self._cleanups:
            await asyncio.gather(*self._cleanups, return_exceptions=True)

    async def test_connection(self) -> str:
        """Round-trip a known public image through the gateway.

        Raises:
            NotConfiguredError: Immediately, when no endpoint is configured
        """
        return await self.gateway.optimize_via_endpoint(
            CONNECTION_TEST_IMAGE_URL, CONNECTION_TEST_PATH
        )

    async def find_test_target(
        self,
        skip_patterns: list[str] | None = None,
        page_size: int = 100,
    ) -> Record | None:
        """First record with an http(s) image not matching ``skip_patterns``."""
        patterns = DEFAULT_SKIP_PATTERNS if skip_patterns is None else skip_patterns
        offset = 0
        while True:
            page = await self.records.list_page(offset, page_size)
            for record in page:
                if is_external(record.image_ref) and not matches_any(
                    record.image_ref, patterns
                ):
                    return record
            if len(page) < page_size:
                return None
            offset += page_size

    async def test_one(
        self, skip_patterns: list[str] | None = None
    ) -> tuple[Record, Record]:
        """Optimize one real record end to end.

        Returns:
            Tuple of (original_record, updated_record)

        Raises:
            LoadFailedError: No record has an eligible image
        """
        target = await self.find_test_target(skip_patterns)
        if target is None:
            raise LoadFailedError("No record with an http(s) image found")
        return target, await self.optimize(target)
