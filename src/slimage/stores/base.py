"""Interfaces of the collaborators the pipeline depends on.

Record persistence, blob storage and settings are owned by the surrounding
system; the pipeline only talks to them through these protocols.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from slimage.models import Record


@runtime_checkable
class RecordStore(Protocol):
    """Paginated reader and writer for content records."""

    async def count(self) -> int: ...

    async def list_page(self, offset: int, limit: int) -> list[Record]: ...

    async def get_by_id(self, record_id: str) -> Record | None: ...

    async def upsert(self, record: Record) -> None: ...

    async def delete(self, record_id: str) -> None: ...


@runtime_checkable
class AssetStore(Protocol):
    """Durable blob storage with public references."""

    async def upload(self, data: bytes, content_type: str, path: str) -> str: ...

    def owns(self, uri: str) -> bool:
        """True when ``uri`` points into this store (only those are deleted)."""
        ...

    async def delete(self, uri: str) -> None: ...


@runtime_checkable
class SettingsProvider(Protocol):
    """Source of the operator-configured conversion endpoint."""

    async def get_conversion_endpoint(self) -> str | None: ...
