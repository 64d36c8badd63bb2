"""Filesystem-backed collaborators.

``JsonRecordStore`` keeps records in one JSON array file and
``LocalAssetStore`` writes assets under a directory that is served at
``public_base_url``. Both are enough to run the whole pipeline without a
hosted backend.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path, PurePosixPath
from typing import Any

from loguru import logger

from slimage.errors import DeleteFailed, StoreError
from slimage.models import Record
from slimage.security import atomic_write_json_async, read_text_async, write_bytes_async
from slimage.urls import strip_query, unique_timestamp


def extension_for(content_type: str) -> str:
    subtype = content_type.split("/")[-1].split(";")[0].strip().lower()
    return "jpg" if subtype == "jpeg" else subtype or "bin"


def safe_object_path(path: str) -> str:
    """Normalize a storage path and refuse anything escaping the root."""
    parts = PurePosixPath(path.strip("/")).parts
    if not parts or any(p in ("..", ".") for p in parts):
        raise StoreError(f"Invalid storage path: {path!r}")
    return "/".join(parts)


class JsonRecordStore:
    """Records persisted as a JSON array; list order is file order."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    async def _load(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(await read_text_async(self.path))
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read records from {self.path}: {e}") from e
        if not isinstance(data, list):
            raise StoreError(f"{self.path} must contain a JSON array of records")
        return data

    async def _save(self, rows: list[dict[str, Any]]) -> None:
        try:
            await atomic_write_json_async(self.path, rows)
        except OSError as e:
            raise StoreError(f"Cannot write records to {self.path}: {e}") from e

    async def count(self) -> int:
        return len(await self._load())

    async def list_page(self, offset: int, limit: int) -> list[Record]:
        rows = await self._load()
        return [Record.from_dict(row) for row in rows[offset : offset + limit]]

    async def get_by_id(self, record_id: str) -> Record | None:
        for row in await self._load():
            if str(row.get("id")) == record_id:
                return Record.from_dict(row)
        return None

    async def upsert(self, record: Record) -> None:
        async with self._lock:
            rows = await self._load()
            for i, row in enumerate(rows):
                if str(row.get("id")) == record.id:
                    rows[i] = record.to_dict()
                    break
            else:
                rows.append(record.to_dict())
            await self._save(rows)

    async def delete(self, record_id: str) -> None:
        async with self._lock:
            rows = await self._load()
            kept = [row for row in rows if str(row.get("id")) != record_id]
            if len(kept) == len(rows):
                raise StoreError(f"Record not found: {record_id}")
            await self._save(kept)


class LocalAssetStore:
    """Assets written under ``root`` and addressed by ``public_base_url``."""

    def __init__(self, root: str | Path, public_base_url: str) -> None:
        self.root = Path(root).expanduser()
        self.public_base_url = public_base_url.rstrip("/") + "/"

    async def upload(self, data: bytes, content_type: str, path: str) -> str:
        name = f"{safe_object_path(path)}-{unique_timestamp()}.{extension_for(content_type)}"
        try:
            await write_bytes_async(self.root / name, data)
        except OSError as e:
            raise StoreError(f"Cannot write asset {name}: {e}") from e
        logger.debug(f"[LocalAssetStore] Stored {name} ({len(data)} bytes)")
        return self.public_base_url + name

    def owns(self, uri: str) -> bool:
        return bool(uri) and strip_query(uri).startswith(self.public_base_url)

    async def delete(self, uri: str) -> None:
        if not self.owns(uri):
            raise DeleteFailed(uri, "not owned by this store")

        name = strip_query(uri)[len(self.public_base_url) :]
        try:
            (self.root / safe_object_path(name)).unlink()
        except (OSError, StoreError) as e:
            raise DeleteFailed(uri, str(e)) from e


class StaticSettingsProvider:
    """Settings provider returning a fixed endpoint (or none)."""

    def __init__(self, endpoint: str | None = None) -> None:
        self.endpoint = endpoint or None

    async def get_conversion_endpoint(self) -> str | None:
        return self.endpoint
