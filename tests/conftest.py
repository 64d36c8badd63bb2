"""Pytest configuration and fixtures."""

from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from PIL import Image

from slimage.errors import StoreError
from slimage.models import Record

CDN_PREFIX = "https://cdn.test/assets/"


# =============================================================================
# Image helpers
# =============================================================================


def make_image_bytes(
    mode: str = "RGB",
    size: tuple[int, int] = (64, 48),
    color: tuple[int, ...] | str = "red",
    fmt: str = "PNG",
) -> bytes:
    """Create an in-memory image and return its encoded bytes."""
    img = Image.new(mode, size, color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def transparent_png_bytes() -> bytes:
    """Fully transparent RGBA PNG (would turn black without compositing)."""
    return make_image_bytes("RGBA", (32, 32), (0, 0, 0, 0))


# =============================================================================
# Records and in-memory collaborators
# =============================================================================


def make_record(index: int, image_ref: str | None = None, **kwargs) -> Record:
    return Record(
        id=f"r{index}",
        title=f"Recipe {index}",
        slug=f"recipe-{index}",
        image_ref=image_ref if image_ref is not None else f"https://img.test/{index}.jpg",
        **kwargs,
    )


class MemoryRecordStore:
    """RecordStore keeping records in a list; failures can be injected."""

    def __init__(self, records: list[Record] | None = None) -> None:
        self.records: list[Record] = list(records or [])
        self.upserts: list[Record] = []
        self.upsert_error: Exception | None = None

    async def count(self) -> int:
        return len(self.records)

    async def list_page(self, offset: int, limit: int) -> list[Record]:
        return self.records[offset : offset + limit]

    async def get_by_id(self, record_id: str) -> Record | None:
        return next((r for r in self.records if r.id == record_id), None)

    async def upsert(self, record: Record) -> None:
        if self.upsert_error is not None:
            raise self.upsert_error
        self.upserts.append(record)
        for i, existing in enumerate(self.records):
            if existing.id == record.id:
                self.records[i] = record
                return
        self.records.append(record)

    async def delete(self, record_id: str) -> None:
        before = len(self.records)
        self.records = [r for r in self.records if r.id != record_id]
        if len(self.records) == before:
            raise StoreError(f"Record not found: {record_id}")


class MemoryAssetStore:
    """AssetStore owning every URI under ``CDN_PREFIX``."""

    def __init__(self) -> None:
        self.uploads: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.delete_error: Exception | None = None
        self._counter = 0

    async def upload(self, data: bytes, content_type: str, path: str) -> str:
        self._counter += 1
        uri = f"{CDN_PREFIX}{path}-{self._counter}.webp"
        self.uploads[uri] = data
        return uri

    def owns(self, uri: str) -> bool:
        return uri.startswith(CDN_PREFIX)

    async def delete(self, uri: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(uri)


class StubSettings:
    def __init__(self, endpoint: str | None = None) -> None:
        self.endpoint = endpoint

    async def get_conversion_endpoint(self) -> str | None:
        return self.endpoint


class StubProbe:
    """SizeProbe stand-in answering from a mapping (default: unknown)."""

    def __init__(self, sizes: dict[str, int] | None = None, default: int = 0) -> None:
        self.sizes = sizes or {}
        self.default = default
        self.calls: list[str] = []

    async def probe(self, uri: str, timeout: float | None = None) -> int:
        self.calls.append(uri)
        return self.sizes.get(uri, self.default)


@pytest.fixture
def records_factory() -> Callable[[int], list[Record]]:
    def factory(count: int) -> list[Record]:
        return [make_record(i) for i in range(count)]

    return factory


@pytest.fixture
def asset_store() -> MemoryAssetStore:
    return MemoryAssetStore()


# =============================================================================
# HTTP helpers
# =============================================================================


def mock_client(handler: Callable[[httpx.Request], object]) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    state_dir = tmp_path / "states"
    state_dir.mkdir()
    return state_dir


# =============================================================================
# Factory fixtures (test modules do not import conftest directly)
# =============================================================================


@pytest.fixture
def image_bytes() -> Callable[..., bytes]:
    return make_image_bytes


@pytest.fixture
def new_record() -> Callable[..., Record]:
    return make_record


@pytest.fixture
def memory_store() -> type[MemoryRecordStore]:
    return MemoryRecordStore


@pytest.fixture
def stub_probe() -> type[StubProbe]:
    return StubProbe


@pytest.fixture
def stub_settings() -> type[StubSettings]:
    return StubSettings


@pytest.fixture
def http_client() -> Callable[[Callable[[httpx.Request], object]], httpx.AsyncClient]:
    return mock_client
