"""Tests for the filesystem-backed stores."""

import json

import pytest

from slimage.errors import DeleteFailed, StoreError
from slimage.models import Record
from slimage.stores import build_stores
from slimage.stores.local import (
    JsonRecordStore,
    LocalAssetStore,
    StaticSettingsProvider,
    extension_for,
    safe_object_path,
)
from slimage.config import SlimageConfig

BASE = "http://localhost:8000/assets/"


class TestHelpers:
    @pytest.mark.parametrize(
        ("content_type", "ext"),
        [("image/webp", "webp"), ("image/jpeg", "jpg"), ("image/png; q=1", "png")],
    )
    def test_extension_for(self, content_type: str, ext: str) -> None:
        assert extension_for(content_type) == ext

    def test_safe_object_path(self) -> None:
        assert safe_object_path("/recipes/soup/") == "recipes/soup"
        for bad in ("../etc/passwd", "recipes/../../x", "", "/"):
            with pytest.raises(StoreError):
                safe_object_path(bad)


class TestJsonRecordStore:
    """Tests for the JSON array record file."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path) -> None:
        store = JsonRecordStore(tmp_path / "records.json")
        assert await store.count() == 0
        assert await store.list_page(0, 10) == []

    @pytest.mark.asyncio
    async def test_upsert_preserves_unknown_fields(self, tmp_path) -> None:
        path = tmp_path / "records.json"
        path.write_text(
            json.dumps(
                [
                    {"id": "a", "title": "Soup", "imageUrl": "https://img.test/a.jpg", "servings": 4},
                    {"id": "b", "title": "Cake", "imageUrl": "https://img.test/b.jpg"},
                ]
            ),
            encoding="utf-8",
        )
        store = JsonRecordStore(path)

        record = await store.get_by_id("a")
        await store.upsert(record.with_image("https://cdn.test/a.webp?opt=1"))

        rows = json.loads(path.read_text(encoding="utf-8"))
        assert [r["id"] for r in rows] == ["a", "b"]
        assert rows[0]["servings"] == 4
        assert rows[0]["imageUrl"] == "https://cdn.test/a.webp?opt=1"
        assert rows[0]["isOptimized"] is True

    @pytest.mark.asyncio
    async def test_paging_and_insert(self, tmp_path) -> None:
        store = JsonRecordStore(tmp_path / "records.json")
        for i in range(5):
            await store.upsert(Record(id=str(i), title=f"R{i}"))

        assert await store.count() == 5
        page = await store.list_page(3, 10)
        assert [r.id for r in page] == ["3", "4"]
        assert await store.get_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path) -> None:
        store = JsonRecordStore(tmp_path / "records.json")
        await store.upsert(Record(id="1", title="x"))
        await store.delete("1")
        assert await store.count() == 0
        with pytest.raises(StoreError):
            await store.delete("1")

    @pytest.mark.asyncio
    async def test_rejects_non_array(self, tmp_path) -> None:
        path = tmp_path / "records.json"
        path.write_text('{"id": 1}', encoding="utf-8")
        with pytest.raises(StoreError, match="JSON array"):
            await JsonRecordStore(path).count()


class TestLocalAssetStore:
    """Tests for asset files under a public base URL."""

    @pytest.mark.asyncio
    async def test_upload_and_delete(self, tmp_path) -> None:
        store = LocalAssetStore(tmp_path, BASE)

        uri = await store.upload(b"data", "image/webp", "recipes/soup")

        assert uri.startswith(BASE + "recipes/soup-")
        assert uri.endswith(".webp")
        name = uri[len(BASE) :]
        assert (tmp_path / name).read_bytes() == b"data"
        assert store.owns(uri + "?opt=1")

        await store.delete(uri + "?opt=1")
        assert not (tmp_path / name).exists()

    @pytest.mark.asyncio
    async def test_foreign_uri_not_deleted(self, tmp_path) -> None:
        store = LocalAssetStore(tmp_path, BASE)
        assert not store.owns("https://img.test/a.jpg")
        with pytest.raises(DeleteFailed):
            await store.delete("https://img.test/a.jpg")

    @pytest.mark.asyncio
    async def test_missing_file_delete_fails(self, tmp_path) -> None:
        store = LocalAssetStore(tmp_path, BASE)
        with pytest.raises(DeleteFailed):
            await store.delete(BASE + "recipes/gone.webp")

    @pytest.mark.asyncio
    async def test_traversal_rejected(self, tmp_path) -> None:
        store = LocalAssetStore(tmp_path, BASE)
        with pytest.raises(StoreError):
            await store.upload(b"x", "image/webp", "../outside")


class TestBuildStores:
    """Tests for backend selection."""

    @pytest.mark.asyncio
    async def test_local_backend_with_endpoint(self, tmp_path) -> None:
        config = SlimageConfig.model_validate(
            {
                "gateway": {"endpoint": "https://hooks.test/convert"},
                "store": {"records_file": str(tmp_path / "r.json"), "assets_dir": str(tmp_path)},
            }
        )
        records, assets, settings = build_stores(config)

        assert isinstance(records, JsonRecordStore)
        assert isinstance(assets, LocalAssetStore)
        assert isinstance(settings, StaticSettingsProvider)
        assert await settings.get_conversion_endpoint() == "https://hooks.test/convert"

    def test_supabase_requires_url(self) -> None:
        config = SlimageConfig.model_validate({"store": {"backend": "supabase"}})
        with pytest.raises(ValueError, match="supabase_url"):
            build_stores(config)
