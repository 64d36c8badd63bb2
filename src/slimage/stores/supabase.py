"""Supabase-backed collaborators over plain HTTP.

Records live in a PostgREST table with rows ``{id, title, slug, data}``
where ``data`` carries the full record JSON; images live in a public
Storage bucket. Everything goes through one httpx client so tests can
swap in ``httpx.MockTransport``.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from slimage.constants import (
    DEFAULT_STORE_TIMEOUT,
    DEFAULT_SUPABASE_BUCKET,
    DEFAULT_SUPABASE_SETTINGS_TABLE,
    DEFAULT_SUPABASE_TABLE,
)
from slimage.errors import DeleteFailed, StoreError
from slimage.models import Record
from slimage.stores.base import AssetStore
from slimage.stores.local import extension_for, safe_object_path
from slimage.urls import strip_query, unique_timestamp

SETTINGS_ROW_ID = "global"
# Site setting keys holding the converter URL, preferred first
ENDPOINT_SETTING_KEYS = ("customConverterUrl", "n8nImageOptimizationUrl")


class _SupabaseHTTP:
    """Shared request plumbing: auth headers, timeout and error mapping."""

    def __init__(
        self,
        base_url: str,
        key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._key = key
        self._client = client
        self.timeout = timeout

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"apikey": self._key, "Authorization": f"Bearer {self._key}"}
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, headers=self._headers(headers), timeout=self.timeout, **kwargs
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(
                        method, url, headers=self._headers(headers), timeout=self.timeout, **kwargs
                    )
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {type(e).__name__}: {e}") from e

        if not response.is_success:
            raise StoreError(f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}")
        return response


def row_to_record(row: dict[str, Any]) -> Record:
    """Merge the top-level id/slug/title columns over the JSON payload."""
    data = dict(row.get("data") or {})
    data.update({"id": row["id"], "slug": row.get("slug") or "", "title": row.get("title") or ""})
    return Record.from_dict(data)


def parse_content_range_total(header: str | None) -> int:
    """Parse the total out of ``Content-Range: 0-29/73`` (or ``*/0``)."""
    if not header or "/" not in header:
        raise StoreError(f"Missing or invalid Content-Range: {header!r}")
    total = header.rsplit("/", 1)[1]
    try:
        return int(total)
    except ValueError as e:
        raise StoreError(f"Record count unavailable (Content-Range {header!r})") from e


class SupabaseRecordStore(_SupabaseHTTP):
    """Records in a PostgREST table ordered newest first."""

    def __init__(
        self,
        base_url: str,
        key: str,
        table: str = DEFAULT_SUPABASE_TABLE,
        assets: AssetStore | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        super().__init__(base_url, key, client, timeout)
        self.table = table
        self.assets = assets

    @property
    def _path(self) -> str:
        return f"/rest/v1/{self.table}"

    async def count(self) -> int:
        response = await self._request(
            "GET",
            self._path,
            params={"select": "id"},
            headers={"Prefer": "count=exact", "Range-Unit": "items", "Range": "0-0"},
        )
        return parse_content_range_total(response.headers.get("content-range"))

    async def list_page(self, offset: int, limit: int) -> list[Record]:
        response = await self._request(
            "GET",
            self._path,
            params={
                "select": "*",
                "order": "created_at.desc",
                "offset": str(offset),
                "limit": str(limit),
            },
        )
        return [row_to_record(row) for row in response.json()]

    async def get_by_id(self, record_id: str) -> Record | None:
        response = await self._request(
            "GET",
            self._path,
            params={"select": "*", "id": f"eq.{record_id}", "limit": "1"},
        )
        rows = response.json()
        return row_to_record(rows[0]) if rows else None

    async def upsert(self, record: Record) -> None:
        row = {
            "id": record.id,
            "title": record.title,
            "slug": record.slug,
            "data": record.to_dict(),
        }
        await self._request(
            "POST",
            self._path,
            json=[row],
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def delete(self, record_id: str) -> None:
        """Delete a record, removing its stored image first (best-effort)."""
        record = await self.get_by_id(record_id)
        if record and self.assets and self.assets.owns(record.image_ref):
            try:
                await self.assets.delete(record.image_ref)
            except DeleteFailed as e:
                logger.warning(f"[Supabase] {e}")

        await self._request("DELETE", self._path, params={"id": f"eq.{record_id}"})


class SupabaseAssetStore(_SupabaseHTTP):
    """Images in a public Storage bucket."""

    def __init__(
        self,
        base_url: str,
        key: str,
        bucket: str = DEFAULT_SUPABASE_BUCKET,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        super().__init__(base_url, key, client, timeout)
        self.bucket = bucket

    @property
    def public_prefix(self) -> str:
        return f"/storage/v1/object/public/{self.bucket}/"

    def public_url(self, name: str) -> str:
        return f"{self.base_url}{self.public_prefix}{name}"

    async def upload(self, data: bytes, content_type: str, path: str) -> str:
        name = f"{safe_object_path(path)}-{unique_timestamp()}.{extension_for(content_type)}"
        await self._request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{name}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "true"},
        )
        logger.debug(f"[Supabase] Uploaded {name} ({len(data)} bytes)")
        return self.public_url(name)

    def owns(self, uri: str) -> bool:
        return bool(uri) and self.public_prefix in uri

    def object_name(self, uri: str) -> str:
        return strip_query(uri).split(self.public_prefix, 1)[1]

    async def delete(self, uri: str) -> None:
        if not self.owns(uri):
            raise DeleteFailed(uri, "not owned by this store")

        name = self.object_name(uri)
        if not name:
            raise DeleteFailed(uri, "empty object name")

        try:
            await self._request(
                "DELETE", f"/storage/v1/object/{self.bucket}", json={"prefixes": [name]}
            )
        except StoreError as e:
            raise DeleteFailed(uri, str(e)) from e


class SupabaseSettingsProvider(_SupabaseHTTP):
    """Reads the converter URL from the ``global`` site settings row.

    Args:
        override: Endpoint from local config; when set, no request is made
    """

    def __init__(
        self,
        base_url: str,
        key: str,
        table: str = DEFAULT_SUPABASE_SETTINGS_TABLE,
        override: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        super().__init__(base_url, key, client, timeout)
        self.table = table
        self.override = override or None

    async def get_conversion_endpoint(self) -> str | None:
        if self.override:
            return self.override

        try:
            response = await self._request(
                "GET",
                f"/rest/v1/{self.table}",
                params={"select": "*", "id": f"eq.{SETTINGS_ROW_ID}", "limit": "1"},
            )
        except StoreError as e:
            # Unreadable settings behave like missing settings
            logger.warning(f"[Supabase] Cannot read site settings: {e}")
            return None

        rows = response.json()
        data = (rows[0].get("data") or {}) if rows else {}
        for key in ENDPOINT_SETTING_KEYS:
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
