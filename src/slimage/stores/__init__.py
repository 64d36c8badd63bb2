"""Record, asset and settings collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from slimage.stores.base import AssetStore, RecordStore, SettingsProvider
from slimage.stores.local import JsonRecordStore, LocalAssetStore, StaticSettingsProvider
from slimage.stores.supabase import (
    SupabaseAssetStore,
    SupabaseRecordStore,
    SupabaseSettingsProvider,
)

if TYPE_CHECKING:
    from slimage.config import SlimageConfig

__all__ = [
    "AssetStore",
    "JsonRecordStore",
    "LocalAssetStore",
    "RecordStore",
    "SettingsProvider",
    "StaticSettingsProvider",
    "SupabaseAssetStore",
    "SupabaseRecordStore",
    "SupabaseSettingsProvider",
    "build_stores",
]


def build_stores(
    config: SlimageConfig,
    client: httpx.AsyncClient | None = None,
) -> tuple[RecordStore, AssetStore, SettingsProvider]:
    """Create the record store, asset store and settings provider for ``config``.

    A ``gateway.endpoint`` in the config always wins over a hosted setting.
    """
    store = config.store
    endpoint = config.gateway.get_resolved_endpoint()

    if store.backend == "supabase":
        if not store.supabase_url:
            raise ValueError("store.supabase_url is required for the supabase backend")
        key = store.get_resolved_key() or ""
        assets = SupabaseAssetStore(
            store.supabase_url, key, bucket=store.bucket, client=client, timeout=store.timeout
        )
        records = SupabaseRecordStore(
            store.supabase_url,
            key,
            table=store.table,
            assets=assets,
            client=client,
            timeout=store.timeout,
        )
        settings: SettingsProvider = SupabaseSettingsProvider(
            store.supabase_url,
            key,
            table=store.settings_table,
            override=endpoint,
            client=client,
            timeout=store.timeout,
        )
        return records, assets, settings

    return (
        JsonRecordStore(store.records_file),
        LocalAssetStore(store.assets_dir, store.public_base_url),
        StaticSettingsProvider(endpoint),
    )
