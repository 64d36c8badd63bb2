"""URL helpers: cache busting, the optimization marker and host checks."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from slimage.constants import CACHE_BUST_PARAM, OPTIMIZED_MARKER_PARAM

if TYPE_CHECKING:
    from slimage.models import Record

_last_stamp = 0
_stamp_lock = threading.Lock()


def unique_timestamp() -> int:
    """Return an epoch-millisecond stamp that never repeats in this process."""
    global _last_stamp
    with _stamp_lock:
        now = time.time_ns() // 1_000_000
        _last_stamp = max(now, _last_stamp + 1)
        return _last_stamp


def _query_key(pair: str) -> str:
    return pair.split("=", 1)[0]


def _with_param(url: str, key: str, value: str, replace: bool) -> str:
    """Append ``key=value`` to the raw query, leaving other pairs untouched.

    Raises:
        ValueError: If ``url`` cannot be split (for example a broken IPv6 host)
    """
    parts = urlsplit(url)
    pairs = [p for p in parts.query.split("&") if p]
    if replace:
        pairs = [p for p in pairs if _query_key(p) != key]
    pairs.append(f"{key}={value}")
    return urlunsplit(parts._replace(query="&".join(pairs)))


def cache_bust(url: str, key: str = CACHE_BUST_PARAM) -> str:
    """Append a unique query parameter so intermediate caches are bypassed."""
    return _with_param(url, key, str(unique_timestamp()), replace=False)


def mark_optimized(url: str) -> str:
    """Append (or refresh) the ``opt=<ms>`` completion marker."""
    return _with_param(url, OPTIMIZED_MARKER_PARAM, str(unique_timestamp()), replace=True)


def has_optimized_marker(url: str) -> bool:
    try:
        query = urlsplit(url).query
    except ValueError:
        return False
    return any(_query_key(p) == OPTIMIZED_MARKER_PARAM for p in query.split("&"))


def strip_query(url: str) -> str:
    """Drop query string and fragment."""
    return url.split("#", 1)[0].split("?", 1)[0]


def is_external(url: str | None) -> bool:
    """True for http(s) references with a host; unparseable URLs are not external."""
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https") and bool(parts.netloc)


def is_processed(record: Record) -> bool:
    """True when the record carries either completion signal."""
    return record.is_optimized or has_optimized_marker(record.image_ref)


def matches_any(url: str, patterns: list[str]) -> bool:
    lowered = url.lower()
    return any(p.lower() in lowered for p in patterns if p)
