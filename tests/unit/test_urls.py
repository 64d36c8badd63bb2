"""Tests for URL helpers."""

from urllib.parse import parse_qs, urlsplit

import pytest

from slimage.models import Record
from slimage.urls import (
    cache_bust,
    has_optimized_marker,
    is_external,
    is_processed,
    mark_optimized,
    matches_any,
    strip_query,
    unique_timestamp,
)

BROKEN = "http://[broken/x.jpg"


def _query(url: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(url).query)


class TestUniqueTimestamp:
    def test_strictly_increasing(self) -> None:
        stamps = [unique_timestamp() for _ in range(200)]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)


class TestCacheBust:
    """Tests for cache-busting query parameters."""

    def test_appends_param_without_query(self) -> None:
        busted = cache_bust("https://x.test/a.jpg")
        assert busted.startswith("https://x.test/a.jpg?t=")

    def test_keeps_existing_query(self) -> None:
        busted = cache_bust("https://x.test/a.jpg?w=200")
        query = _query(busted)
        assert query["w"] == ["200"]
        assert "t" in query

    def test_each_call_is_unique(self) -> None:
        url = "https://x.test/a.jpg"
        assert cache_bust(url) != cache_bust(url)

    def test_existing_query_kept_verbatim(self) -> None:
        busted = cache_bust("https://x.test/a.jpg?v&name=a%20b")
        assert busted.startswith("https://x.test/a.jpg?v&name=a%20b&t=")

    def test_unsplittable_url_raises(self) -> None:
        with pytest.raises(ValueError):
            cache_bust(BROKEN)


class TestOptimizedMarker:
    """Tests for the opt=<ms> completion marker."""

    def test_mark_adds_opt(self) -> None:
        marked = mark_optimized("https://x.test/a.webp")
        assert has_optimized_marker(marked)
        assert _query(marked)["opt"][0].isdigit()

    def test_mark_replaces_existing_marker(self) -> None:
        first = mark_optimized("https://x.test/a.webp")
        second = mark_optimized(first)
        assert len(_query(second)["opt"]) == 1
        assert second != first

    def test_mark_only_touches_opt_pair(self) -> None:
        marked = mark_optimized("https://x.test/a.webp?v&opt=1&optimal=yes&q=a%20b")
        query = urlsplit(marked).query.split("&")
        assert query[:3] == ["v", "optimal=yes", "q=a%20b"]
        assert query[3].startswith("opt=")
        assert len(query) == 4

    def test_unmarked_url(self) -> None:
        assert not has_optimized_marker("https://x.test/a.webp?t=1")

    def test_strip_query(self) -> None:
        assert strip_query("https://x.test/a.webp?opt=1#frag") == "https://x.test/a.webp"
        assert strip_query(BROKEN) == BROKEN
        assert not has_optimized_marker(BROKEN)


class TestHostChecks:
    """Tests for scheme and completion checks."""

    def test_is_external(self) -> None:
        assert is_external("https://x.test/a.jpg")
        assert is_external("HTTP://x.test/a.jpg")
        assert not is_external("")
        assert not is_external(None)
        assert not is_external("data:image/png;base64,AAAA")
        assert not is_external("/local/a.jpg")
        assert not is_external(BROKEN)
        assert not is_external("https://")

    def test_is_processed_by_flag_or_marker(self) -> None:
        plain = Record(id="1", title="t", image_ref="https://x.test/a.jpg")
        assert not is_processed(plain)
        assert is_processed(plain.with_image("https://x.test/a.jpg", optimized=True))
        assert is_processed(
            Record(id="1", title="t", image_ref="https://x.test/a.webp?opt=123")
        )

    def test_matches_any_is_case_insensitive(self) -> None:
        assert matches_any("https://x.test/PlaceHolder.png", ["placeholder"])
        assert not matches_any("https://x.test/a.png", ["placeholder", ""])
