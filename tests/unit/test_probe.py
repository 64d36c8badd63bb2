"""Tests for the HEAD size probe."""

import asyncio

import httpx
import pytest

from slimage.probe import UNKNOWN_SIZE, SizeProbe

URI = "https://img.test/photo.jpg"


class TestSizeProbe:
    """Every failure collapses to an unknown size."""

    @pytest.mark.asyncio
    async def test_reads_content_length(self, http_client) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, headers={"Content-Length": "812345"})

        async with http_client(handler) as client:
            size = await SizeProbe(client).probe(URI)

        assert size == 812345
        assert seen[0].method == "HEAD"
        assert "t" in seen[0].url.params

    @pytest.mark.asyncio
    async def test_missing_header_is_unknown(self, http_client) -> None:
        async with http_client(lambda request: httpx.Response(200)) as client:
            assert await SizeProbe(client).probe(URI) == UNKNOWN_SIZE

    @pytest.mark.asyncio
    async def test_garbled_header_is_unknown(self, http_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"Content-Length": "lots"})

        async with http_client(handler) as client:
            assert await SizeProbe(client).probe(URI) == UNKNOWN_SIZE

    @pytest.mark.asyncio
    async def test_non_2xx_is_unknown(self, http_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, headers={"Content-Length": "999999"})

        async with http_client(handler) as client:
            assert await SizeProbe(client).probe(URI) == UNKNOWN_SIZE

    @pytest.mark.asyncio
    async def test_network_error_is_unknown(self, http_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with http_client(handler) as client:
            assert await SizeProbe(client).probe(URI) == UNKNOWN_SIZE

    @pytest.mark.asyncio
    async def test_slow_server_times_out(self, http_client) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, headers={"Content-Length": "1"})

        async with http_client(handler) as client:
            loop = asyncio.get_running_loop()
            started = loop.time()
            size = await SizeProbe(client, timeout=5).probe(URI, timeout=0.05)
            elapsed = loop.time() - started

        assert size == UNKNOWN_SIZE
        assert elapsed < 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "uri",
        ["http://[broken/x.jpg", "https://img.test/\x00.jpg"],
        ids=["unsplittable", "non-printable"],
    )
    async def test_malformed_url_is_unknown(self, http_client, uri: str) -> None:
        sent: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(200, headers={"Content-Length": "999999"})

        async with http_client(handler) as client:
            assert await SizeProbe(client).probe(uri) == UNKNOWN_SIZE

        assert sent == []
