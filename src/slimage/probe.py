"""Header-only size probe for remote images.

The probe is advisory: it must never stall a scan, so every failure mode
(malformed URL, network error, non-2xx, missing or garbled Content-Length, timeout)
collapses to ``0``, meaning "size unknown". Callers must not read ``0`` as
"small".
"""

from __future__ import annotations

import asyncio

import httpx
from loguru import logger

from slimage.constants import DEFAULT_PROBE_TIMEOUT, USER_AGENT
from slimage.urls import cache_bust

UNKNOWN_SIZE = 0


class SizeProbe:
    """Issue HEAD requests against cache-busted URIs.

    Args:
        client: Shared httpx client (a short-lived one is created per call if None)
        timeout: Default hard timeout in seconds
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        self._client = client
        self.timeout = timeout

    async def probe(self, uri: str, timeout: float | None = None) -> int:
        """Return the remote size in bytes, or ``0`` when it cannot be determined."""
        limit = timeout if timeout is not None else self.timeout
        try:
            target = cache_bust(uri)
            # wait_for cancels the request on expiry, so the socket is aborted
            response = await asyncio.wait_for(self._head(target, limit), timeout=limit)
        except asyncio.TimeoutError:
            logger.debug(f"[Probe] Timeout after {limit:g}s: {uri}")
            return UNKNOWN_SIZE
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.debug(f"[Probe] {type(e).__name__} for {uri}: {e}")
            return UNKNOWN_SIZE

        if not response.is_success:
            logger.debug(f"[Probe] HTTP {response.status_code}: {uri}")
            return UNKNOWN_SIZE

        raw = response.headers.get("content-length")
        try:
            size = int(raw) if raw is not None else UNKNOWN_SIZE
        except ValueError:
            logger.debug(f"[Probe] Unparseable Content-Length {raw!r}: {uri}")
            return UNKNOWN_SIZE
        return max(size, UNKNOWN_SIZE)

    async def _head(self, url: str, timeout: float) -> httpx.Response:
        if self._client is not None:
            return await self._client.head(url, follow_redirects=True, timeout=timeout)

        async with httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT}, follow_redirects=True
        ) as client:
            return await client.head(url, timeout=timeout)
