"""Local image conversion through an ordered chain of strategies.

Strategies are tried in order and the first success wins. Each attempt
returns a tagged ``StrategyOutcome`` instead of raising, so falling through
is ordinary control flow; only ``Converter.convert`` raises, and only after
every strategy failed.

Default chain:
    1. direct      - GET the bytes, decode, flatten onto white, encode
    2. element     - load through a browser <img crossorigin="anonymous">,
                     draw onto a white canvas, read back, encode
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

import httpx
from loguru import logger

from slimage.browser import (
    STATUS_CORS_BLOCKED,
    STATUS_OK,
    STATUS_TIMEOUT,
    BrowserImageLoader,
    is_playwright_available,
)
from slimage.codec import reencode
from slimage.constants import (
    DEFAULT_DIRECT_FETCH_TIMEOUT,
    DEFAULT_ELEMENT_LOAD_TIMEOUT,
    DEFAULT_QUALITY,
    DEFAULT_TARGET_FORMAT,
    USER_AGENT,
)
from slimage.errors import CodecError, ConversionError
from slimage.models import ConvertedAsset
from slimage.urls import cache_bust
from slimage.utils.executor import run_in_codec_thread

if TYPE_CHECKING:
    from slimage.config import ConvertConfig


class StrategyStatus(str, Enum):
    """Terminal outcome of one strategy attempt."""

    SUCCESS = "success"
    CORS_BLOCKED = "cors_blocked"
    LOAD_FAILED = "load_failed"
    DECODE_FAILED = "decode_failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class StrategyOutcome:
    """Tagged result of one strategy attempt."""

    strategy: str
    status: StrategyStatus
    asset: ConvertedAsset | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is StrategyStatus.SUCCESS


class ConversionStrategy(Protocol):
    """A single way of turning a source URI into a re-encoded asset."""

    name: str

    async def attempt(self, uri: str, quality: float) -> StrategyOutcome: ...


class DirectFetchStrategy:
    """Fetch the full payload over HTTP and re-encode it with Pillow."""

    name = "direct"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_DIRECT_FETCH_TIMEOUT,
        fmt: str = DEFAULT_TARGET_FORMAT,
    ) -> None:
        self._client = client
        self.timeout = timeout
        self.fmt = fmt

    async def attempt(self, uri: str, quality: float) -> StrategyOutcome:
        try:
            response = await asyncio.wait_for(
                self._get(cache_bust(uri)), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return self._outcome(StrategyStatus.TIMEOUT, f"No response in {self.timeout:g}s")
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            return self._outcome(StrategyStatus.LOAD_FAILED, f"{type(e).__name__}: {e}")

        if not response.is_success:
            return self._outcome(StrategyStatus.LOAD_FAILED, f"HTTP {response.status_code}")

        try:
            data, content_type = await run_in_codec_thread(
                reencode, response.content, self.fmt, quality
            )
        except CodecError as e:
            return self._outcome(StrategyStatus.DECODE_FAILED, str(e))

        return StrategyOutcome(
            self.name,
            StrategyStatus.SUCCESS,
            asset=ConvertedAsset(data, content_type, self.name),
        )

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, follow_redirects=True, timeout=self.timeout)

        async with httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT}, follow_redirects=True
        ) as client:
            return await client.get(url, timeout=self.timeout)

    def _outcome(self, status: StrategyStatus, message: str) -> StrategyOutcome:
        return StrategyOutcome(self.name, status, message=message)


class ElementLoadStrategy:
    """Load the image through a headless browser with anonymous CORS.

    Fails with CORS_BLOCKED when the canvas becomes unreadable, LOAD_FAILED
    when the image cannot be fetched (or no browser is available) and
    TIMEOUT when loading exceeds the bound. These outcomes are terminal for
    this strategy and never retried.
    """

    name = "element"

    def __init__(
        self,
        loader: BrowserImageLoader | None = None,
        timeout: float = DEFAULT_ELEMENT_LOAD_TIMEOUT,
        fmt: str = DEFAULT_TARGET_FORMAT,
    ) -> None:
        self._loader = loader
        self.timeout = timeout
        self.fmt = fmt

    async def attempt(self, uri: str, quality: float) -> StrategyOutcome:
        if self._loader is None:
            if not is_playwright_available():
                return self._outcome(StrategyStatus.LOAD_FAILED, "browser unavailable")
            self._loader = BrowserImageLoader()

        try:
            target = cache_bust(uri)
        except ValueError as e:
            return self._outcome(StrategyStatus.LOAD_FAILED, f"Invalid URL: {e}")

        result = await self._loader.load(target, timeout=self.timeout)

        if result.status == STATUS_CORS_BLOCKED:
            return self._outcome(
                StrategyStatus.CORS_BLOCKED,
                result.message or "Origin does not allow reading the image",
            )
        if result.status == STATUS_TIMEOUT:
            return self._outcome(StrategyStatus.TIMEOUT, result.message)
        if result.status != STATUS_OK or not result.data:
            return self._outcome(
                StrategyStatus.LOAD_FAILED, result.message or "Image could not be loaded"
            )

        try:
            data, content_type = await run_in_codec_thread(
                reencode, result.data, self.fmt, quality
            )
        except CodecError as e:
            return self._outcome(StrategyStatus.DECODE_FAILED, str(e))

        return StrategyOutcome(
            self.name,
            StrategyStatus.SUCCESS,
            asset=ConvertedAsset(data, content_type, self.name),
        )

    async def close(self) -> None:
        if self._loader is not None:
            await self._loader.close()

    def _outcome(self, status: StrategyStatus, message: str) -> StrategyOutcome:
        return StrategyOutcome(self.name, status, message=message)


class Converter:
    """Try each strategy in order; first success wins."""

    def __init__(
        self,
        strategies: list[ConversionStrategy],
        quality: float = DEFAULT_QUALITY,
    ) -> None:
        if not strategies:
            raise ValueError("Converter needs at least one strategy")
        self.strategies = strategies
        self.quality = quality

    @classmethod
    def from_config(
        cls,
        config: ConvertConfig,
        client: httpx.AsyncClient | None = None,
        loader: BrowserImageLoader | None = None,
    ) -> Converter:
        strategies: list[ConversionStrategy] = [
            DirectFetchStrategy(client, config.direct_fetch_timeout, config.format)
        ]
        if config.browser:
            strategies.append(
                ElementLoadStrategy(loader, config.element_load_timeout, config.format)
            )
        return cls(strategies, quality=config.quality)

    async def convert(self, uri: str, quality: float | None = None) -> ConvertedAsset:
        """Re-encode the image at ``uri``.

        Raises:
            ConversionError: If every strategy failed (carries all attempts)
        """
        q = self.quality if quality is None else quality
        attempts: list[StrategyOutcome] = []

        for strategy in self.strategies:
            outcome = await strategy.attempt(uri, q)
            if outcome.ok and outcome.asset is not None:
                logger.debug(
                    f"[Converter] {strategy.name} succeeded for {uri} "
                    f"({len(outcome.asset.data)} bytes)"
                )
                return outcome.asset

            attempts.append(outcome)
            logger.debug(
                f"[Converter] {strategy.name} failed ({outcome.status.value}): "
                f"{outcome.message}, trying next strategy"
            )

        raise ConversionError(uri, attempts)

    async def close(self) -> None:
        for strategy in self.strategies:
            close = getattr(strategy, "close", None)
            if close is not None:
                await close()
