"""Headless-browser image loading for the element-load conversion strategy.

An ``<img crossorigin="anonymous">`` is loaded inside Chromium, drawn onto a
white-filled canvas and read back as PNG. If the origin does not grant CORS
read-back the canvas is tainted and ``toDataURL`` throws, which is reported
as ``cors_blocked``.

Usage:
    from slimage.browser import BrowserImageLoader, is_playwright_available

    if is_playwright_available():
        async with BrowserImageLoader() as loader:
            result = await loader.load(url, timeout=10.0)
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from importlib.util import find_spec
from typing import Any

from loguru import logger

# Outcome statuses reported by the page script
STATUS_OK = "ok"
STATUS_CORS_BLOCKED = "cors_blocked"
STATUS_LOAD_FAILED = "load_failed"
STATUS_TIMEOUT = "timeout"

# Extra time the outer bound allows past the page script's own timer
_EVALUATE_GRACE = 2.0

# Whichever of load/error/timer fires first settles the promise
_LOAD_SCRIPT = """
async ({ src, timeoutMs }) => {
  return await new Promise((resolve) => {
    let settled = false;
    const finish = (value) => {
      if (settled) return;
      settled = true;
      clearTimeout(timer);
      resolve(value);
    };
    const timer = setTimeout(() => finish({ status: "timeout" }), timeoutMs);
    const img = new Image();
    img.crossOrigin = "anonymous";
    img.onload = () => {
      try {
        const canvas = document.createElement("canvas");
        canvas.width = img.naturalWidth;
        canvas.height = img.naturalHeight;
        const ctx = canvas.getContext("2d");
        if (!ctx) {
          finish({ status: "load_failed", message: "Canvas context unavailable" });
          return;
        }
        ctx.fillStyle = "#FFFFFF";
        ctx.fillRect(0, 0, canvas.width, canvas.height);
        ctx.drawImage(img, 0, 0);
        finish({ status: "ok", dataUrl: canvas.toDataURL("image/png") });
      } catch (err) {
        finish({ status: "cors_blocked", message: String(err) });
      }
    };
    img.onerror = () => finish({ status: "load_failed", message: "Image could not be loaded" });
    img.src = src;
  });
}
"""


def is_playwright_available() -> bool:
    """Check if playwright is installed."""
    return find_spec("playwright") is not None


@dataclass
class BrowserLoadResult:
    """Result of loading one image in the browser.

    Attributes:
        status: One of ok / cors_blocked / load_failed / timeout
        data: PNG bytes read back from the canvas (only when status is ok)
        message: Detail for failures
    """

    status: str
    data: bytes | None = None
    message: str = ""


def decode_data_url(data_url: str) -> bytes:
    """Decode a ``data:<mime>;base64,...`` URL."""
    header, _, payload = data_url.partition(",")
    if not header.startswith("data:") or ";base64" not in header:
        raise ValueError("Not a base64 data URL")
    return base64.b64decode(payload)


async def _close_quietly(context: Any) -> None:
    try:
        await context.close()
    except Exception as e:
        logger.debug(f"[Browser] Context close failed: {e}")


class BrowserImageLoader:
    """Reusable Chromium instance for element-load conversions."""

    def __init__(self, proxy: str | None = None) -> None:
        self.proxy = proxy
        self._playwright: Any = None
        self._browser: Any = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> BrowserImageLoader:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_browser(self) -> Any:
        if self._browser is not None:
            return self._browser

        from playwright.async_api import async_playwright

        async with self._lock:
            if self._browser is not None:
                return self._browser

            self._playwright = await async_playwright().start()
            launch_options: dict[str, Any] = {"headless": True}
            if self.proxy:
                launch_options["proxy"] = {"server": self.proxy}

            try:
                self._browser = await self._playwright.chromium.launch(**launch_options)
            except Exception as e:
                await self._playwright.stop()
                self._playwright = None
                raise RuntimeError(
                    f"Failed to launch Chromium browser: {e}. "
                    "Install browser with: playwright install chromium"
                ) from e
            return self._browser

    async def load(self, url: str, timeout: float) -> BrowserLoadResult:
        """Load ``url`` through an image element and read the pixels back.

        Never raises; every failure is reported through
        ``BrowserLoadResult.status``.
        """
        try:
            browser = await self._ensure_browser()
        except Exception as e:
            return BrowserLoadResult(STATUS_LOAD_FAILED, message=str(e))

        context = None
        try:
            context = await browser.new_context()
            page = await context.new_page()
            # The page script owns the timeout; the outer bound only guards a hung browser
            outcome = await asyncio.wait_for(
                page.evaluate(
                    _LOAD_SCRIPT, {"src": url, "timeoutMs": int(timeout * 1000)}
                ),
                timeout=timeout + _EVALUATE_GRACE,
            )
        except asyncio.TimeoutError:
            return BrowserLoadResult(STATUS_TIMEOUT, message=f"No response in {timeout:g}s")
        except Exception as e:
            logger.debug(f"[Browser] Evaluation failed for {url}: {e}")
            return BrowserLoadResult(STATUS_LOAD_FAILED, message=str(e))
        finally:
            if context is not None:
                await _close_quietly(context)

        status = outcome.get("status", STATUS_LOAD_FAILED)
        if status != STATUS_OK:
            return BrowserLoadResult(status, message=outcome.get("message", ""))

        try:
            data = decode_data_url(outcome.get("dataUrl", ""))
        except ValueError as e:
            return BrowserLoadResult(STATUS_LOAD_FAILED, message=str(e))
        return BrowserLoadResult(STATUS_OK, data=data)

    async def close(self) -> None:
        """Close browser and playwright instances."""
        async with self._lock:
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
