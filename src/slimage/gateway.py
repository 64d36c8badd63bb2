"""Client for the operator-configured HTTP conversion endpoint.

The endpoint is outside our control and its response shape is not fixed,
so ``normalize_response`` accepts several layouts and picks the first URI
it can find in a fixed priority order.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from slimage.constants import DEFAULT_GATEWAY_TIMEOUT, GATEWAY_ACTION, USER_AGENT
from slimage.errors import (
    InvalidResponseShapeError,
    LoadFailedError,
    NotConfiguredError,
    OperationTimeoutError,
    ServerError,
)
from slimage.urls import is_external, mark_optimized

if TYPE_CHECKING:
    from slimage.stores.base import SettingsProvider

# Object keys that may carry the converted asset URI, highest priority first
_URL_KEYS = ("url", "optimizedUrl", "publicUrl")

_PREVIEW_CHARS = 200


def _extract(value: Any) -> str | None:
    """Walk one response value, returning the first http(s) URI found."""
    if isinstance(value, str):
        candidate = value.strip().strip('"')
        return candidate if is_external(candidate) else None

    if isinstance(value, list):
        return _extract(value[0]) if value else None

    if isinstance(value, dict):
        if "data" in value:
            found = _extract(value["data"])
            if found:
                return found
        for key in _URL_KEYS:
            found = _extract(value.get(key))
            if found:
                return found
        nested = value.get("json")
        if isinstance(nested, dict):
            return _extract(nested.get("url"))

    return None


def normalize_response(body: str | bytes | Any) -> str:
    """Extract the converted asset URI from an endpoint response.

    Accepted shapes, tried in order:
        - a bare URI (JSON string or plain-text body)
        - an array of any supported shape (first element wins)
        - a ``data`` wrapper holding an array or object
        - an object with ``url``, ``optimizedUrl``, ``publicUrl`` or ``json.url``

    Args:
        body: Raw response text/bytes, or an already-parsed JSON value

    Returns:
        The URI without the optimization marker

    Raises:
        InvalidResponseShapeError: If no http(s) URI can be found
    """
    parsed: Any = body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            parsed = json.loads(body)
        except ValueError:
            # Plain-text body: only a bare URI is acceptable
            parsed = body

    uri = _extract(parsed)
    if uri is None:
        preview = body if isinstance(body, str) else json.dumps(parsed, default=str)
        raise InvalidResponseShapeError(preview[:_PREVIEW_CHARS])
    return uri


class ConversionGateway:
    """Offload conversion to the operator's HTTP endpoint.

    Args:
        settings: Source of the endpoint URI (looked up on every call)
        client: Shared httpx client (a short-lived one is created per call if None)
        timeout: Hard bound for one request, in seconds
    """

    def __init__(
        self,
        settings: SettingsProvider,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_GATEWAY_TIMEOUT,
    ) -> None:
        self.settings = settings
        self._client = client
        self.timeout = timeout

    async def endpoint(self) -> str | None:
        return await self.settings.get_conversion_endpoint()

    async def is_configured(self) -> bool:
        return bool(await self.endpoint())

    async def optimize_via_endpoint(self, source_uri: str, target_path: str) -> str:
        """Ask the endpoint to convert ``source_uri`` and store it at ``target_path``.

        Returns:
            The new asset URI carrying a fresh ``opt=<ms>`` marker

        Raises:
            NotConfiguredError: No endpoint is configured (raised before any I/O)
            OperationTimeoutError: No response within the timeout
            ServerError: Non-2xx response
            InvalidResponseShapeError: 2xx response without a usable URI
        """
        endpoint = await self.endpoint()
        if not endpoint:
            raise NotConfiguredError()

        payload = {"imageUrl": source_uri, "path": target_path, "action": GATEWAY_ACTION}
        logger.debug(f"[Gateway] POST {endpoint} path={target_path}")

        try:
            response = await asyncio.wait_for(
                self._post(endpoint, payload), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError("gateway", self.timeout) from e
        except httpx.TimeoutException as e:
            raise OperationTimeoutError("gateway", self.timeout) from e
        except httpx.HTTPError as e:
            raise LoadFailedError(
                f"Cannot reach conversion endpoint: {e}", retryable=True
            ) from e

        if not response.is_success:
            raise ServerError(response.status_code, response.text[:_PREVIEW_CHARS])

        uri = normalize_response(response.content)
        logger.debug(f"[Gateway] Converted {source_uri} -> {uri}")
        return mark_optimized(uri)

    async def _post(self, endpoint: str, payload: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(endpoint, json=payload, timeout=self.timeout)

        async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}) as client:
            return await client.post(endpoint, json=payload, timeout=self.timeout)
