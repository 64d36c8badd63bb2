"""Structured error classes for the image rehabilitation pipeline.

Each error carries a ``retryable`` flag so callers can tell transient
network trouble apart from configuration problems that need operator action.

Error Hierarchy:
    SlimageError (base)
    ├── NotConfiguredError (not retryable, operator must set an endpoint)
    ├── OperationTimeoutError (a bounded call exceeded its limit)
    ├── ServerError (non-2xx from the conversion endpoint)
    ├── InvalidResponseShapeError (endpoint answered, no URI found)
    ├── CorsBlockedError (origin refused read-back of the pixels)
    ├── LoadFailedError (source could not be fetched at all)
    ├── CodecError (bytes are not a decodable image)
    ├── ConversionError (every converter strategy failed)
    ├── UpstreamFailure (wraps a gateway/converter error for one record)
    ├── PersistFailure (record write failed after the new asset was stored)
    ├── DeleteFailed (best-effort cleanup of an old asset failed)
    ├── StoreError (record/asset collaborator failure)
    └── BatchBusyError (a scan or run is already active)

Usage:
    try:
        updated = await orchestrator.optimize(record)
    except NotConfiguredError as e:
        print(e.resolution_hint)
    except PersistFailure as e:
        print(f"Stored {e.new_uri} but could not save the record")
    except SlimageError as e:
        print(f"Optimization failed: {e}")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from slimage.converter import StrategyOutcome


class SlimageError(Exception):
    """Base exception for all slimage errors.

    Attributes:
        retryable: Whether a later attempt may succeed without operator action
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class NotConfiguredError(SlimageError):
    """Raised when no conversion endpoint is configured."""

    def __init__(
        self,
        message: str = "Conversion endpoint is not configured",
        *,
        resolution_hint: str | None = None,
    ) -> None:
        super().__init__(message, retryable=False)
        self.resolution_hint = resolution_hint or (
            "Set gateway.endpoint in slimage.json or the converter URL in site settings"
        )


class OperationTimeoutError(SlimageError):
    """Raised when a bounded operation exceeds its time limit.

    Attributes:
        operation: Name of the operation that timed out (e.g. "gateway")
        timeout_seconds: The limit that was exceeded
    """

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(
            f"{operation} timed out after {timeout_seconds:g}s", retryable=True
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class ServerError(SlimageError):
    """Raised when the conversion endpoint answers with a non-2xx status."""

    def __init__(self, status: int, body: str = "") -> None:
        message = f"Conversion endpoint returned HTTP {status}"
        if body:
            message += f": {body}"
        super().__init__(message, retryable=status >= 500)
        self.status = status


class InvalidResponseShapeError(SlimageError):
    """Raised when no asset URI can be extracted from an endpoint response."""

    def __init__(self, preview: str) -> None:
        super().__init__(f"Unrecognized conversion response: {preview}")
        self.preview = preview


class CorsBlockedError(SlimageError):
    """Raised when the origin does not allow reading back the image pixels."""


class LoadFailedError(SlimageError):
    """Raised when the source image cannot be loaded."""


class CodecError(SlimageError):
    """Raised when image bytes cannot be decoded or encoded."""


class ConversionError(SlimageError):
    """Raised when every local conversion strategy failed.

    Attributes:
        attempts: Tagged outcome of each strategy, in the order tried
    """

    def __init__(self, uri: str, attempts: list[StrategyOutcome]) -> None:
        details = "; ".join(
            f"{a.strategy}: {a.status.value}" + (f" ({a.message})" if a.message else "")
            for a in attempts
        )
        super().__init__(f"All conversion strategies failed for {uri}: {details}")
        self.uri = uri
        self.attempts = attempts


class UpstreamFailure(SlimageError):
    """Wraps a gateway or converter failure for a single record."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(str(cause) or type(cause).__name__)
        self.cause = cause
        self.retryable = getattr(cause, "retryable", False)


class PersistFailure(SlimageError):
    """Raised when the record write fails after a new asset was stored.

    The new asset stays in storage (orphaned) and the old one was not deleted.
    """

    def __init__(self, cause: Exception, new_uri: str) -> None:
        super().__init__(f"Failed to save record: {cause}")
        self.cause = cause
        self.new_uri = new_uri


class DeleteFailed(SlimageError):
    """Raised by asset stores when best-effort deletion fails."""

    def __init__(self, uri: str, reason: str = "") -> None:
        message = f"Failed to delete asset {uri}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.uri = uri


class StoreError(SlimageError):
    """Raised when a record or asset store call fails."""


class BatchBusyError(SlimageError):
    """Raised when a scan or run is requested while another phase is active."""

    def __init__(self, phase: str) -> None:
        super().__init__(f"Another operation is already active: {phase}")
        self.phase = phase
