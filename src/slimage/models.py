"""Data model shared by the scanner, runner and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class Record:
    """A content record owned by the surrounding system.

    Only ``image_ref`` and ``is_optimized`` are ever changed here; every other
    field travels through ``extra`` untouched so an upsert never drops data.

    Attributes:
        id: Stable record identifier
        title: Human readable title (used in progress and error messages)
        slug: Stable slug used to derive the asset storage path
        image_ref: URI of the record's image
        is_optimized: True once the image has been re-encoded
        extra: Remaining fields of the record, preserved verbatim
    """

    id: str
    title: str
    image_ref: str = ""
    slug: str = ""
    is_optimized: bool = False
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def storage_slug(self) -> str:
        """Slug used for storage paths (falls back to the id)."""
        return self.slug or self.id

    def with_image(self, image_ref: str, optimized: bool = True) -> Record:
        """Return a copy pointing at a new image."""
        return replace(self, image_ref=image_ref, is_optimized=optimized)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the surrounding system's camelCase field names."""
        data = dict(self.extra)
        data.update(
            {
                "id": self.id,
                "title": self.title,
                "slug": self.slug,
                "imageUrl": self.image_ref,
                "isOptimized": self.is_optimized,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        """Build a record from a stored dict, keeping unknown fields."""
        known = {"id", "title", "slug", "imageUrl", "isOptimized"}
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            slug=data.get("slug") or "",
            image_ref=data.get("imageUrl") or "",
            is_optimized=bool(data.get("isOptimized", False)),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass(frozen=True)
class ConvertedAsset:
    """A freshly re-encoded image, owned by the call that produced it."""

    data: bytes
    content_type: str
    source_strategy: str

    @property
    def extension(self) -> str:
        """File extension derived from the content type."""
        subtype = self.content_type.split("/")[-1]
        return "jpg" if subtype == "jpeg" else subtype


@dataclass
class ProgressState:
    """Operator-facing progress counters, rebuilt on every unit of work."""

    current: int = 0
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    message: str = ""

    def copy(self) -> ProgressState:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "message": self.message,
        }


@dataclass(frozen=True)
class ErrorLogEntry:
    """A per-item failure recorded during a batch run."""

    record_title: str
    message: str

    def __str__(self) -> str:
        return f"Error ({self.record_title}): {self.message}"


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one scan window.

    Attributes:
        processed: Records examined in this window
        added: Records newly added to the candidate set
        unknown: Records whose size could not be determined
        skipped: Records examined but not flagged
        cursor: Cursor position after the window
        total: Total records in the collection
    """

    processed: int
    added: int
    unknown: int
    skipped: int
    cursor: int
    total: int

    @property
    def complete(self) -> bool:
        return self.cursor >= self.total


@dataclass
class RunResult:
    """Final outcome of a batch run."""

    progress: ProgressState
    errors: list[ErrorLogEntry] = field(default_factory=list)
    cancelled: bool = False
    remaining: int = 0
