"""Image codec: decode, flatten onto white, encode.

All functions here are synchronous and CPU-bound; callers run them through
``run_in_codec_thread``.
"""

from __future__ import annotations

import io
from typing import Any

from PIL import Image, UnidentifiedImageError

from slimage.constants import (
    DEFAULT_BACKGROUND_COLOR,
    DEFAULT_QUALITY,
    DEFAULT_TARGET_FORMAT,
    TARGET_CONTENT_TYPES,
)
from slimage.errors import CodecError

# Pillow's format names differ from our lowercase keys
_PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "png": "PNG"}


def decode(data: bytes) -> Image.Image:
    """Decode image bytes into a fully loaded Pillow image.

    Raises:
        CodecError: If the bytes are empty or cannot be decoded (including
            images over Pillow's decompression-bomb pixel limit)
    """
    if not data:
        raise CodecError("Empty image payload")
    try:
        with io.BytesIO(data) as buffer:
            img = Image.open(buffer)
            img.load()
            return img
    except Image.DecompressionBombError as e:
        raise CodecError(f"Image too large to decode: {e}") from e
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise CodecError(f"Cannot decode image: {e}") from e


def composite_on_white(
    img: Image.Image, background: tuple[int, int, int] = DEFAULT_BACKGROUND_COLOR
) -> Image.Image:
    """Flatten any transparency onto an opaque background.

    Transparent regions would otherwise turn black in formats or viewers
    without alpha. The result is always an RGB image of the same size.
    """
    if img.mode == "P":
        img = img.convert("RGBA")

    if img.mode in ("RGBA", "LA") or "transparency" in img.info:
        rgba = img.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, background)
        canvas.paste(rgba, mask=rgba.split()[-1])
        return canvas

    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def quality_to_pillow(quality: float) -> int:
    """Map a 0..1 quality to Pillow's 1..100 scale."""
    return max(1, min(100, round(quality * 100)))


def encode(
    img: Image.Image,
    fmt: str = DEFAULT_TARGET_FORMAT,
    quality: float = DEFAULT_QUALITY,
) -> bytes:
    """Encode an image to ``fmt`` at the given quality."""
    pil_format = _PIL_FORMATS.get(fmt.lower())
    if pil_format is None:
        raise CodecError(f"Unsupported target format: {fmt}")

    save_kwargs: dict[str, Any] = {"format": pil_format}
    if pil_format in ("JPEG", "WEBP"):
        save_kwargs["quality"] = quality_to_pillow(quality)
    if pil_format == "PNG":
        save_kwargs["optimize"] = True

    out = io.BytesIO()
    try:
        img.save(out, **save_kwargs)
    except (OSError, ValueError) as e:
        raise CodecError(f"Cannot encode image as {fmt}: {e}") from e
    return out.getvalue()


def reencode(
    data: bytes,
    fmt: str = DEFAULT_TARGET_FORMAT,
    quality: float = DEFAULT_QUALITY,
) -> tuple[bytes, str]:
    """Decode, flatten onto white and encode in one step.

    Returns:
        Tuple of (encoded_bytes, content_type)
    """
    img = composite_on_white(decode(data))
    return encode(img, fmt, quality), TARGET_CONTENT_TYPES[fmt.lower()]
