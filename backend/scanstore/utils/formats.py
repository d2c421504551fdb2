"""MIME detection and thumbnail rendering for scanned pages.

Content sniffing goes through python-magic; extension lookup is the
first choice because scanner output is always named by the app.
"""

from __future__ import annotations

import io
from pathlib import Path

import magic
from PIL import Image, ImageOps

_EXT_TO_MIME: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".pdf": "application/pdf",
}


def extension_to_mime(filename: str) -> str | None:
    """MIME type for a known scan extension, or None."""
    return _EXT_TO_MIME.get(Path(filename).suffix.lower())


def detect_mime_type(data: bytes) -> str:
    """Detect MIME type from file content using libmagic."""
    return magic.from_buffer(data, mime=True)


def guess_mime_type(filename: str, head: bytes) -> str:
    """Extension first, libmagic on the leading bytes otherwise."""
    return extension_to_mime(filename) or detect_mime_type(head)


def is_image_mime(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.startswith("image/")


def make_thumbnail(data: bytes, max_px: int = 256, quality: int = 80) -> bytes:
    """Render a JPEG thumbnail that fits in a max_px square.

    EXIF orientation is applied first so phone scans come out upright.
    Raises PIL.UnidentifiedImageError when *data* is not a readable image.
    """
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.thumbnail((max_px, max_px))
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality)
        return out.getvalue()
