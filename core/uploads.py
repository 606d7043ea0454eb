"""
ForgeSR - Upload Registry
==========================
Holds the currently selected source image and its preview.

A new selection replaces the previous one; the old bytes and preview are
deleted. Dimensions are decoded asynchronously and are immutable once set.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger
from PIL import Image, UnidentifiedImageError

from .config import ForgeConfig
from .errors import UploadRejectedError


ALLOWED_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".dib",
    ".tif", ".tiff", ".avif", ".heic", ".heif",
}
ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
    "image/avif": ".avif",
    "image/heic": ".heic",
    "image/heif": ".heif",
}


@dataclass
class UploadedFile:
    """A user-selected source image."""
    id: str
    filename: str
    content_type: str
    size_bytes: int
    raw_path: Path
    preview_path: Optional[Path] = None
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _width: Optional[int] = field(default=None, repr=False)
    _height: Optional[int] = field(default=None, repr=False)

    @property
    def width(self) -> Optional[int]:
        return self._width

    @property
    def height(self) -> Optional[int]:
        return self._height

    @property
    def has_dimensions(self) -> bool:
        return self._width is not None and self._height is not None

    def set_dimensions(self, width: int, height: int) -> None:
        """Record decoded dimensions. Only the first call is allowed."""
        if self.has_dimensions:
            raise AttributeError(f"Dimensions of upload {self.id} are already set")
        self._width = int(width)
        self._height = int(height)

    def read_bytes(self) -> bytes:
        return self.raw_path.read_bytes()


def _extension_for(filename: str, content_type: Optional[str]) -> str:
    suffix = Path(filename or "").suffix.lower()
    if suffix in ALLOWED_EXTENSIONS:
        return suffix
    return ALLOWED_MIME_TYPES.get((content_type or "").lower(), "")


def read_dimensions(path: Path) -> Tuple[int, int]:
    """Decode an image header and return (width, height)."""
    with Image.open(path) as img:
        return img.size


def write_preview(source: Path, target: Path, edge: int) -> Path:
    """Write a PNG thumbnail whose longest edge is at most `edge` pixels."""
    with Image.open(source) as img:
        img.thumbnail((edge, edge))
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA")
        img.save(target, "PNG")
    return target


class UploadRegistry:
    """
    Single-slot store for the current upload.

    Files are written to uploads_dir as {id}{ext}; previews as {id}_preview.png.
    """

    def __init__(self, uploads_dir: Path, config: Optional[ForgeConfig] = None):
        config = config or ForgeConfig()
        self.uploads_dir = Path(uploads_dir)
        self.max_upload_bytes = config.max_upload_bytes
        self.preview_edge = config.preview_edge
        self._current: Optional[UploadedFile] = None

        self.uploads_dir.mkdir(parents=True, exist_ok=True)

    @property
    def current(self) -> Optional[UploadedFile]:
        return self._current

    def get(self, upload_id: str) -> Optional[UploadedFile]:
        if self._current is not None and self._current.id == upload_id:
            return self._current
        return None

    def select(self, filename: str, content_type: Optional[str], data: bytes) -> UploadedFile:
        """
        Register a new upload, replacing the previous one.

        Args:
            filename: Original file name
            content_type: MIME type reported by the client
            data: Raw file bytes

        Returns:
            The new UploadedFile (dimensions not yet decoded)

        Raises:
            UploadRejectedError: Unsupported type, empty or too large
        """
        ext = _extension_for(filename, content_type)
        if not ext:
            raise UploadRejectedError(
                f"Invalid file type: {content_type or filename}. "
                f"Allowed: {', '.join(sorted(e.lstrip('.').upper() for e in ALLOWED_EXTENSIONS))}"
            )
        if not data:
            raise UploadRejectedError("Uploaded file is empty")
        if len(data) > self.max_upload_bytes:
            raise UploadRejectedError(
                f"File too large. Maximum size: {self.max_upload_bytes // (1024 * 1024)}MB"
            )

        upload_id = uuid.uuid4().hex
        raw_path = self.uploads_dir / f"{upload_id}{ext}"
        raw_path.write_bytes(data)

        upload = UploadedFile(
            id=upload_id,
            filename=filename or raw_path.name,
            content_type=content_type or "application/octet-stream",
            size_bytes=len(data),
            raw_path=raw_path,
        )

        previous, self._current = self._current, upload
        if previous is not None:
            self._release(previous)

        logger.info(f"[Uploads] Selected {upload.filename} ({upload.size_bytes / 1024:.1f} KB) as {upload.id}")
        return upload

    async def decode(self, upload: Optional[UploadedFile] = None) -> UploadedFile:
        """
        Decode dimensions and write the preview (in a worker thread).

        Raises:
            UploadRejectedError: The bytes are not a decodable image
        """
        upload = upload or self._current
        if upload is None:
            raise UploadRejectedError("No upload selected")
        if upload.has_dimensions:
            return upload

        preview_path = self.uploads_dir / f"{upload.id}_preview.png"
        try:
            width, height = await asyncio.to_thread(read_dimensions, upload.raw_path)
            await asyncio.to_thread(write_preview, upload.raw_path, preview_path, self.preview_edge)
        except Image.DecompressionBombError as e:
            raise UploadRejectedError(f"Image {upload.filename} is too large to decode: {e}") from e
        except (UnidentifiedImageError, OSError) as e:
            raise UploadRejectedError(f"Could not decode image {upload.filename}: {e}") from e

        # A newer selection may have replaced this one while decoding.
        if upload is not self._current:
            preview_path.unlink(missing_ok=True)
            return upload

        if not upload.has_dimensions:
            upload.set_dimensions(width, height)
            upload.preview_path = preview_path
        logger.debug(f"[Uploads] Decoded {upload.id}: {width}×{height}")
        return upload

    def clear(self) -> None:
        previous, self._current = self._current, None
        if previous is not None:
            self._release(previous)

    def _release(self, upload: UploadedFile) -> None:
        for path in (upload.raw_path, upload.preview_path):
            if path is not None:
                path.unlink(missing_ok=True)
        logger.debug(f"[Uploads] Released {upload.id}")
