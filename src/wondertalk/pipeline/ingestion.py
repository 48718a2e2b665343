"""Image ingestion: validation, malware-scan hook and normalisation.

Every photo goes through the same preparation before any model sees it:
orientation fixed from EXIF, metadata stripped, downsized to fit inside
1280x1280 and re-encoded as JPEG. The normalised copy lives next to the
upload as ``<upload>-normalized.jpg``.

Example:
    >>> ingestion = IngestionService(max_image_bytes=8 * 1024 * 1024)
    >>> ingestion.validate_mime_type("image/png")
    >>> image = await ingestion.preprocess_image(Path("data/uploads/abc.png"))
    >>> image.mime_type
    'image/jpeg'
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})
MAX_DIMENSION = 1280
JPEG_QUALITY = 88
NORMALIZED_MIME_TYPE = "image/jpeg"


class IngestionError(Exception):
    """Raised when an image is rejected before analysis."""

    pass


class MalwareScanner(Protocol):
    async def scan(self, path: Path) -> None:
        """Raise ``IngestionError`` if ``path`` must not be processed."""
        ...


class NoopMalwareScanner:
    """Accepts everything. Deployments plug in a real scanner."""

    async def scan(self, path: Path) -> None:
        return None


@dataclass(frozen=True)
class NormalizedImage:
    path: Path
    data: bytes
    mime_type: str = NORMALIZED_MIME_TYPE
    width: int = 0
    height: int = 0


def normalized_path_for(path: Path) -> Path:
    return path.with_name(f"{path.stem}-normalized.jpg")


def _normalize(path: Path, max_image_bytes: int) -> NormalizedImage:
    raw = path.read_bytes()
    if not raw or len(raw) > max_image_bytes:
        raise IngestionError(f"Image must be between 1 and {max_image_bytes} bytes")

    try:
        with Image.open(BytesIO(raw)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.thumbnail((MAX_DIMENSION, MAX_DIMENSION))

            # Re-encoding without exif/icc drops the original metadata.
            buffer = BytesIO()
            img.save(buffer, format="JPEG", quality=JPEG_QUALITY, optimize=True)
            width, height = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise IngestionError(f"Unreadable image: {type(e).__name__}") from e

    data = buffer.getvalue()
    target = normalized_path_for(path)
    target.write_bytes(data)
    return NormalizedImage(path=target, data=data, width=width, height=height)


class IngestionService:
    def __init__(
        self,
        max_image_bytes: int = 8 * 1024 * 1024,
        scanner: MalwareScanner | None = None,
    ) -> None:
        self.max_image_bytes = max_image_bytes
        self._scanner = scanner or NoopMalwareScanner()

    def validate_mime_type(self, mime_type: str | None) -> None:
        """Raises ``IngestionError`` unless ``mime_type`` is jpeg, png or webp."""
        normalized = (mime_type or "").split(";")[0].strip().lower()
        if normalized not in ALLOWED_MIME_TYPES:
            raise IngestionError(f"Unsupported image type: {mime_type or 'missing'}")

    def validate_size(self, size: int) -> None:
        if size <= 0 or size > self.max_image_bytes:
            raise IngestionError(f"Image must be <= {self.max_image_bytes} bytes")

    async def malware_scan(self, path: Path) -> None:
        await self._scanner.scan(path)

    async def preprocess_image(self, path: Path) -> NormalizedImage:
        """Normalise ``path`` off the event loop.

        Raises:
            IngestionError: The file is missing, too large or not an image.
        """
        if not path.exists():
            raise IngestionError(f"Image file missing: {path.name}")
        image = await asyncio.to_thread(_normalize, path, self.max_image_bytes)
        logger.debug(
            f"Normalised {path.name} to {image.width}x{image.height} ({len(image.data)} bytes)"
        )
        return image
