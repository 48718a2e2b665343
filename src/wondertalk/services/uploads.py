"""Single-use upload targets for photos.

The client asks for an upload URL, PUTs the image bytes to it exactly once
with the issued token, and then refers to the photo by its media URL
(``<api_base_url>/v1/media/<upload_id>``) when requesting an analysis.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from wondertalk.core.models import UploadTarget, utcnow
from wondertalk.core.store import KeyValueStore

logger = logging.getLogger(__name__)

EXTENSION_BY_MIME = {"image/png": "png", "image/webp": "webp"}


class UploadError(Exception):
    """Raised when an upload is rejected."""

    pass


@dataclass(frozen=True)
class UploadTicket:
    upload_id: str
    token: str
    upload_url: str
    image_url: str
    expires_at: datetime


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class UploadService:
    def __init__(
        self,
        uploads: KeyValueStore[UploadTarget],
        uploads_dir: Path,
        api_base_url: str,
        ttl_minutes: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uploads = uploads
        self._uploads_dir = uploads_dir
        self._api_base_url = api_base_url.rstrip("/")
        self._ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    def media_url(self, upload_id: str) -> str:
        return f"{self._api_base_url}/v1/media/{upload_id}"

    def create_upload_target(self, session_id: str) -> UploadTicket:
        now = self._clock()
        target = UploadTarget(session_id=session_id, created_at=now, expires_at=now + self._ttl)
        self._uploads.set(target.upload_id, target)
        return UploadTicket(
            upload_id=target.upload_id,
            token=target.token,
            upload_url=f"{self._api_base_url}/v1/upload/{target.upload_id}?token={target.token}",
            image_url=self.media_url(target.upload_id),
            expires_at=target.expires_at,
        )

    async def accept_upload(
        self,
        upload_id: str,
        token: str,
        body: bytes,
        mime_type: str,
        original_filename: str | None = None,
    ) -> UploadTarget:
        """Store the bytes for a pending upload target.

        Raises:
            UploadError: Unknown target, wrong token, expired or already used,
                or the bytes could not be written (the target stays usable).
        """
        target = self._uploads.get(upload_id)
        if target is None:
            raise UploadError("Unknown upload target")
        if target.token != token:
            raise UploadError("Invalid upload token")
        if target.expires_at < self._clock():
            raise UploadError("Upload target expired")
        if target.consumed:
            raise UploadError("Upload already consumed")

        # Claim the target before the write so a second PUT cannot slip in.
        self._uploads.set(upload_id, target.model_copy(update={"consumed": True}))

        extension = EXTENSION_BY_MIME.get(mime_type, "jpg")
        file_path = self._uploads_dir / f"{upload_id}.{extension}"
        try:
            await asyncio.to_thread(_write_file, file_path, body)
        except OSError as e:
            # Release the claim so the client can PUT again.
            self._uploads.set(upload_id, target)
            logger.error(f"Could not store upload {upload_id}: {e}")
            raise UploadError("Could not store upload, please try again") from e

        updated = target.model_copy(
            update={
                "consumed": True,
                "file_path": str(file_path),
                "mime_type": mime_type,
                "image_url": self.media_url(upload_id),
                "original_filename": original_filename,
            }
        )
        self._uploads.set(upload_id, updated)
        logger.info(f"Accepted upload {upload_id} ({len(body)} bytes, {mime_type})")
        return updated

    def get_upload(self, upload_id: str) -> UploadTarget | None:
        return self._uploads.get(upload_id)

    def resolve_image(self, upload_id: str) -> UploadTarget | None:
        """Return the upload only once its bytes are stored."""
        target = self._uploads.get(upload_id)
        if target is None or not target.file_path:
            return None
        return target
