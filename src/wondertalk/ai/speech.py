"""Speech-to-text for voice turns.

Children can answer by talking instead of typing. The recording is either
uploaded directly (``/v1/speech/transcribe``) or referenced by URL in a chat
turn; both paths end in a single Gemini transcription call. Any failure gives
None, which the turn engine treats as "no input".
"""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from wondertalk.ai.client import AIClientError, GeminiClient, audio_part
from wondertalk.ai.prompts import get_prompt

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_MIME = "audio/webm"
MAX_AUDIO_BYTES = 8 * 1024 * 1024


class SpeechService:
    def __init__(
        self,
        client: GeminiClient,
        fetch_timeout_seconds: float = 6.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._client = client
        self._fetch_timeout = fetch_timeout_seconds
        self._session = session

    def is_enabled(self) -> bool:
        return self._client.is_enabled()

    async def transcribe_from_url(self, audio_url: str) -> str | None:
        """Download a recording and transcribe it.

        Nothing is downloaded while the model is unavailable.
        """
        if not self._client.is_enabled():
            return None

        timeout = aiohttp.ClientTimeout(total=self._fetch_timeout)
        try:
            if self._session is not None:
                fetched = await self._fetch(self._session, audio_url, timeout)
            else:
                async with aiohttp.ClientSession() as session:
                    fetched = await self._fetch(session, audio_url, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Audio download timed out after {self._fetch_timeout}s")
            return None
        except aiohttp.ClientError as e:
            logger.warning(f"Audio download failed: {type(e).__name__}")
            return None

        if fetched is None:
            return None
        data, mime_type = fetched
        return await self.transcribe_bytes(data, mime_type)

    async def transcribe_bytes(self, data: bytes, mime_type: str) -> str | None:
        """Transcribe raw audio bytes.

        Returns:
            The cleaned transcription, or None when the model is unavailable,
            fails, or hears nothing.
        """
        if not data or not self._client.is_enabled():
            return None

        system, prompt = get_prompt("transcription_v1").render()
        try:
            response = await self._client.generate_json(
                [prompt, audio_part(data, mime_type or DEFAULT_AUDIO_MIME)],
                system_instruction=system,
            )
        except AIClientError as e:
            logger.info(f"Transcription failed: {type(e).__name__}")
            return None

        text = response.data.get("text") if response.parse_success else None
        if not isinstance(text, str) or not text.strip():
            return None
        return text.strip()

    async def _fetch(
        self, session: aiohttp.ClientSession, url: str, timeout: aiohttp.ClientTimeout
    ) -> tuple[bytes, str] | None:
        async with session.get(url, timeout=timeout) as resp:
            if resp.status != 200:
                logger.warning(f"Audio download returned HTTP {resp.status}")
                return None
            data = await resp.read()
            if len(data) > MAX_AUDIO_BYTES:
                logger.warning(f"Audio download too large ({len(data)} bytes)")
                return None
            mime_type = resp.headers.get("Content-Type", DEFAULT_AUDIO_MIME).split(";")[0]
            return data, mime_type
