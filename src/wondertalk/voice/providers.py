"""Text-to-speech providers.

Each provider makes one timeout-bound call and returns ``SynthesisResult`` or
None. None covers every expected failure (disabled, timeout, HTTP error,
empty audio) so the synthesizer can simply move on to the next provider.

Example:
    >>> provider = ElevenLabsProvider(config.voice, api_key=get_api_key("elevenlabs"))
    >>> result = await provider.attempt(SpeechRequest("Hello!", PersonaArchetype.WISE))
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import aiohttp
from pydantic import SecretStr

from wondertalk.ai.chain import Provider
from wondertalk.ai.client import AIClientError, GeminiClient
from wondertalk.config import VoiceConfig
from wondertalk.core.models import PersonaArchetype
from wondertalk.voice.wav import is_raw_pcm, pcm_to_wav, sample_rate_from_mime

logger = logging.getLogger(__name__)

ELEVENLABS_VOICE_SETTINGS = {
    "stability": 0.45,
    "similarity_boost": 0.65,
    "style": 0.65,
    "use_speaker_boost": True,
}


@dataclass(frozen=True)
class SpeechRequest:
    text: str
    archetype: PersonaArchetype


@dataclass(frozen=True)
class SynthesisResult:
    audio: bytes
    content_type: str


class GeminiTTSProvider(Provider[SpeechRequest, SynthesisResult]):
    """Gemini prebuilt voices; raw PCM is wrapped as WAV."""

    name = "gemini"

    def __init__(self, client: GeminiClient, config: VoiceConfig) -> None:
        self._client = client
        self._config = config

    def is_enabled(self) -> bool:
        return self._client.is_enabled()

    async def attempt(self, payload: SpeechRequest) -> SynthesisResult | None:
        voice = self._config.gemini_voice_for(payload.archetype.value)
        try:
            response = await self._client.synthesize_speech(
                payload.text, voice, timeout=self._config.request_timeout_seconds
            )
        except AIClientError as e:
            logger.warning(f"Gemini TTS failed ({type(e).__name__}): {e}")
            return None

        mime = response.mime_type
        if "wav" in mime.lower():
            return SynthesisResult(audio=response.data, content_type="audio/wav")
        if is_raw_pcm(mime):
            wav = pcm_to_wav(response.data, sample_rate=sample_rate_from_mime(mime))
            return SynthesisResult(audio=wav, content_type="audio/wav")
        return SynthesisResult(audio=response.data, content_type=mime)


class ElevenLabsProvider(Provider[SpeechRequest, SynthesisResult]):
    """ElevenLabs streaming endpoint over aiohttp."""

    name = "elevenlabs"

    def __init__(
        self,
        config: VoiceConfig,
        api_key: SecretStr | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._api_key = api_key
        self._session = session

    def is_enabled(self) -> bool:
        return self._api_key is not None

    async def attempt(self, payload: SpeechRequest) -> SynthesisResult | None:
        if self._api_key is None:
            return None

        voice_id = self._config.elevenlabs_voice_for(payload.archetype.value)
        url = f"{self._config.elevenlabs_base_url}/v1/text-to-speech/{voice_id}/stream"
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self._api_key.get_secret_value(),
        }
        body = {
            "text": payload.text,
            "model_id": self._config.elevenlabs_model,
            "voice_settings": ELEVENLABS_VOICE_SETTINGS,
        }
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)

        try:
            if self._session is not None:
                return await self._post(self._session, url, headers, body, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, url, headers, body, timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"ElevenLabs request timed out after {self._config.request_timeout_seconds}s"
            )
            return None
        except aiohttp.ClientError as e:
            logger.warning(f"ElevenLabs request failed: {type(e).__name__}")
            return None

    async def _post(
        self,
        session: aiohttp.ClientSession,
        url: str,
        headers: dict[str, str],
        body: dict,
        timeout: aiohttp.ClientTimeout,
    ) -> SynthesisResult | None:
        async with session.post(url, json=body, headers=headers, timeout=timeout) as resp:
            if resp.status != 200:
                logger.warning(f"ElevenLabs returned HTTP {resp.status}")
                return None
            audio = await resp.read()
            if not audio:
                return None
            return SynthesisResult(
                audio=audio, content_type=resp.headers.get("Content-Type", "audio/mpeg")
            )
