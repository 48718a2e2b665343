"""Voice Synthesizer - reply text to a streamable audio asset.

Providers are tried in the configured order; the first that returns audio
wins. Audio is written under ``<data_dir>/audio`` and registered in the
voice-asset store so the HTTP layer can stream it by id. A failed synthesis
is not an error: the caller gets None and the reply stays text-only.

Example:
    >>> synth = VoiceSynthesizer(providers, store, audio_dir, "http://localhost:8787")
    >>> ref = await synth.synthesize_to_asset("Hi, I'm the Eiffel Tower!", PersonaArchetype.WISE)
    >>> ref.stream_url if ref else "text only"
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from wondertalk.ai.chain import Provider, run_chain
from wondertalk.core.models import PersonaArchetype, VoiceAsset, VoiceAssetRef, new_id
from wondertalk.core.store import Store
from wondertalk.voice.providers import SpeechRequest, SynthesisResult
from wondertalk.voice.wav import extension_for

logger = logging.getLogger(__name__)

PROVIDER_ORDER: dict[str, list[str]] = {
    "gemini": ["gemini", "elevenlabs"],
    "elevenlabs": ["elevenlabs", "gemini"],
    "auto": ["gemini", "elevenlabs"],
}


def order_providers(
    providers: list[Provider[SpeechRequest, SynthesisResult]], preference: str
) -> list[Provider[SpeechRequest, SynthesisResult]]:
    """Arrange ``providers`` for ``preference``.

    ``auto`` additionally drops providers that are not enabled, so the first
    configured one leads. Unknown names keep their relative order at the end.
    """
    order = PROVIDER_ORDER.get(preference, PROVIDER_ORDER["gemini"])
    ranked = sorted(
        providers,
        key=lambda p: order.index(p.name) if p.name in order else len(order),
    )
    if preference == "auto":
        ranked = [p for p in ranked if p.is_enabled()]
    return ranked


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class VoiceSynthesizer:
    def __init__(
        self,
        providers: list[Provider[SpeechRequest, SynthesisResult]],
        store: Store,
        audio_dir: Path,
        api_base_url: str,
        preference: str = "gemini",
    ) -> None:
        self._providers = order_providers(providers, preference)
        self._store = store
        self._audio_dir = audio_dir
        self._api_base_url = api_base_url.rstrip("/")

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    async def synthesize_to_asset(
        self, text: str, archetype: PersonaArchetype
    ) -> VoiceAssetRef | None:
        """Synthesize ``text`` in the archetype's voice.

        Returns:
            Reference with the stream URL, or None when every provider failed.
        """
        if not text.strip():
            return None

        outcome = await run_chain(self._providers, SpeechRequest(text=text, archetype=archetype))
        if outcome is None:
            logger.warning("All voice providers failed; reply will be text only")
            return None

        result = outcome.result
        audio_id = new_id()
        file_path = self._audio_dir / f"{audio_id}.{extension_for(result.content_type)}"
        try:
            await asyncio.to_thread(_write_file, file_path, result.audio)
        except OSError as e:
            logger.error(f"Could not write audio asset {file_path.name}: {e}")
            return None

        self._store.voice_assets.set(
            audio_id,
            VoiceAsset(
                audio_id=audio_id, content_type=result.content_type, file_path=str(file_path)
            ),
        )
        logger.info(
            f"Synthesized {len(result.audio)} bytes of {result.content_type} via {outcome.provider}"
        )
        return VoiceAssetRef(
            audio_id=audio_id,
            stream_url=f"{self._api_base_url}/v1/audio/{audio_id}",
            provider=outcome.provider,
            content_type=result.content_type,
        )

    def resolve_audio(self, audio_id: str) -> VoiceAsset | None:
        return self._store.voice_assets.get(audio_id)
