"""Central Pytest Fixtures for WonderTalk.

Fixtures included:
- Config & store: app_config, policy, store
- Entities & facts: eiffel_entity, alexander_entity, fact_pack, character_fact_pack
- AI fakes: disabled_client, make_gemini_client, genai_response
- Voice: FakeVoiceProvider, working_voice, failing_voice
- Images: png_bytes, jpeg_file
- Wiring: app_ctx (full pipeline with Gemini disabled)

Every model call is faked; no test touches the network.
"""

from __future__ import annotations

import json
import random
from io import BytesIO
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from wondertalk.ai.chain import Provider
from wondertalk.ai.client import GeminiClient
from wondertalk.config import AppConfig, GeminiConfig, reset_config
from wondertalk.context import AppContext, build_context, policy_from_config
from wondertalk.core.models import (
    CanonicalEntity,
    EntityCategory,
    FactItem,
    FactPack,
    PolicyConfig,
    RoleplayMode,
)
from wondertalk.core.store import Store, create_memory_store
from wondertalk.voice.providers import SpeechRequest, SynthesisResult

# =============================================================================
# Helper Functions
# =============================================================================


def make_image_bytes(
    width: int = 64, height: int = 48, color: str = "blue", fmt: str = "PNG"
) -> bytes:
    """Encode a solid-colour test image."""
    img = Image.new("RGB", (width, height), color=color)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def make_fact(claim: str, url: str = "https://www.britannica.com/x", confidence: float = 0.9) -> FactItem:
    return FactItem(claim=claim, confidence=confidence, source_urls=[url], freshness_date="2024-01-01")


def make_genai_response(text: str | None = None, data: dict[str, Any] | None = None) -> MagicMock:
    """A stand-in for ``types.GenerateContentResponse``."""
    response = MagicMock()
    response.text = text if text is not None else json.dumps(data or {})
    response.candidates = [MagicMock()]
    response.candidates[0].finish_reason.name = "STOP"
    response.prompt_feedback = None
    return response


class FakeVoiceProvider(Provider[SpeechRequest, SynthesisResult]):
    """Records requests; returns fixed audio or None."""

    def __init__(
        self,
        name: str,
        audio: bytes | None = b"ID3fake-mp3",
        content_type: str = "audio/mpeg",
        enabled: bool = True,
    ) -> None:
        self.name = name
        self._audio = audio
        self._content_type = content_type
        self._enabled = enabled
        self.requests: list[SpeechRequest] = []

    def is_enabled(self) -> bool:
        return self._enabled

    async def attempt(self, payload: SpeechRequest) -> SynthesisResult | None:
        self.requests.append(payload)
        if self._audio is None:
            return None
        return SynthesisResult(audio=self._audio, content_type=self._content_type)


# =============================================================================
# Config & Store
# =============================================================================


@pytest.fixture(autouse=True)
def _clear_config_cache():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(paths={"data_dir": str(tmp_path / "data")})


@pytest.fixture
def policy(app_config: AppConfig) -> PolicyConfig:
    return policy_from_config(app_config)


@pytest.fixture
def store(policy: PolicyConfig) -> Store:
    return create_memory_store(policy)


# =============================================================================
# Entities & Facts
# =============================================================================


@pytest.fixture
def eiffel_entity() -> CanonicalEntity:
    return CanonicalEntity(
        entity_id="entity-eiffel-tower",
        label="Eiffel Tower",
        detected_label="Eiffel Tower",
        category=EntityCategory.LANDMARK,
        confidence=0.91,
        research_subject="Eiffel Tower",
        roleplay_name="Eiffel Tower",
        roleplay_mode=RoleplayMode.AS_OBJECT,
    )


@pytest.fixture
def alexander_entity() -> CanonicalEntity:
    return CanonicalEntity(
        entity_id="entity-alexander-the-great",
        label="Alexander the Great",
        detected_label="Bust of Alexander the Great",
        category=EntityCategory.STATUE,
        confidence=0.8,
        research_subject="Alexander the Great",
        roleplay_name="Alexander the Great",
        roleplay_mode=RoleplayMode.AS_CHARACTER,
    )


@pytest.fixture
def fact_pack(eiffel_entity: CanonicalEntity) -> FactPack:
    return FactPack(
        entity=eiffel_entity,
        facts=[
            make_fact("The Eiffel Tower grows about 15 cm taller in summer heat."),
            make_fact("The Eiffel Tower is repainted every seven years."),
            make_fact("The Eiffel Tower was meant to stand for only 20 years."),
        ],
        summary="A wrought-iron tower in Paris.",
    )


@pytest.fixture
def character_fact_pack(alexander_entity: CanonicalEntity) -> FactPack:
    return FactPack(
        entity=alexander_entity,
        facts=[
            make_fact("Alexander the Great was tutored by Aristotle."),
            make_fact("Alexander the Great's horse was called Bucephalus."),
        ],
        summary="A king of ancient Macedon.",
    )


# =============================================================================
# AI Fakes
# =============================================================================


@pytest.fixture
def disabled_client() -> GeminiClient:
    return GeminiClient(GeminiConfig(), api_key=None)


@pytest.fixture
def make_gemini_client():
    """Factory: a client whose SDK returns ``responses`` in order."""

    def _make(*responses: Any, config: GeminiConfig | None = None) -> GeminiClient:
        sdk = MagicMock()
        sdk.aio.models.generate_content = AsyncMock(side_effect=list(responses))
        return GeminiClient(config or GeminiConfig(), sdk_client=sdk)

    return _make


# =============================================================================
# Voice
# =============================================================================


@pytest.fixture
def working_voice() -> FakeVoiceProvider:
    return FakeVoiceProvider("gemini", audio=b"RIFFfake-wav", content_type="audio/wav")


@pytest.fixture
def failing_voice() -> FakeVoiceProvider:
    return FakeVoiceProvider("elevenlabs", audio=None)


# =============================================================================
# Images
# =============================================================================


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def jpeg_file(tmp_path: Path) -> Path:
    path = tmp_path / "eiffel_trip.jpg"
    path.write_bytes(make_image_bytes(fmt="JPEG"))
    return path


# =============================================================================
# Wiring
# =============================================================================


@pytest.fixture
def app_ctx(
    app_config: AppConfig, disabled_client: GeminiClient, working_voice: FakeVoiceProvider
) -> AppContext:
    return build_context(
        app_config,
        gemini_client=disabled_client,
        voice_providers=[working_voice],
        rng=random.Random(3),
    )
