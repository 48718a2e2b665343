"""Text-to-speech providers and the voice synthesizer."""

from wondertalk.voice.providers import (
    ElevenLabsProvider,
    GeminiTTSProvider,
    SpeechRequest,
    SynthesisResult,
)
from wondertalk.voice.synthesizer import VoiceSynthesizer, order_providers

__all__ = [
    "ElevenLabsProvider",
    "GeminiTTSProvider",
    "SpeechRequest",
    "SynthesisResult",
    "VoiceSynthesizer",
    "order_providers",
]
