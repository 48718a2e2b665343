"""Central Gemini API Client for WonderTalk.

This module is the SOLE INTERFACE to the Gemini API. Vision labeling, fact
research, reply generation, transcription and speech synthesis all go through
``GeminiClient``; no other module imports ``google.genai`` directly.

The client provides:
- Async calls on the shared event loop, each bounded by a hard timeout
- Typed exceptions so callers can drop to their deterministic fallback
- Structured response models, including tolerant JSON extraction
- Security-first logging (never logs keys, prompts or full responses)

There is deliberately no retry loop: every call gets one attempt inside its
deadline, and the caller falls back.

Example:
    >>> client = GeminiClient(config.gemini, api_key=get_api_key("gemini"))
    >>> try:
    ...     result = await client.generate_json(["Describe this photo", image_part(data, "image/jpeg")])
    ... except AIClientError:
    ...     result = None  # use the heuristic path
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Literal, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, Field, SecretStr

from wondertalk.config import GeminiConfig
from wondertalk.utils.text import extract_json_object

logger = logging.getLogger(__name__)


# =============================================================================
# Exception Hierarchy
# =============================================================================


class AIClientError(Exception):
    """Base exception for all AI client errors.

    Attributes:
        message: Human-readable error description (safe to log).
        retriable: Whether a later attempt could succeed.
        details: Additional error context (may be sensitive, don't log).
        original_error: The underlying exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        retriable: bool = False,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.retriable = retriable
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


class AIUnavailableError(AIClientError):
    """The provider cannot be used at all (no key, disabled).

    Callers treat this as "go straight to fallback", without any network I/O.
    """

    def __init__(
        self,
        reason: Literal["no_api_key", "disabled", "offline"],
        message: str | None = None,
    ) -> None:
        self.reason = reason
        default_messages = {
            "no_api_key": "No Gemini API key configured",
            "disabled": "Gemini is disabled in configuration",
            "offline": "Cannot reach the Gemini API",
        }
        super().__init__(message or default_messages.get(reason, f"AI unavailable: {reason}"))


class AIAuthenticationError(AIClientError):
    def __init__(
        self,
        message: str = "API authentication failed. Please check your API key.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)


class AIRateLimitError(AIClientError):
    def __init__(
        self,
        message: str = "Rate limit exceeded. Please wait before retrying.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=True, original_error=original_error)


class AIServerError(AIClientError):
    """Server-side error (5xx).

    Attributes:
        status_code: HTTP status code if available.
    """

    def __init__(
        self,
        message: str = "AI server error. The service may be temporarily unavailable.",
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=True, original_error=original_error)
        self.status_code = status_code


class AIBadRequestError(AIClientError):
    def __init__(
        self,
        message: str = "Invalid request to AI service.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)


class AITimeoutError(AIClientError):
    """Request exceeded its deadline.

    Attributes:
        timeout_seconds: The deadline that was exceeded.
    """

    def __init__(
        self,
        timeout_seconds: float,
        message: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        msg = message or f"Request timed out after {timeout_seconds} seconds"
        super().__init__(msg, retriable=True, original_error=original_error)
        self.timeout_seconds = timeout_seconds


class ContentBlockedError(AIClientError):
    """The provider's own safety filters blocked the request or the reply."""

    def __init__(
        self,
        message: str = "Content blocked by safety filters.",
        blocked_reason: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)
        self.blocked_reason = blocked_reason


class EmptyResponseError(AIClientError):
    def __init__(self, message: str = "Model returned an empty response.") -> None:
        super().__init__(message, retriable=True)


# =============================================================================
# Response Models
# =============================================================================


class AIResponse(BaseModel):
    """Standardized response from a text generation call.

    Attributes:
        text: The generated content.
        model: Model that generated this response.
        finish_reason: Why generation stopped (e.g., "STOP").
        latency_ms: Time taken in milliseconds.
    """

    text: str = Field(..., description="The generated content")
    model: str = Field(..., description="Model that generated this response")
    finish_reason: str | None = Field(None, description="Why generation stopped")
    latency_ms: float | None = Field(None, description="Generation time in ms")


class StructuredAIResponse(BaseModel):
    """Response whose text was parsed as a JSON object.

    Attributes:
        data: Parsed object (empty dict when parsing failed).
        raw_text: Original text, kept for debugging only.
        parse_success: Whether an object could be extracted.
    """

    data: dict[str, Any] = Field(default_factory=dict)
    raw_text: str = ""
    model: str = ""
    parse_success: bool = False
    parse_error: str | None = None


class AudioResponse(BaseModel):
    """Raw audio returned by a speech synthesis call."""

    data: bytes
    mime_type: str
    model: str


# =============================================================================
# Helpers
# =============================================================================


def image_part(data: bytes, mime_type: str) -> types.Part:
    """Wrap image bytes as an inline content part."""
    return types.Part.from_bytes(data=data, mime_type=mime_type)


def audio_part(data: bytes, mime_type: str) -> types.Part:
    """Wrap audio bytes as an inline content part."""
    return types.Part.from_bytes(data=data, mime_type=mime_type)


# =============================================================================
# Client
# =============================================================================


class GeminiClient:
    """Async Gemini client with one timeout-bound attempt per call.

    Args:
        config: Gemini settings (models, timeout, temperature).
        api_key: Key from the environment or keyring. Without one the client
            reports ``is_enabled() == False`` and every call raises
            ``AIUnavailableError`` immediately.
        sdk_client: Pre-built ``genai.Client`` (tests inject a fake).
    """

    def __init__(
        self,
        config: GeminiConfig,
        api_key: SecretStr | None = None,
        sdk_client: genai.Client | None = None,
    ) -> None:
        self._config = config
        self._client = sdk_client
        if self._client is None and api_key is not None:
            self._client = genai.Client(api_key=api_key.get_secret_value())
        if self._client is None:
            logger.info("Gemini client disabled: no API key configured")

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def timeout_seconds(self) -> float:
        return self._config.request_timeout_seconds

    def is_enabled(self) -> bool:
        return self._client is not None

    async def generate(
        self,
        contents: Sequence[str | types.Part],
        *,
        system_instruction: str | None = None,
        json_output: bool = False,
        model: str | None = None,
        timeout: float | None = None,
    ) -> AIResponse:
        """Run one generation call.

        Args:
            contents: Prompt text and inline parts.
            system_instruction: Optional system prompt.
            json_output: Ask the model for ``application/json``.
            model: Override the configured model.
            timeout: Override the configured deadline in seconds.

        Returns:
            AIResponse with the generated text.

        Raises:
            AIUnavailableError: No key configured.
            AITimeoutError: The deadline passed.
            EmptyResponseError: The model produced no text.
            AIClientError: Any other mapped provider failure.
        """
        model_name = model or self._config.model
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=self._config.temperature,
            response_mime_type="application/json" if json_output else None,
        )
        response, latency_ms = await self._call(model_name, list(contents), config, timeout)

        text = (response.text or "").strip()
        if not text:
            raise EmptyResponseError()

        finish_reason = None
        if response.candidates:
            reason = response.candidates[0].finish_reason
            finish_reason = getattr(reason, "name", None) or (str(reason) if reason else None)

        logger.debug(f"Gemini {model_name} replied in {latency_ms:.0f}ms ({len(text)} chars)")
        return AIResponse(
            text=text, model=model_name, finish_reason=finish_reason, latency_ms=latency_ms
        )

    async def generate_json(
        self,
        contents: Sequence[str | types.Part],
        *,
        system_instruction: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> StructuredAIResponse:
        """Generate and parse a JSON object.

        Parse failures are reported through ``parse_success`` rather than raised,
        so callers decide how strict to be.
        """
        response = await self.generate(
            contents,
            system_instruction=system_instruction,
            json_output=True,
            model=model,
            timeout=timeout,
        )
        data = extract_json_object(response.text)
        if data is None:
            logger.debug(f"Could not parse JSON from {response.model} reply")
            return StructuredAIResponse(
                raw_text=response.text,
                model=response.model,
                parse_success=False,
                parse_error="no JSON object found in response",
            )
        return StructuredAIResponse(
            data=data, raw_text=response.text, model=response.model, parse_success=True
        )

    async def synthesize_speech(
        self,
        text: str,
        voice_name: str,
        *,
        model: str | None = None,
        timeout: float | None = None,
    ) -> AudioResponse:
        """Turn text into speech with a prebuilt Gemini voice.

        Returns:
            AudioResponse holding the raw bytes and their mime type (usually
            16-bit PCM, e.g. ``audio/L16;codec=pcm;rate=24000``).

        Raises:
            EmptyResponseError: No inline audio came back.
            AIClientError: Any mapped provider failure.
        """
        model_name = model or self._config.tts_model
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name)
                )
            ),
        )
        response, latency_ms = await self._call(model_name, [text], config, timeout)

        for candidate in response.candidates or []:
            content = candidate.content
            for part in (content.parts if content and content.parts else []):
                inline = part.inline_data
                if inline is not None and inline.data:
                    logger.debug(
                        f"Gemini TTS {model_name} returned {len(inline.data)} bytes "
                        f"in {latency_ms:.0f}ms"
                    )
                    return AudioResponse(
                        data=inline.data,
                        mime_type=inline.mime_type or "audio/pcm",
                        model=model_name,
                    )
        raise EmptyResponseError("Speech synthesis returned no audio.")

    async def _call(
        self,
        model_name: str,
        contents: list[Any],
        config: types.GenerateContentConfig,
        timeout: float | None,
    ) -> tuple[types.GenerateContentResponse, float]:
        if self._client is None:
            raise AIUnavailableError("no_api_key")

        deadline = timeout or self._config.request_timeout_seconds
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=model_name, contents=contents, config=config
                ),
                timeout=deadline,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Gemini {model_name} timed out after {deadline}s")
            raise AITimeoutError(deadline, original_error=e) from e
        except AIClientError:
            raise
        except Exception as e:
            mapped = self._map_exception(e)
            logger.warning(f"Gemini {model_name} call failed: {type(mapped).__name__}: {mapped}")
            raise mapped from e

        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback else None
        if block_reason:
            raise ContentBlockedError(blocked_reason=str(block_reason))

        return response, (time.perf_counter() - started) * 1000

    def _map_exception(self, error: Exception) -> AIClientError:
        """Map SDK exceptions to our exception hierarchy."""
        if isinstance(error, genai_errors.APIError):
            code = getattr(error, "code", None)
            if code in (401, 403):
                return AIAuthenticationError(original_error=error)
            if code == 429:
                return AIRateLimitError(original_error=error)
            if code == 400:
                return AIBadRequestError(str(error), original_error=error)
            if isinstance(code, int) and code >= 500:
                return AIServerError(status_code=code, original_error=error)

        error_str = str(error).lower()
        if "blocked" in error_str or "safety" in error_str:
            return ContentBlockedError(original_error=error)
        if "timeout" in error_str or "deadline" in error_str:
            return AITimeoutError(self._config.request_timeout_seconds, original_error=error)
        if isinstance(error, (ConnectionError, OSError)):
            return AIUnavailableError("offline")

        return AIClientError(
            f"Unexpected AI error: {type(error).__name__}",
            retriable=False,
            original_error=error,
        )
