"""Model-backed components: Gemini client, entity resolution, research, replies, speech."""

from wondertalk.ai.chain import ChainOutcome, Provider, run_chain
from wondertalk.ai.client import (
    AIAuthenticationError,
    AIBadRequestError,
    AIClientError,
    AIRateLimitError,
    AIServerError,
    AITimeoutError,
    AIUnavailableError,
    ContentBlockedError,
    EmptyResponseError,
    GeminiClient,
)
from wondertalk.ai.generation import ReplyGenerator
from wondertalk.ai.research import ResearchCache
from wondertalk.ai.speech import SpeechService
from wondertalk.ai.vision import EntityResolver

__all__ = [
    "AIAuthenticationError",
    "AIBadRequestError",
    "AIClientError",
    "AIRateLimitError",
    "AIServerError",
    "AITimeoutError",
    "AIUnavailableError",
    "ChainOutcome",
    "ContentBlockedError",
    "EmptyResponseError",
    "EntityResolver",
    "GeminiClient",
    "Provider",
    "ReplyGenerator",
    "ResearchCache",
    "SpeechService",
    "run_chain",
]
