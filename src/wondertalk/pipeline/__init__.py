"""The discovery pipeline: ingestion, analysis and conversation turns."""

from wondertalk.pipeline.analysis import (
    AnalysisError,
    AnalysisOrchestrator,
    ImageNotFoundError,
    InvalidImageUrlError,
    InvalidTransitionError,
    SessionMismatchError,
)
from wondertalk.pipeline.conversation import (
    ChatTurnResult,
    ConversationError,
    ConversationNotFoundError,
    ConversationTurnEngine,
    EmptyInputError,
)
from wondertalk.pipeline.ingestion import IngestionError, IngestionService, NormalizedImage

__all__ = [
    "AnalysisError",
    "AnalysisOrchestrator",
    "ChatTurnResult",
    "ConversationError",
    "ConversationNotFoundError",
    "ConversationTurnEngine",
    "EmptyInputError",
    "ImageNotFoundError",
    "IngestionError",
    "IngestionService",
    "InvalidImageUrlError",
    "InvalidTransitionError",
    "NormalizedImage",
    "SessionMismatchError",
]
