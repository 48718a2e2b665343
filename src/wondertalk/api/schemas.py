"""Request bodies accepted by the HTTP API."""

from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, HttpUrl, model_validator

from wondertalk.core.models import DeviceCapabilities, FeedbackSignal


class SessionCreateRequest(BaseModel):
    locale: str | None = None
    user_agent: str | None = None
    device_capabilities: DeviceCapabilities | None = None


class PhotoAnalyzeRequest(BaseModel):
    session_id: UUID
    image_url: HttpUrl


class ChatTurnRequest(BaseModel):
    session_id: UUID
    conversation_id: UUID
    input_type: Literal["voice", "text"]
    text: str | None = None
    audio_blob_url: HttpUrl | None = None

    @model_validator(mode="after")
    def check_input_present(self) -> "ChatTurnRequest":
        if self.input_type == "text" and not (self.text and self.text.strip()):
            raise ValueError("text is required when input_type is 'text'")
        if self.input_type == "voice" and self.audio_blob_url is None:
            raise ValueError("audio_blob_url is required when input_type is 'voice'")
        return self


class FeedbackRequest(BaseModel):
    session_id: UUID
    turn_id: UUID
    signal: FeedbackSignal
