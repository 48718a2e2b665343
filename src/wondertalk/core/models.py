"""Domain models for the discovery pipeline.

Every record the pipeline produces or stores is a pydantic model. Records that
are handed around between components after creation (entities, facts, turns,
moderation results) are frozen; records that move through a lifecycle
(analyses, conversations, sessions, uploads) are updated with ``model_copy``.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Enums
# =============================================================================


class EntityCategory(str, Enum):
    LANDMARK = "landmark"
    NATURE = "nature"
    STATUE = "statue"
    ELECTRONICS = "electronics"
    SCIENCE = "science"
    ANIMAL = "animal"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "EntityCategory | None":
        """Return the matching member, or None for unknown values."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


class RoleplayMode(str, Enum):
    AS_OBJECT = "as_object"
    AS_CHARACTER = "as_character"


class PersonaArchetype(str, Enum):
    PLAYFUL = "playful"
    WISE = "wise"
    ADVENTUROUS = "adventurous"
    INVENTOR = "inventor"


class SafetyVerdict(str, Enum):
    ALLOW = "allow"
    TRANSFORM = "transform"
    BLOCK = "block"


class AnalysisStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.READY, AnalysisStatus.FAILED)


class AnalyticsEventName(str, Enum):
    SESSION_CREATED = "session_created"
    UPLOAD_STARTED = "upload_started"
    ANALYSIS_REQUESTED = "analysis_requested"
    FIRST_AUDIO_READY = "first_audio_ready"
    CHAT_TURN = "chat_turn"
    FEEDBACK_SUBMITTED = "feedback_submitted"


class FeedbackSignal(str, Enum):
    HELPFUL = "helpful"
    BORING = "boring"
    UNSAFE = "unsafe"
    INCORRECT = "incorrect"


# =============================================================================
# Entity & Facts
# =============================================================================


class CanonicalEntity(BaseModel):
    """What the photo shows, and who (if anyone) the conversation speaks as.

    ``label`` is the canonical label used for display; ``detected_label`` is the
    raw vision output. For ``as_character`` entities the label, research subject
    and roleplay name all carry the depicted person's name without any
    "bust of" / "statue of" wording.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    entity_id: str = Field(alias="entityId")
    label: str
    detected_label: str = Field(alias="detectedLabel")
    category: EntityCategory
    confidence: float = Field(ge=0.0, le=1.0)
    research_subject: str = Field(alias="researchSubject")
    roleplay_name: str = Field(alias="roleplayName")
    roleplay_mode: RoleplayMode = Field(alias="roleplayMode")

    @property
    def is_character(self) -> bool:
        return self.roleplay_mode is RoleplayMode.AS_CHARACTER


class FactItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    claim: str
    confidence: float = Field(ge=0.0, le=1.0)
    source_urls: list[str] = Field(min_length=1)
    freshness_date: str = Field(default_factory=lambda: date.today().isoformat())


class FactPack(BaseModel):
    """Researched facts about one entity, in preference order."""

    model_config = ConfigDict(frozen=True)

    entity: CanonicalEntity
    facts: list[FactItem]
    summary: str
    generated_at: datetime = Field(default_factory=utcnow)


class FactCacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    fact_pack: FactPack
    expires_at: datetime


# =============================================================================
# Persona & Conversation
# =============================================================================


class PersonaProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    voice_archetype: PersonaArchetype
    speaking_style: str
    hook_template_id: str


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    turn_id: str = Field(default_factory=new_id)
    user_input: str
    assistant_text: str
    safety_verdict: SafetyVerdict
    created_at: datetime = Field(default_factory=utcnow)


class ConversationState(BaseModel):
    """Live state of one discovery conversation.

    ``used_fact_indexes`` only ever grows and ``turns`` is append-only.
    """

    conversation_id: str = Field(default_factory=new_id)
    session_id: str
    entity: CanonicalEntity
    fact_pack: FactPack
    persona: PersonaProfile
    used_fact_indexes: set[int] = Field(default_factory=set)
    turns: list[ConversationTurn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def recent_turns(self, limit: int = 4) -> list[ConversationTurn]:
        return self.turns[-limit:]


class AnalysisResult(BaseModel):
    analysis_id: str = Field(default_factory=new_id)
    session_id: str
    image_url: str
    status: AnalysisStatus = AnalysisStatus.QUEUED
    entity: CanonicalEntity | None = None
    hook_text: str | None = None
    first_reply_text: str | None = None
    first_reply_audio_stream_url: str | None = None
    safety_status: SafetyVerdict | None = None
    conversation_id: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Moderation
# =============================================================================


class ModerationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    verdict: SafetyVerdict
    reasons: list[str] = Field(default_factory=list)
    transformed_text: str | None = None

    @property
    def allowed(self) -> bool:
        return self.verdict is SafetyVerdict.ALLOW


class IncidentItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    incident_id: str = Field(default_factory=new_id)
    session_id: str
    reason: str
    payload: str
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Sessions, Uploads, Voice, Policy, Analytics
# =============================================================================


class DeviceCapabilities(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    speech_recognition: bool = Field(default=False, alias="speechRecognition")
    media_recorder: bool = Field(default=False, alias="mediaRecorder")


class SessionInfo(BaseModel):
    session_id: str = Field(default_factory=new_id)
    token: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    locale: str = "en-US"
    user_agent: str = "unknown"
    device_capabilities: DeviceCapabilities | None = None


class UploadTarget(BaseModel):
    upload_id: str = Field(default_factory=new_id)
    token: str = Field(default_factory=new_id)
    session_id: str
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    consumed: bool = False
    file_path: str | None = None
    mime_type: str | None = None
    image_url: str | None = None
    original_filename: str | None = None


class VoiceAsset(BaseModel):
    model_config = ConfigDict(frozen=True)

    audio_id: str = Field(default_factory=new_id)
    content_type: str
    file_path: str
    created_at: datetime = Field(default_factory=utcnow)


class VoiceAssetRef(BaseModel):
    """What the synthesizer hands back to callers."""

    model_config = ConfigDict(frozen=True)

    audio_id: str
    stream_url: str
    provider: str
    content_type: str


class PolicyConfig(BaseModel):
    """Policy shown on the parent dashboard.

    ``blocked_topics`` is descriptive only; ``ModerationGate`` always applies its
    built-in topic patterns. ``max_reply_seconds`` is likewise informational.
    The source domains and confidence floor filter researched facts.
    """

    blocked_topics: list[str]
    allowed_source_domains: list[str]
    max_reply_seconds: int = Field(ge=1, le=120)
    min_fact_confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("allowed_source_domains")
    @classmethod
    def normalize_domains(cls, v: list[str]) -> list[str]:
        cleaned = []
        for domain in v:
            domain = domain.strip().lower().removeprefix("www.")
            if domain and domain not in cleaned:
                cleaned.append(domain)
        return cleaned


class AnalyticsEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_name: AnalyticsEventName
    session_id: str
    created_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class FeedbackItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    turn_id: str
    signal: FeedbackSignal
    created_at: datetime = Field(default_factory=utcnow)
