"""Parent/admin views: active policy, voice catalogue and incident log."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from wondertalk.config import VoiceConfig
from wondertalk.core.models import IncidentItem, PersonaArchetype, PolicyConfig
from wondertalk.core.store import AppendLog, PolicyHolder

logger = logging.getLogger(__name__)

INCIDENT_LIMIT = 200


class PolicyUpdate(BaseModel):
    """Partial policy change; omitted fields keep their current value."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    # Display only; moderation does not read it.
    blocked_topics: list[str] | None = Field(default=None, alias="blockedTopics")
    allowed_source_domains: list[str] | None = Field(default=None, alias="allowedSourceDomains")
    max_reply_seconds: int | None = Field(default=None, ge=5, le=40, alias="maxReplySeconds")
    min_fact_confidence: float | None = Field(
        default=None, ge=0.0, le=1.0, alias="minFactConfidence"
    )


class VoiceOption(BaseModel):
    provider: str
    archetype: PersonaArchetype
    voice_id: str


class AdminService:
    def __init__(
        self,
        policy: PolicyHolder,
        incidents: AppendLog[IncidentItem],
        voice_config: VoiceConfig,
    ) -> None:
        self._policy = policy
        self._incidents = incidents
        self._voice_config = voice_config

    def get_policy(self) -> PolicyConfig:
        return self._policy.get()

    def update_policy(self, update: PolicyUpdate) -> PolicyConfig:
        changes = update.model_dump(exclude_none=True)
        merged = PolicyConfig(**{**self._policy.get().model_dump(), **changes})
        self._policy.set(merged)
        logger.info(f"Policy updated: {sorted(changes)}")
        return merged

    def get_voices(self) -> list[VoiceOption]:
        options: list[VoiceOption] = []
        for archetype in PersonaArchetype:
            options.append(
                VoiceOption(
                    provider="gemini",
                    archetype=archetype,
                    voice_id=self._voice_config.gemini_voice_for(archetype.value),
                )
            )
        for archetype in PersonaArchetype:
            options.append(
                VoiceOption(
                    provider="elevenlabs",
                    archetype=archetype,
                    voice_id=self._voice_config.elevenlabs_voice_for(archetype.value),
                )
            )
        return options

    def get_incidents(self, limit: int = INCIDENT_LIMIT) -> list[IncidentItem]:
        """Most recent incidents first."""
        return self._incidents.list(limit)
