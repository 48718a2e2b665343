"""Model-written replies for the opening line and for follow-up turns.

Both functions return None whenever the model is unavailable, slow, or says
something that does not parse, so callers can drop to the Persona Engine's
templates without special-casing errors.
"""

from __future__ import annotations

import logging
from typing import Any

from wondertalk.ai.client import AIClientError, GeminiClient
from wondertalk.ai.prompts import (
    CHARACTER_INSTRUCTION,
    FOLLOWUP_INSTRUCTION,
    OPENING_INSTRUCTION,
    get_prompt,
    render_json_payload,
)
from wondertalk.core.models import CanonicalEntity, ConversationTurn, FactItem

logger = logging.getLogger(__name__)

MAX_REPLY_CHARS = 1200


def _entity_payload(entity: CanonicalEntity) -> dict[str, Any]:
    return entity.model_dump(mode="json", by_alias=True)


def _facts_payload(facts: list[FactItem]) -> list[dict[str, Any]]:
    return [
        {"claim": f.claim, "confidence": f.confidence, "sourceUrls": f.source_urls}
        for f in facts
    ]


class ReplyGenerator:
    def __init__(self, client: GeminiClient) -> None:
        self._client = client

    def is_enabled(self) -> bool:
        return self._client.is_enabled()

    async def opening_reply(
        self,
        entity: CanonicalEntity,
        hook: str,
        summary: str,
        candidate_facts: list[FactItem],
    ) -> str | None:
        instruction = OPENING_INSTRUCTION + (CHARACTER_INSTRUCTION if entity.is_character else "")
        payload = {
            "instruction": instruction,
            "entity": _entity_payload(entity),
            "hook": hook,
            "summary": summary,
            "candidateFacts": _facts_payload(candidate_facts),
        }
        return await self._reply("opening_reply_v1", payload)

    async def followup_reply(
        self,
        entity: CanonicalEntity,
        question: str,
        summary: str,
        candidate_facts: list[FactItem],
        recent_turns: list[ConversationTurn],
    ) -> str | None:
        """Answer ``question`` in character, with the last few turns as context."""
        instruction = FOLLOWUP_INSTRUCTION + (CHARACTER_INSTRUCTION if entity.is_character else "")
        payload = {
            "instruction": instruction,
            "entity": _entity_payload(entity),
            "question": question,
            "summary": summary,
            "candidateFacts": _facts_payload(candidate_facts),
            "recentTurns": [
                {"user": t.user_input, "assistant": t.assistant_text} for t in recent_turns
            ],
        }
        return await self._reply("followup_reply_v1", payload)

    async def _reply(self, prompt_id: str, payload: dict[str, Any]) -> str | None:
        if not self._client.is_enabled():
            return None

        system, prompt = get_prompt(prompt_id).render(payload=render_json_payload(payload))
        try:
            response = await self._client.generate_json([prompt], system_instruction=system)
        except AIClientError as e:
            logger.info(f"Reply generation ({prompt_id}) fell back: {type(e).__name__}")
            return None

        reply = response.data.get("reply") if response.parse_success else None
        if not isinstance(reply, str) or not reply.strip():
            return None
        return reply.strip()[:MAX_REPLY_CHARS]
