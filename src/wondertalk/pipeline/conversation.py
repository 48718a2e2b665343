"""Conversation Turn Engine - one follow-up exchange with the discovered entity.

A turn takes the child's text (or a voice recording), moderates it, asks the
model for an in-character answer grounded in a fresh fact, moderates the
answer, appends the turn and voices it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from wondertalk.ai.generation import ReplyGenerator
from wondertalk.ai.speech import SpeechService
from wondertalk.core.models import (
    AnalyticsEventName,
    ConversationTurn,
    FactItem,
    SafetyVerdict,
    utcnow,
)
from wondertalk.core.moderation import SAFE_REDIRECT, ModerationGate
from wondertalk.core.persona import PersonaEngine
from wondertalk.core.store import Store
from wondertalk.services.analytics import AnalyticsTracker
from wondertalk.voice.synthesizer import VoiceSynthesizer

logger = logging.getLogger(__name__)

RECENT_TURN_LIMIT = 4
EXTRA_CANDIDATE_FACTS = 2
ANOTHER_FACT_SUGGESTION = "Want another surprising fact?"


class ConversationError(Exception):
    """Base class for rejected chat turns."""

    pass


class ConversationNotFoundError(ConversationError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")


class EmptyInputError(ConversationError):
    def __init__(self) -> None:
        super().__init__("No user input provided")


@dataclass(frozen=True)
class ChatTurnResult:
    turn: ConversationTurn
    reply_audio_stream_url: str | None = None
    followup_suggestions: list[str] = field(default_factory=list)


def combine_verdicts(input_verdict: SafetyVerdict, output_verdict: SafetyVerdict) -> SafetyVerdict:
    """A blocked input wins, then any transform, then allow."""
    if input_verdict is SafetyVerdict.BLOCK:
        return SafetyVerdict.BLOCK
    if SafetyVerdict.TRANSFORM in (input_verdict, output_verdict):
        return SafetyVerdict.TRANSFORM
    return SafetyVerdict.ALLOW


class ConversationTurnEngine:
    def __init__(
        self,
        store: Store,
        moderation: ModerationGate,
        persona: PersonaEngine,
        generator: ReplyGenerator,
        synthesizer: VoiceSynthesizer,
        speech: SpeechService,
        analytics: AnalyticsTracker,
    ) -> None:
        self._store = store
        self._moderation = moderation
        self._persona = persona
        self._generator = generator
        self._synthesizer = synthesizer
        self._speech = speech
        self._analytics = analytics

    async def chat_turn(
        self,
        session_id: str,
        conversation_id: str,
        text: str | None = None,
        audio_ref: str | None = None,
    ) -> ChatTurnResult:
        """Run one turn of the conversation.

        Args:
            session_id: Session that owns the conversation.
            conversation_id: Conversation to continue.
            text: Typed input; wins over ``audio_ref`` when non-empty.
            audio_ref: URL of a voice recording to transcribe.

        Returns:
            The stored turn, its audio URL (if any) and follow-up suggestions.

        Raises:
            ConversationNotFoundError: Unknown id or owned by another session.
            EmptyInputError: Nothing typed and nothing transcribed.
        """
        conversation = self._store.conversations.get(conversation_id)
        if conversation is None or conversation.session_id != session_id:
            raise ConversationNotFoundError(conversation_id)

        user_text = (text or "").strip()
        if not user_text and audio_ref:
            user_text = (await self._speech.transcribe_from_url(audio_ref) or "").strip()
        if not user_text:
            raise EmptyInputError()

        input_check = self._moderation.moderate_input(session_id, user_text)
        safe_input = input_check.transformed_text or user_text

        if input_check.verdict is SafetyVerdict.BLOCK:
            reply_text = input_check.transformed_text or SAFE_REDIRECT
            output_verdict = SafetyVerdict.ALLOW
        else:
            fact_pack = conversation.fact_pack
            fresh = self._persona.pick_fresh_fact(fact_pack, conversation.used_fact_indexes)
            candidates: list[FactItem] = [f for f in [fresh] if f is not None]
            candidates += [f for f in fact_pack.facts[:EXTRA_CANDIDATE_FACTS] if f is not fresh]

            draft = await self._generator.followup_reply(
                conversation.entity,
                safe_input,
                fact_pack.summary,
                candidates,
                conversation.recent_turns(RECENT_TURN_LIMIT),
            )
            if draft is None:
                draft = self._persona.build_fallback_reply(
                    fact_pack, safe_input, conversation.used_fact_indexes, fact=fresh
                )

            output_check = self._moderation.moderate_output(session_id, draft)
            reply_text = output_check.transformed_text or draft
            output_verdict = output_check.verdict

        verdict = combine_verdicts(input_check.verdict, output_verdict)
        turn = ConversationTurn(
            user_input=safe_input, assistant_text=reply_text, safety_verdict=verdict
        )
        conversation.turns.append(turn)
        conversation.updated_at = utcnow()
        self._store.conversations.set(conversation_id, conversation)

        voice = await self._synthesizer.synthesize_to_asset(
            reply_text, conversation.persona.voice_archetype
        )
        self._analytics.track(
            AnalyticsEventName.CHAT_TURN,
            session_id,
            conversation_id=conversation_id,
            verdict=verdict.value,
            has_audio=voice is not None,
        )
        logger.debug(f"Turn {turn.turn_id} in {conversation_id}: {verdict.value}")

        return ChatTurnResult(
            turn=turn,
            reply_audio_stream_url=voice.stream_url if voice else None,
            followup_suggestions=[
                self._persona.get_curiosity_question(conversation.entity),
                ANOTHER_FACT_SUGGESTION,
                f"Ask me how {conversation.entity.roleplay_name} changes over time!",
            ],
        )
