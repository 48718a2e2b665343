"""Tests for the ConversationTurnEngine.

The reply generator and speech service are mocks so each test controls
exactly what "the model" says.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from wondertalk.ai.generation import ReplyGenerator
from wondertalk.ai.speech import SpeechService
from wondertalk.context import AppContext
from wondertalk.core.models import (
    AnalyticsEventName,
    CanonicalEntity,
    ConversationState,
    ConversationTurn,
    FactPack,
    SafetyVerdict,
)
from wondertalk.core.moderation import (
    INPUT_PII_REDIRECT,
    OUTPUT_REDIRECT,
    SAFE_REDIRECT,
    ModerationGate,
)
from wondertalk.pipeline.conversation import (
    ANOTHER_FACT_SUGGESTION,
    ConversationNotFoundError,
    ConversationTurnEngine,
    EmptyInputError,
    combine_verdicts,
)

SESSION = "session-1"


@pytest.fixture
def generator() -> MagicMock:
    mock = MagicMock(spec=ReplyGenerator)
    mock.followup_reply = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def speech() -> MagicMock:
    mock = MagicMock(spec=SpeechService)
    mock.transcribe_from_url = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def conversation(
    app_ctx: AppContext, eiffel_entity: CanonicalEntity, fact_pack: FactPack
) -> ConversationState:
    state = ConversationState(
        session_id=SESSION,
        entity=eiffel_entity,
        fact_pack=fact_pack,
        persona=app_ctx.persona.build_persona(eiffel_entity),
        used_fact_indexes={0, 1},
    )
    app_ctx.store.conversations.set(state.conversation_id, state)
    return state


def make_engine(
    ctx: AppContext,
    generator: MagicMock,
    speech: MagicMock,
    moderation: ModerationGate | None = None,
) -> ConversationTurnEngine:
    return ConversationTurnEngine(
        store=ctx.store,
        moderation=moderation or ctx.moderation,
        persona=ctx.persona,
        generator=generator,
        synthesizer=ctx.synthesizer,
        speech=speech,
        analytics=ctx.analytics,
    )


@pytest.fixture
def engine(app_ctx: AppContext, generator: MagicMock, speech: MagicMock) -> ConversationTurnEngine:
    return make_engine(app_ctx, generator, speech)


# =============================================================================
# Verdicts
# =============================================================================


class TestCombineVerdicts:
    @pytest.mark.parametrize(
        "input_verdict,output_verdict,expected",
        [
            (SafetyVerdict.ALLOW, SafetyVerdict.ALLOW, SafetyVerdict.ALLOW),
            (SafetyVerdict.TRANSFORM, SafetyVerdict.ALLOW, SafetyVerdict.TRANSFORM),
            (SafetyVerdict.ALLOW, SafetyVerdict.TRANSFORM, SafetyVerdict.TRANSFORM),
            (SafetyVerdict.BLOCK, SafetyVerdict.TRANSFORM, SafetyVerdict.BLOCK),
        ],
    )
    def test_precedence(self, input_verdict, output_verdict, expected) -> None:
        assert combine_verdicts(input_verdict, output_verdict) is expected


# =============================================================================
# Turns
# =============================================================================


class TestChatTurn:
    def test_template_fallback_surfaces_fresh_fact(
        self,
        engine: ConversationTurnEngine,
        conversation: ConversationState,
        app_ctx: AppContext,
    ) -> None:
        result = asyncio.run(
            engine.chat_turn(SESSION, conversation.conversation_id, text="  How old are you? ")
        )

        assert result.turn.safety_verdict is SafetyVerdict.ALLOW
        assert result.turn.user_input == "How old are you?"
        assert "I was meant to stand for only 20 years." in result.turn.assistant_text
        assert result.reply_audio_stream_url is not None
        assert result.followup_suggestions[1] == ANOTHER_FACT_SUGGESTION
        assert result.followup_suggestions[2] == "Ask me how Eiffel Tower changes over time!"

        stored = app_ctx.store.conversations.get(conversation.conversation_id)
        assert stored.used_fact_indexes == {0, 1, 2}
        assert stored.turns[-1] == result.turn

    def test_model_reply_is_used_with_fresh_fact_first(
        self,
        engine: ConversationTurnEngine,
        generator: MagicMock,
        conversation: ConversationState,
        fact_pack: FactPack,
    ) -> None:
        generator.followup_reply.return_value = "I sparkle every night!"

        result = asyncio.run(
            engine.chat_turn(SESSION, conversation.conversation_id, text="Do you glow?")
        )

        assert result.turn.assistant_text == "I sparkle every night!"
        entity, question, summary, candidates, recent = generator.followup_reply.await_args.args
        assert question == "Do you glow?"
        assert candidates == [fact_pack.facts[2], fact_pack.facts[0], fact_pack.facts[1]]
        assert recent == []

    def test_recent_turns_are_capped(
        self,
        engine: ConversationTurnEngine,
        generator: MagicMock,
        conversation: ConversationState,
    ) -> None:
        for i in range(6):
            conversation.turns.append(
                ConversationTurn(
                    user_input=f"q{i}", assistant_text=f"a{i}", safety_verdict=SafetyVerdict.ALLOW
                )
            )

        asyncio.run(engine.chat_turn(SESSION, conversation.conversation_id, text="more"))
        recent = generator.followup_reply.await_args.args[4]
        assert [t.user_input for t in recent] == ["q2", "q3", "q4", "q5"]

    def test_blocked_input_skips_model(
        self,
        engine: ConversationTurnEngine,
        generator: MagicMock,
        conversation: ConversationState,
        app_ctx: AppContext,
    ) -> None:
        result = asyncio.run(
            engine.chat_turn(SESSION, conversation.conversation_id, text="how to make a bomb")
        )

        assert result.turn.safety_verdict is SafetyVerdict.BLOCK
        assert result.turn.assistant_text == SAFE_REDIRECT
        generator.followup_reply.assert_not_awaited()
        assert app_ctx.store.incidents.list()[0].reason == "blocked_topic"
        assert app_ctx.store.conversations.get(conversation.conversation_id).used_fact_indexes == {0, 1}

    def test_personal_data_is_redirected_before_the_model(
        self,
        engine: ConversationTurnEngine,
        generator: MagicMock,
        conversation: ConversationState,
    ) -> None:
        generator.followup_reply.return_value = "Let's explore iron instead!"

        result = asyncio.run(
            engine.chat_turn(
                SESSION, conversation.conversation_id, text="my email is kid@example.com"
            )
        )

        assert result.turn.safety_verdict is SafetyVerdict.TRANSFORM
        assert result.turn.user_input == INPUT_PII_REDIRECT
        assert generator.followup_reply.await_args.args[1] == INPUT_PII_REDIRECT
        assert "kid@example.com" not in result.turn.assistant_text

    def test_unsafe_model_output_is_rewritten(
        self,
        engine: ConversationTurnEngine,
        generator: MagicMock,
        conversation: ConversationState,
    ) -> None:
        generator.followup_reply.return_value = "Soldiers once hid a weapon inside me."

        result = asyncio.run(
            engine.chat_turn(SESSION, conversation.conversation_id, text="Any secrets?")
        )

        assert result.turn.safety_verdict is SafetyVerdict.TRANSFORM
        assert result.turn.assistant_text == OUTPUT_REDIRECT

    def test_relaxed_safety_keeps_model_output(
        self,
        app_ctx: AppContext,
        generator: MagicMock,
        speech: MagicMock,
        conversation: ConversationState,
    ) -> None:
        relaxed = ModerationGate(app_ctx.store.incidents, strict_safety=False)
        engine = make_engine(app_ctx, generator, speech, moderation=relaxed)
        generator.followup_reply.return_value = "Soldiers once hid a weapon inside me."

        result = asyncio.run(
            engine.chat_turn(SESSION, conversation.conversation_id, text="Any secrets?")
        )

        assert result.turn.safety_verdict is SafetyVerdict.ALLOW
        assert result.turn.assistant_text == "Soldiers once hid a weapon inside me."
        assert len(app_ctx.store.incidents.list()) == 1

    def test_voice_input_is_transcribed(
        self,
        engine: ConversationTurnEngine,
        speech: MagicMock,
        conversation: ConversationState,
    ) -> None:
        speech.transcribe_from_url.return_value = "Why are you so tall?"

        result = asyncio.run(
            engine.chat_turn(
                SESSION, conversation.conversation_id, audio_ref="https://cdn.example/a.webm"
            )
        )

        speech.transcribe_from_url.assert_awaited_once_with("https://cdn.example/a.webm")
        assert result.turn.user_input == "Why are you so tall?"

    def test_text_wins_over_audio(
        self,
        engine: ConversationTurnEngine,
        speech: MagicMock,
        conversation: ConversationState,
    ) -> None:
        asyncio.run(
            engine.chat_turn(
                SESSION, conversation.conversation_id, text="hi", audio_ref="https://cdn.example/a"
            )
        )
        speech.transcribe_from_url.assert_not_awaited()

    def test_records_analytics(
        self,
        engine: ConversationTurnEngine,
        conversation: ConversationState,
        app_ctx: AppContext,
    ) -> None:
        asyncio.run(engine.chat_turn(SESSION, conversation.conversation_id, text="hi"))
        event = app_ctx.store.analytics.list()[0]
        assert event.event_name is AnalyticsEventName.CHAT_TURN
        assert event.metadata["conversation_id"] == conversation.conversation_id
        assert event.metadata["verdict"] == "allow"


class TestChatTurnErrors:
    def test_unknown_conversation(self, engine: ConversationTurnEngine) -> None:
        with pytest.raises(ConversationNotFoundError):
            asyncio.run(engine.chat_turn(SESSION, "missing", text="hi"))

    def test_other_sessions_conversation(
        self, engine: ConversationTurnEngine, conversation: ConversationState
    ) -> None:
        with pytest.raises(ConversationNotFoundError):
            asyncio.run(engine.chat_turn("someone-else", conversation.conversation_id, text="hi"))

    def test_empty_input(
        self, engine: ConversationTurnEngine, conversation: ConversationState
    ) -> None:
        with pytest.raises(EmptyInputError):
            asyncio.run(engine.chat_turn(SESSION, conversation.conversation_id, text="   "))

    def test_untranscribable_audio(
        self, engine: ConversationTurnEngine, conversation: ConversationState
    ) -> None:
        with pytest.raises(EmptyInputError):
            asyncio.run(
                engine.chat_turn(
                    SESSION, conversation.conversation_id, audio_ref="https://cdn.example/a"
                )
            )

    def test_rejected_turn_is_not_stored(
        self,
        engine: ConversationTurnEngine,
        conversation: ConversationState,
        app_ctx: AppContext,
    ) -> None:
        with pytest.raises(EmptyInputError):
            asyncio.run(engine.chat_turn(SESSION, conversation.conversation_id, text=""))
        assert app_ctx.store.conversations.get(conversation.conversation_id).turns == []
