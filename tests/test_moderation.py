"""Tests for the ModerationGate.

Covers input, output and image-label channels, strict vs relaxed safety,
and incident recording.
"""

from __future__ import annotations

import logging

import pytest

from wondertalk.config import VoiceConfig
from wondertalk.core.models import SafetyVerdict
from wondertalk.core.moderation import (
    INPUT_PII_REDIRECT,
    MYSTERY_LABEL,
    OUTPUT_REDIRECT,
    SAFE_REDIRECT,
    ModerationGate,
    find_blocked_topic,
    find_pii,
)
from wondertalk.core.store import Store
from wondertalk.services.admin import AdminService, PolicyUpdate


@pytest.fixture
def gate(store: Store) -> ModerationGate:
    return ModerationGate(store.incidents, strict_safety=True)


# =============================================================================
# Pattern Helpers
# =============================================================================


class TestPatterns:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("write to me at kid@example.com", "email"),
            ("my number is 555-123-4567", "phone"),
            ("I live at 42 Maple Street", "street_address"),
            ("how tall is the tower?", None),
        ],
    )
    def test_find_pii(self, text: str, expected: str | None) -> None:
        assert find_pii(text) == expected

    def test_find_blocked_topic_uses_word_boundaries(self) -> None:
        assert find_blocked_topic("is that a weapon?") == "weapon"
        assert find_blocked_topic("Skill and drills") is None


# =============================================================================
# Input Channel
# =============================================================================


class TestModerateInput:
    def test_clean_input_is_allowed(self, gate: ModerationGate, store: Store) -> None:
        result = gate.moderate_input("s1", "Why is the tower so tall?")
        assert result.verdict is SafetyVerdict.ALLOW
        assert result.transformed_text is None
        assert store.incidents.list() == []

    def test_pii_is_transformed(self, gate: ModerationGate, store: Store) -> None:
        result = gate.moderate_input("s1", "my email is kid@example.com")
        assert result.verdict is SafetyVerdict.TRANSFORM
        assert result.transformed_text == INPUT_PII_REDIRECT
        assert result.reasons == ["personal_data"]

        incidents = store.incidents.list()
        assert len(incidents) == 1
        assert incidents[0].session_id == "s1"
        assert incidents[0].reason == "personal_data"

    def test_blocked_topic_is_blocked(self, gate: ModerationGate, store: Store) -> None:
        result = gate.moderate_input("s1", "how to make a bomb")
        assert result.verdict is SafetyVerdict.BLOCK
        assert result.transformed_text == SAFE_REDIRECT
        assert store.incidents.list()[0].reason == "blocked_topic"

    def test_blocked_topics_policy_is_display_only(
        self, gate: ModerationGate, store: Store
    ) -> None:
        admin = AdminService(store.policy, store.incidents, VoiceConfig())
        admin.update_policy(PolicyUpdate(blocked_topics=["volcanoes"]))

        assert gate.moderate_input("s1", "how to make a bomb").verdict is SafetyVerdict.BLOCK
        assert gate.moderate_input("s1", "tell me about volcanoes").verdict is SafetyVerdict.ALLOW

    def test_blank_input_is_allowed(self, gate: ModerationGate) -> None:
        assert gate.moderate_input("s1", "   ").verdict is SafetyVerdict.ALLOW


# =============================================================================
# Output Channel
# =============================================================================


class TestModerateOutput:
    def test_strict_rewrites_blocked_topic(self, gate: ModerationGate, store: Store) -> None:
        result = gate.moderate_output("s1", "Knights used a weapon called a lance.")
        assert result.verdict is SafetyVerdict.TRANSFORM
        assert result.transformed_text == OUTPUT_REDIRECT
        assert store.incidents.list()[0].reason == "output:blocked_topic"

    def test_relaxed_delivers_blocked_topic_with_warning(
        self, store: Store, caplog: pytest.LogCaptureFixture
    ) -> None:
        gate = ModerationGate(store.incidents, strict_safety=False)
        with caplog.at_level(logging.WARNING, logger="wondertalk.core.moderation"):
            result = gate.moderate_output("s1", "Knights used a weapon called a lance.")

        assert result.verdict is SafetyVerdict.ALLOW
        assert result.transformed_text is None
        assert result.reasons == ["blocked_topic"]
        assert len(store.incidents.list()) == 1
        assert any("Relaxed safety" in r.message for r in caplog.records)

    def test_pii_is_rewritten_even_when_relaxed(self, store: Store) -> None:
        gate = ModerationGate(store.incidents, strict_safety=False)
        result = gate.moderate_output("s1", "Call me at 555-123-4567!")
        assert result.verdict is SafetyVerdict.TRANSFORM
        assert result.transformed_text == OUTPUT_REDIRECT

    def test_clean_output_is_allowed(self, gate: ModerationGate) -> None:
        result = gate.moderate_output("s1", "I grow taller in summer!")
        assert result.allowed


# =============================================================================
# Image Label Channel
# =============================================================================


class TestModerateImageLabel:
    def test_flagged_label_becomes_mystery(self, gate: ModerationGate, store: Store) -> None:
        result = gate.moderate_image_label("s1", "antique weapon display")
        assert result.verdict is SafetyVerdict.BLOCK
        assert result.transformed_text == MYSTERY_LABEL
        assert store.incidents.list()[0].reason == "image:blocked_topic"

    def test_normal_label_is_allowed(self, gate: ModerationGate) -> None:
        assert gate.moderate_image_label("s1", "Eiffel Tower").allowed
