"""Moderation Gate - pattern-based safety checks on every text boundary.

Three channels are checked:

1. Input: what the child typed or said, before it reaches a model.
2. Output: what a model (or a template) is about to say back.
3. Image label: what the vision step thinks the photo shows.

Each check tests the text against personal-data patterns first and a
blocked-topic list second, and every outcome other than ``allow`` leaves an
incident record for the parent dashboard. This is a best-effort filter, not a
classifier; it errs towards false positives.

Example:
    >>> gate = ModerationGate(store.incidents, strict_safety=True)
    >>> gate.moderate_input("session-1", "how to make a bomb").verdict
    <SafetyVerdict.BLOCK: 'block'>
"""

from __future__ import annotations

import logging
import re

from wondertalk.core.models import IncidentItem, ModerationResult, SafetyVerdict
from wondertalk.core.store import AppendLog
from wondertalk.utils.text import sanitize_for_logs, truncate

logger = logging.getLogger(__name__)


# =============================================================================
# Patterns
# =============================================================================

PII_PATTERNS: dict[str, re.Pattern[str]] = {
    "email": re.compile(r"[\w.+-]+@[\w.-]+\.[A-Za-z]{2,}"),
    "phone": re.compile(r"\b(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    "street_address": re.compile(
        r"\b\d{1,5}\s+[\w\s]+(?:st|street|ave|avenue|blvd|boulevard|rd|road|ln|lane|dr|drive)\b",
        re.IGNORECASE,
    ),
}

BLOCKED_TOPIC_PATTERNS: dict[str, re.Pattern[str]] = {
    "kill": re.compile(r"\bkill\b", re.IGNORECASE),
    "weapon": re.compile(r"\bweapon\b", re.IGNORECASE),
    "suicide": re.compile(r"\bsuicide\b", re.IGNORECASE),
    "sexual": re.compile(r"\bsexual\b", re.IGNORECASE),
    "porn": re.compile(r"\bporn\b", re.IGNORECASE),
    "bomb_making": re.compile(r"\bhow to make (?:a )?bomb\b", re.IGNORECASE),
    "drug": re.compile(r"\bdrug\b", re.IGNORECASE),
    "address_request": re.compile(r"\bgive me your address\b", re.IGNORECASE),
    "phone_request": re.compile(r"\bphone number\b", re.IGNORECASE),
    "email_request": re.compile(r"\bemail\b", re.IGNORECASE),
    "password": re.compile(r"\bpassword\b", re.IGNORECASE),
}

REASON_PERSONAL_DATA = "personal_data"
REASON_BLOCKED_TOPIC = "blocked_topic"

INPUT_PII_REDIRECT = "Let's skip personal details and explore science or history instead!"
SAFE_REDIRECT = (
    "I can't help with that topic. But I can share a cool, safe fact and ask a "
    "curiosity question instead."
)
OUTPUT_REDIRECT = (
    "I found a safer way to explain this. Let's stay on kid-friendly science and discovery!"
)
MYSTERY_LABEL = "mystery object"


def find_pii(text: str) -> str | None:
    """Return the name of the first personal-data pattern found in ``text``."""
    for name, pattern in PII_PATTERNS.items():
        if pattern.search(text):
            return name
    return None


def find_blocked_topic(text: str) -> str | None:
    """Return the name of the first blocked-topic pattern found in ``text``."""
    for name, pattern in BLOCKED_TOPIC_PATTERNS.items():
        if pattern.search(text):
            return name
    return None


# =============================================================================
# Gate
# =============================================================================


class ModerationGate:
    """Applies the safety patterns and records incidents.

    Attributes:
        strict_safety: When False, a blocked topic in output is let through as
            ``allow`` (still recorded as an incident and logged as a warning).
    """

    def __init__(self, incidents: AppendLog[IncidentItem], strict_safety: bool = True) -> None:
        self._incidents = incidents
        self.strict_safety = strict_safety

    def moderate_input(self, session_id: str, text: str) -> ModerationResult:
        """Check what the user said before it goes anywhere near a model."""
        trimmed = text.strip()
        if not trimmed:
            return ModerationResult(verdict=SafetyVerdict.ALLOW)

        pii = find_pii(trimmed)
        if pii:
            self._record(session_id, REASON_PERSONAL_DATA, trimmed, matched=pii)
            return ModerationResult(
                verdict=SafetyVerdict.TRANSFORM,
                reasons=[REASON_PERSONAL_DATA],
                transformed_text=INPUT_PII_REDIRECT,
            )

        topic = find_blocked_topic(trimmed)
        if topic:
            self._record(session_id, REASON_BLOCKED_TOPIC, trimmed, matched=topic)
            return ModerationResult(
                verdict=SafetyVerdict.BLOCK,
                reasons=[REASON_BLOCKED_TOPIC],
                transformed_text=SAFE_REDIRECT,
            )

        return ModerationResult(verdict=SafetyVerdict.ALLOW)

    def moderate_output(self, session_id: str, text: str) -> ModerationResult:
        """Check a reply before it is spoken.

        Personal data is always rewritten. A blocked topic is rewritten under
        strict safety; in relaxed mode the reply passes with the reason kept.
        """
        trimmed = text.strip()
        if not trimmed:
            return ModerationResult(verdict=SafetyVerdict.ALLOW)

        pii = find_pii(trimmed)
        if pii:
            self._record(session_id, f"output:{REASON_PERSONAL_DATA}", trimmed, matched=pii)
            return ModerationResult(
                verdict=SafetyVerdict.TRANSFORM,
                reasons=[REASON_PERSONAL_DATA],
                transformed_text=OUTPUT_REDIRECT,
            )

        topic = find_blocked_topic(trimmed)
        if topic:
            self._record(session_id, f"output:{REASON_BLOCKED_TOPIC}", trimmed, matched=topic)
            if self.strict_safety:
                return ModerationResult(
                    verdict=SafetyVerdict.TRANSFORM,
                    reasons=[REASON_BLOCKED_TOPIC],
                    transformed_text=OUTPUT_REDIRECT,
                )
            logger.warning(
                f"Relaxed safety: delivering output that matched '{topic}' "
                f"(session {session_id})"
            )
            return ModerationResult(verdict=SafetyVerdict.ALLOW, reasons=[REASON_BLOCKED_TOPIC])

        return ModerationResult(verdict=SafetyVerdict.ALLOW)

    def moderate_image_label(self, session_id: str, label: str) -> ModerationResult:
        """Check the vision label; anything flagged becomes a mystery object."""
        trimmed = label.strip()
        if not trimmed:
            return ModerationResult(verdict=SafetyVerdict.ALLOW)

        pii = find_pii(trimmed)
        reason = REASON_PERSONAL_DATA if pii else None
        matched = pii
        if reason is None:
            matched = find_blocked_topic(trimmed)
            reason = REASON_BLOCKED_TOPIC if matched else None

        if reason is None:
            return ModerationResult(verdict=SafetyVerdict.ALLOW)

        self._record(session_id, f"image:{reason}", trimmed, matched=matched)
        return ModerationResult(
            verdict=SafetyVerdict.BLOCK,
            reasons=[reason],
            transformed_text=MYSTERY_LABEL,
        )

    def _record(self, session_id: str, reason: str, payload: str, matched: str | None) -> None:
        self._incidents.append(IncidentItem(session_id=session_id, reason=reason, payload=payload))
        logger.info(
            f"Moderation incident {reason} ({matched}) for session {session_id}: "
            f"{truncate(sanitize_for_logs(payload), 60)!r}"
        )
