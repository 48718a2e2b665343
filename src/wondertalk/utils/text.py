"""Small text helpers shared across the pipeline."""

from __future__ import annotations

import json
import re
from typing import Any

_JSON_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_EMAIL = re.compile(r"[\w.+-]+@[\w.-]+\.[A-Za-z]{2,}")
_PHONE = re.compile(r"\b(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp ``value`` into ``[low, high]``."""
    if value < low:
        return low
    if value > high:
        return high
    return value


def slugify(text: str) -> str:
    """Lowercase ``text`` and collapse every non-alphanumeric run into ``-``.

    Example:
        >>> slugify("Golden Gate Bridge!")
        'golden-gate-bridge'
    """
    return _NON_ALNUM.sub("-", text.lower()).strip("-")


def sanitize_for_logs(text: str) -> str:
    """Mask email addresses and phone numbers before text is logged."""
    text = _EMAIL.sub("[redacted-email]", text)
    return _PHONE.sub("[redacted-phone]", text)


def truncate(text: str, limit: int = 80) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def extract_json_object(raw: str) -> dict[str, Any] | None:
    """Pull a JSON object out of a model reply.

    Tries, in order: the whole text, a fenced ```json block, then the span
    between the first ``{`` and the last ``}``.

    Args:
        raw: Raw model text.

    Returns:
        The parsed object, or None when nothing parses to a dict.
    """
    text = raw.strip()
    if not text:
        return None

    candidates = [text]
    block = _JSON_BLOCK.search(text)
    if block:
        candidates.append(block.group(1))
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
