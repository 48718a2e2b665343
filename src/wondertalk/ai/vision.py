"""Entity Resolver - from photo bytes to a canonical, speakable entity.

Detection runs as a provider chain:

1. Gemini multimodal labeling (strict JSON, hard timeout)
2. Filename heuristics, which never fail and end at "mystery object"

The detected label then goes through identity resolution. A photo of
"Bust of Alexander the Great" should talk as Alexander, not as a lump of
marble, so depiction wording (bust, statue, portrait...) is recognised and
the depicted person's name extracted. When Gemini is available a second,
strictly validated call may refine that decision; anything it returns that
does not sanitise cleanly is ignored.

Example:
    >>> resolver = EntityResolver(client, identity_refinement=True)
    >>> entity = await resolver.detect_entity(jpeg_bytes, "image/jpeg", "bust.jpg")
    >>> entity.roleplay_mode, entity.roleplay_name
    (<RoleplayMode.AS_CHARACTER: 'as_character'>, 'Alexander the Great')
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from wondertalk.ai.chain import Provider, run_chain
from wondertalk.ai.client import AIClientError, GeminiClient, image_part
from wondertalk.ai.fallback import (
    HEURISTIC_CONFIDENCE,
    MYSTERY_LABEL,
    category_from_label,
    label_from_filename,
)
from wondertalk.ai.prompts import get_prompt
from wondertalk.core.models import CanonicalEntity, EntityCategory, RoleplayMode
from wondertalk.core.persona import DEPICTION_WORDS
from wondertalk.utils.text import clamp, slugify

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 140
DEFAULT_VISION_CONFIDENCE = 0.5

DEPICTION_PATTERN = re.compile(rf"\b{DEPICTION_WORDS}\b", re.IGNORECASE)
# "Marble bust of Alexander the Great"
_OF_SHAPE = re.compile(rf"^.*?\b{DEPICTION_WORDS}\s+of\s+(?P<subject>.+)$", re.IGNORECASE)
# "Abraham Lincoln statue"
_SUFFIX_SHAPE = re.compile(rf"^(?P<subject>.+?)\s+{DEPICTION_WORDS}$", re.IGNORECASE)
_LEADING_THE = re.compile(r"^the\s+", re.IGNORECASE)
_TRAILING_PUNCT = re.compile(r"[\s.,;:!?\"'()\[\]-]+$")
_LEADING_PUNCT = re.compile(r"^[\s.,;:!?\"'()\[\]-]+")
_WHITESPACE = re.compile(r"\s+")


# =============================================================================
# Identity Resolution
# =============================================================================


@dataclass(frozen=True)
class IdentityResolution:
    canonical_label: str
    research_subject: str
    roleplay_name: str
    roleplay_mode: RoleplayMode


@dataclass(frozen=True)
class VisionLabel:
    label: str
    category: EntityCategory
    confidence: float


@dataclass(frozen=True)
class VisionRequest:
    image_bytes: bytes
    mime_type: str
    filename_hint: str | None = None


def sanitize_name(raw: str | None) -> str | None:
    """Normalise a candidate name.

    Strips a leading "the", surrounding punctuation and repeated whitespace.

    Returns:
        The cleaned name, or None when it is empty or longer than 140 characters.
    """
    if not raw or not isinstance(raw, str):
        return None
    name = _WHITESPACE.sub(" ", raw).strip()
    name = _LEADING_PUNCT.sub("", name)
    name = _TRAILING_PUNCT.sub("", name)
    name = _LEADING_THE.sub("", name).strip()
    if not name or len(name) > MAX_NAME_LENGTH:
        return None
    return name


def has_depiction_wording(text: str) -> bool:
    return bool(DEPICTION_PATTERN.search(text))


def extract_depicted_subject(label: str) -> str | None:
    """Pull the depicted person's name out of a depiction label.

    Tries "<depiction> of <subject>" first, then "<subject> <depiction>".
    The result must sanitise cleanly and contain no depiction wording.
    """
    for shape in (_OF_SHAPE, _SUFFIX_SHAPE):
        match = shape.match(label.strip())
        if not match:
            continue
        subject = sanitize_name(match.group("subject"))
        if subject and not has_depiction_wording(subject):
            return subject
    return None


def resolve_identity_heuristic(detected_label: str, category: EntityCategory) -> IdentityResolution:
    """Decide object-vs-character from the label alone."""
    label = sanitize_name(detected_label) or detected_label.strip() or MYSTERY_LABEL

    if category is EntityCategory.STATUE or has_depiction_wording(label):
        subject = extract_depicted_subject(label)
        if subject:
            return IdentityResolution(
                canonical_label=subject,
                research_subject=subject,
                roleplay_name=subject,
                roleplay_mode=RoleplayMode.AS_CHARACTER,
            )

    return IdentityResolution(
        canonical_label=label,
        research_subject=label,
        roleplay_name=label,
        roleplay_mode=RoleplayMode.AS_OBJECT,
    )


def parse_identity_refinement(data: dict) -> IdentityResolution | None:
    """Validate a model's identity answer; None means "don't trust it"."""
    mode_raw = str(data.get("roleplayMode", "")).strip().lower()
    try:
        mode = RoleplayMode(mode_raw)
    except ValueError:
        return None

    if mode is RoleplayMode.AS_CHARACTER:
        name = sanitize_name(data.get("roleplayName"))
        if not name or has_depiction_wording(name):
            return None
        subject = sanitize_name(data.get("researchSubject")) or name
        label = sanitize_name(data.get("canonicalLabel")) or name
        if has_depiction_wording(subject) or has_depiction_wording(label):
            return None
        return IdentityResolution(
            canonical_label=label,
            research_subject=subject,
            roleplay_name=name,
            roleplay_mode=mode,
        )

    label = sanitize_name(data.get("canonicalLabel"))
    if not label:
        return None
    return IdentityResolution(
        canonical_label=label,
        research_subject=sanitize_name(data.get("researchSubject")) or label,
        roleplay_name=sanitize_name(data.get("roleplayName")) or label,
        roleplay_mode=mode,
    )


def build_entity(
    detected_label: str,
    category: EntityCategory,
    confidence: float,
    identity: IdentityResolution,
) -> CanonicalEntity:
    return CanonicalEntity(
        entity_id=f"entity-{slugify(identity.canonical_label) or 'mystery-object'}",
        label=identity.canonical_label,
        detected_label=detected_label,
        category=category,
        confidence=clamp(confidence),
        research_subject=identity.research_subject,
        roleplay_name=identity.roleplay_name,
        roleplay_mode=identity.roleplay_mode,
    )


def mystery_entity(detected_label: str = MYSTERY_LABEL, confidence: float = 0.2) -> CanonicalEntity:
    """The entity used when a label is unusable or unsafe."""
    return CanonicalEntity(
        entity_id="entity-mystery-object",
        label=MYSTERY_LABEL,
        detected_label=detected_label,
        category=EntityCategory.OTHER,
        confidence=confidence,
        research_subject=MYSTERY_LABEL,
        roleplay_name=MYSTERY_LABEL,
        roleplay_mode=RoleplayMode.AS_OBJECT,
    )


# =============================================================================
# Detection Providers
# =============================================================================


class GeminiVisionProvider(Provider[VisionRequest, VisionLabel]):
    name = "gemini"

    def __init__(self, client: GeminiClient) -> None:
        self._client = client

    def is_enabled(self) -> bool:
        return self._client.is_enabled()

    async def attempt(self, payload: VisionRequest) -> VisionLabel | None:
        system, prompt = get_prompt("vision_label_v1").render()
        try:
            response = await self._client.generate_json(
                [prompt, image_part(payload.image_bytes, payload.mime_type)],
                system_instruction=system,
            )
        except AIClientError as e:
            logger.info(f"Vision labeling unavailable ({type(e).__name__}), using heuristics")
            return None

        if not response.parse_success:
            return None
        label = response.data.get("label")
        if not isinstance(label, str) or not label.strip():
            return None

        category = EntityCategory.parse(response.data.get("category")) or category_from_label(label)
        try:
            confidence = float(response.data.get("confidence", DEFAULT_VISION_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = DEFAULT_VISION_CONFIDENCE
        return VisionLabel(label=label.strip(), category=category, confidence=clamp(confidence))


class HeuristicVisionProvider(Provider[VisionRequest, VisionLabel]):
    """Keyword guess from the filename; always produces a label."""

    name = "heuristic"

    async def attempt(self, payload: VisionRequest) -> VisionLabel:
        label = label_from_filename(payload.filename_hint)
        return VisionLabel(
            label=label,
            category=category_from_label(label),
            confidence=HEURISTIC_CONFIDENCE,
        )


# =============================================================================
# Resolver
# =============================================================================


class EntityResolver:
    """Detects what a photo shows and resolves who it speaks as.

    Args:
        client: Gemini client (may be disabled).
        identity_refinement: Allow the second model call for identity.
        providers: Override the detection chain (tests).
    """

    def __init__(
        self,
        client: GeminiClient,
        identity_refinement: bool = True,
        providers: list[Provider[VisionRequest, VisionLabel]] | None = None,
    ) -> None:
        self._client = client
        self._identity_refinement = identity_refinement
        self._providers = providers or [GeminiVisionProvider(client), HeuristicVisionProvider()]

    async def detect_entity(
        self,
        image_bytes: bytes,
        mime_type: str,
        filename_hint: str | None = None,
    ) -> CanonicalEntity:
        """Label the photo and resolve its identity. Never raises."""
        outcome = await run_chain(
            self._providers, VisionRequest(image_bytes, mime_type, filename_hint)
        )
        if outcome is None:
            return mystery_entity(confidence=HEURISTIC_CONFIDENCE)

        detected = outcome.result
        identity = await self.resolve_identity(detected.label, detected.category)
        entity = build_entity(detected.label, detected.category, detected.confidence, identity)
        logger.info(
            f"Detected {entity.entity_id} via {outcome.provider} "
            f"({entity.roleplay_mode.value}, confidence {entity.confidence:.2f})"
        )
        return entity

    async def resolve_identity(
        self, detected_label: str, category: EntityCategory
    ) -> IdentityResolution:
        """Heuristic identity, optionally refined by a validated model answer."""
        heuristic = resolve_identity_heuristic(detected_label, category)

        if not (self._identity_refinement and self._client.is_enabled()):
            return heuristic

        system, prompt = get_prompt("identity_refinement_v1").render(
            detected_label=detected_label, category=category.value
        )
        try:
            response = await self._client.generate_json([prompt], system_instruction=system)
        except AIClientError as e:
            logger.debug(f"Identity refinement skipped: {type(e).__name__}")
            return heuristic

        if not response.parse_success:
            return heuristic
        refined = parse_identity_refinement(response.data)
        if refined is None:
            logger.debug(f"Rejected identity refinement for {detected_label!r}")
            return heuristic
        return refined
