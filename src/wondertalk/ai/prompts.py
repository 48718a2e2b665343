"""Centralized prompt templates for WonderTalk.

This module is the SINGLE SOURCE of every prompt sent to Gemini. Each template
pairs a system instruction with a user prompt using ``string.Template``
placeholders (``$label``), and declares which variables it needs.

Example:
    >>> from wondertalk.ai.prompts import get_prompt
    >>> template = get_prompt("fact_research_v1")
    >>> system, user = template.render(label="Eiffel Tower", category="landmark",
    ...                                allowed_domains="nasa.gov, britannica.com")
    >>> response = await client.generate_json([user], system_instruction=system)
"""

from __future__ import annotations

import json
import textwrap
from dataclasses import dataclass, field
from enum import Enum
from string import Template
from typing import Any


class PromptCategory(str, Enum):
    VISION = "vision"
    IDENTITY = "identity"
    RESEARCH = "research"
    REPLY = "reply"
    TRANSCRIPTION = "transcription"


@dataclass
class PromptTemplate:
    """Metadata and content for a prompt template.

    Attributes:
        id: Unique identifier (e.g., "vision_label_v1").
        category: Type of prompt for filtering.
        version: Version string for tracking changes.
        system_instruction: Role and behavior instructions for the model.
        user_prompt_template: User prompt with ``$placeholder`` variables.
        required_variables: Variables that MUST be provided to ``render``.
    """

    id: str
    category: PromptCategory
    version: str
    system_instruction: str
    user_prompt_template: str
    required_variables: set[str] = field(default_factory=set)
    description: str = ""

    def render(self, **variables: Any) -> tuple[str, str]:
        """Render the template.

        Returns:
            Tuple of (system_instruction, rendered_user_prompt).

        Raises:
            ValueError: If required variables are missing.
        """
        missing = sorted(self.required_variables - set(variables))
        if missing:
            raise ValueError(f"Missing required variables for prompt '{self.id}': {missing}")
        rendered = Template(self.user_prompt_template).safe_substitute(variables)
        return self.system_instruction, rendered


# =============================================================================
# Templates
# =============================================================================

VISION_LABEL_PROMPT = PromptTemplate(
    id="vision_label_v1",
    category=PromptCategory.VISION,
    version="1.0.0",
    system_instruction="You classify image subjects for children and return only valid JSON.",
    user_prompt_template=(
        "Identify the main object in this image for a child-friendly educational app. "
        "Return strict JSON: {label, category, confidence, alternatives:[{label,confidence}]}. "
        "category must be one of landmark,nature,statue,electronics,science,animal,other. "
        "If the object is a bust, statue or portrait of a known person, say so in the label "
        '(for example "Bust of Julius Caesar").'
    ),
    description="Label the main subject of a photo.",
)

IDENTITY_REFINEMENT_PROMPT = PromptTemplate(
    id="identity_refinement_v1",
    category=PromptCategory.IDENTITY,
    version="1.0.0",
    system_instruction=(
        "You resolve what a photographed object is and who it depicts. Return only valid JSON."
    ),
    user_prompt_template=textwrap.dedent(
        """\
        A vision model labeled a photo as "$detected_label" (category: $category).
        Decide whether the conversation should speak as the object itself or as the
        real person the object depicts.

        Return strict JSON:
        {"canonicalLabel": string, "researchSubject": string, "roleplayName": string,
         "roleplayMode": "as_object" | "as_character"}

        Rules:
        - Use "as_character" only for a bust, statue, sculpture, portrait or painting
          of a specific, named, real person.
        - For "as_character", every name field is the person's name alone, without
          words like bust, statue, sculpture, portrait, painting or figure.
        - For "as_object", canonicalLabel is the object's common name.
        - Names are at most 140 characters."""
    ),
    required_variables={"detected_label", "category"},
)

FACT_RESEARCH_PROMPT = PromptTemplate(
    id="fact_research_v1",
    category=PromptCategory.RESEARCH,
    version="1.0.0",
    system_instruction=(
        "You are a rigorous research assistant. Verify claims and include citation URLs "
        "in each fact."
    ),
    user_prompt_template=textwrap.dedent(
        """\
        Research $label ($category) for children ages 7-10.
        Return strict JSON with: {summary, facts:[{claim, confidence, sourceUrls, freshnessDate}]}
        Rules:
        - Provide 4 to 6 highly interesting facts.
        - Use concise language that can be spoken.
        - Include only trustworthy educational sources.
        - Prefer these domains when possible: $allowed_domains.
        - confidence between 0 and 1.$character_note"""
    ),
    required_variables={"label", "category", "allowed_domains"},
)

OPENING_REPLY_PROMPT = PromptTemplate(
    id="opening_reply_v1",
    category=PromptCategory.REPLY,
    version="1.0.0",
    system_instruction="Return strict JSON: {reply}",
    user_prompt_template="$payload",
    required_variables={"payload"},
    description="First spoken reply after a photo is analyzed.",
)

FOLLOWUP_REPLY_PROMPT = PromptTemplate(
    id="followup_reply_v1",
    category=PromptCategory.REPLY,
    version="1.0.0",
    system_instruction="Return strict JSON: {reply}",
    user_prompt_template="$payload",
    required_variables={"payload"},
    description="Answer a follow-up question inside a conversation.",
)

TRANSCRIPTION_PROMPT = PromptTemplate(
    id="transcription_v1",
    category=PromptCategory.TRANSCRIPTION,
    version="1.0.0",
    system_instruction="You are a transcription assistant. Return only JSON.",
    user_prompt_template=(
        "Transcribe this speech from a child into clean English text. Return strict JSON {text}."
    ),
)

OPENING_INSTRUCTION = (
    "Speak in first person as the discovered entity to a child age 7-10. Start with the "
    "hook, share two of the candidate facts in your own words, stay kid-safe and "
    "wonder-driven, keep it under 90 words, and end with one curiosity question."
)

FOLLOWUP_INSTRUCTION = (
    "Answer in first-person as the object for a child age 7-10. Keep it kid-safe, "
    "wonder-driven, and under 80 words. End with one curiosity question."
)

CHARACTER_INSTRUCTION = (
    " You are the real person, not the artwork: never call yourself a bust, statue, "
    "sculpture or portrait."
)


# =============================================================================
# Registry
# =============================================================================

PROMPT_REGISTRY: dict[str, PromptTemplate] = {}


def register_prompt(template: PromptTemplate) -> None:
    """Register a prompt template in the global registry.

    Raises:
        ValueError: If a prompt with the same ID is already registered.
    """
    if template.id in PROMPT_REGISTRY:
        raise ValueError(f"Prompt '{template.id}' is already registered")
    PROMPT_REGISTRY[template.id] = template


def get_prompt(prompt_id: str) -> PromptTemplate:
    """Retrieve a prompt template by ID.

    Raises:
        KeyError: If no prompt with the given ID exists.
    """
    if prompt_id not in PROMPT_REGISTRY:
        available = ", ".join(sorted(PROMPT_REGISTRY))
        raise KeyError(f"Prompt '{prompt_id}' not found. Available prompts: {available}")
    return PROMPT_REGISTRY[prompt_id]


for _template in (
    VISION_LABEL_PROMPT,
    IDENTITY_REFINEMENT_PROMPT,
    FACT_RESEARCH_PROMPT,
    OPENING_REPLY_PROMPT,
    FOLLOWUP_REPLY_PROMPT,
    TRANSCRIPTION_PROMPT,
):
    register_prompt(_template)


# =============================================================================
# Helper Functions
# =============================================================================


def render_json_payload(payload: dict[str, Any]) -> str:
    """Serialize a reply-generation payload the way the reply prompts expect."""
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)
