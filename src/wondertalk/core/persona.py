"""Persona Engine - turns an entity and its facts into a speaking character.

The engine decides how the discovered object (or the person it depicts)
sounds, writes the opening hook, rewrites third-person facts into the
first person, and builds template replies for when no model is available.

All random choices go through an injectable ``random.Random`` so tests can
pin hook and question selection.

Example:
    >>> engine = PersonaEngine(rng=random.Random(7))
    >>> persona = engine.build_persona(entity)
    >>> hook = engine.build_hook(entity)
    >>> reply = engine.build_first_reply(fact_pack, hook)
"""

from __future__ import annotations

import random
import re

from wondertalk.core.models import (
    CanonicalEntity,
    EntityCategory,
    FactItem,
    FactPack,
    PersonaArchetype,
    PersonaProfile,
    RoleplayMode,
)

# =============================================================================
# Tables
# =============================================================================

ARCHETYPE_BY_CATEGORY: dict[EntityCategory, PersonaArchetype] = {
    EntityCategory.LANDMARK: PersonaArchetype.WISE,
    EntityCategory.NATURE: PersonaArchetype.ADVENTUROUS,
    EntityCategory.STATUE: PersonaArchetype.WISE,
    EntityCategory.ELECTRONICS: PersonaArchetype.INVENTOR,
    EntityCategory.SCIENCE: PersonaArchetype.INVENTOR,
    EntityCategory.ANIMAL: PersonaArchetype.PLAYFUL,
    EntityCategory.OTHER: PersonaArchetype.ADVENTUROUS,
}

STYLE_BY_ARCHETYPE: dict[PersonaArchetype, str] = {
    PersonaArchetype.PLAYFUL: "bouncy, energetic, and curious",
    PersonaArchetype.WISE: "warm, confident, and story-rich",
    PersonaArchetype.ADVENTUROUS: "excited, exploratory, and vivid",
    PersonaArchetype.INVENTOR: "clever, hands-on, and discovery-driven",
}

OBJECT_HOOK_TEMPLATES = [
    "Psst... want to hear a secret? I'm {name}!",
    "Whoa, you found me! I'm {name}. Ready for a surprise?",
    "Guess what? I'm {name}. Wanna hear my wildest fact?",
    "Adventure alert! I'm {name}. Ready to be amazed?",
]

CHARACTER_HOOK_TEMPLATES = [
    "Psst... it's really me, {name}! Want my biggest secret?",
    "You spotted me! I'm {name}. Wanna know why people still talk about me?",
    "Time-travel moment: I'm {name}. Ready for a jaw-dropping clue?",
    "History hook: I'm {name}. Want to know what changed everything for me?",
]

CURIOSITY_QUESTIONS: dict[EntityCategory, list[str]] = {
    EntityCategory.LANDMARK: [
        "If you could visit me, what mystery would you solve first?",
        "What do you think people felt the first time they saw me?",
    ],
    EntityCategory.NATURE: [
        "What tiny creature do you think depends on me the most?",
        "How do you think I change between seasons?",
    ],
    EntityCategory.STATUE: [
        "What part of my story do you want to explore next?",
        "Want to know the one thing people get wrong about me?",
        "If you made a monument about history, who would it feature?",
    ],
    EntityCategory.ELECTRONICS: [
        "Which sensor would you add to invent something new?",
        "What problem would you solve with a gadget like me?",
    ],
    EntityCategory.SCIENCE: [
        "What experiment would you run with me first?",
        "What question could we test like scientists?",
    ],
    EntityCategory.ANIMAL: [
        "What do you think helps me survive in the wild?",
        "If you observed me for a day, what would you write down?",
    ],
    EntityCategory.OTHER: [
        "What do you notice first that most people might miss?",
        "What question about me makes you most curious?",
    ],
}

DEPICTION_WORDS = r"(?:busts?|statues?|sculptures?|portraits?|paintings?|figures?|figurines?)"

# "a marble bust of me", "Busts of I", "the statue of me"; describing words
# after an article must be lowercase so "the Romans made busts of I" keeps
# its subject.
_CONTAINER_PHRASE = re.compile(
    rf"\b(?:(?:the|a|an|this|that|these|those)\s+(?:(?-i:[a-z]+)\s+){{0,3}}?)?"
    rf"{DEPICTION_WORDS}\s+of\s+(?:me|I)\b",
    re.IGNORECASE,
)
_POSSESSIVE_I = re.compile(r"\bI(?:'s|’s)(?=\W|$)")


def _starts_sentence(text: str, index: int) -> bool:
    before = text[:index].rstrip()
    return not before or before.endswith((".", "!", "?"))


# =============================================================================
# First-person rewriting
# =============================================================================


def to_first_person(fact: FactItem | None, entity: CanonicalEntity) -> str:
    """Rewrite a fact so the entity speaks about itself.

    Every mention of the roleplay name, research subject or label (with an
    optional leading article) becomes "I"; container phrases such as
    "a marble bust of me" collapse to "I" at the start of a sentence and
    to "me" elsewhere.

    Args:
        fact: Fact to rewrite, or None when the pack has run dry.
        entity: The speaking entity.

    Returns:
        The rewritten claim.
    """
    if fact is None:
        return f"{entity.roleplay_name} has a story worth exploring."

    rewritten = fact.claim
    names = [entity.roleplay_name, entity.research_subject, entity.label]
    # Longest first so "Alexander the Great" wins over a shorter overlapping label.
    for name in sorted({n for n in names if n}, key=len, reverse=True):
        pattern = re.compile(rf"\b(?:(?:the|a|an)\s+)?{re.escape(name)}\b", re.IGNORECASE)
        rewritten = pattern.sub("I", rewritten)

    rewritten = _CONTAINER_PHRASE.sub(
        lambda m: "I" if _starts_sentence(m.string, m.start()) else "me", rewritten
    )
    rewritten = _POSSESSIVE_I.sub(lambda m: "My" if m.start() == 0 else "my", rewritten)
    return rewritten


# =============================================================================
# Engine
# =============================================================================


class PersonaEngine:
    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def build_persona(self, entity: CanonicalEntity) -> PersonaProfile:
        """Pick voice archetype and speaking style from the entity category."""
        archetype = ARCHETYPE_BY_CATEGORY.get(entity.category, PersonaArchetype.ADVENTUROUS)
        if entity.roleplay_mode is RoleplayMode.AS_CHARACTER and entity.category is EntityCategory.STATUE:
            archetype = PersonaArchetype.WISE

        return PersonaProfile(
            voice_archetype=archetype,
            speaking_style=STYLE_BY_ARCHETYPE[archetype],
            hook_template_id=f"{archetype.value}-hook-1",
        )

    def build_hook(self, entity: CanonicalEntity) -> str:
        templates = CHARACTER_HOOK_TEMPLATES if entity.is_character else OBJECT_HOOK_TEMPLATES
        return self._rng.choice(templates).replace("{name}", entity.roleplay_name)

    def build_first_reply(self, fact_pack: FactPack, hook: str) -> str:
        """Template opening: hook, identity line, two facts, a question."""
        entity = fact_pack.entity
        facts = fact_pack.facts
        first = to_first_person(facts[0] if len(facts) > 0 else None, entity)
        second = to_first_person(facts[1] if len(facts) > 1 else None, entity)

        if entity.is_character:
            identity = f"I'm {entity.roleplay_name}, and yep, this is my real story."
        else:
            identity = f"I'm {entity.roleplay_name}, and here's what makes me amazing."

        return " ".join([hook, identity, first, second, self.get_curiosity_question(entity)])

    def build_fallback_reply(
        self,
        fact_pack: FactPack,
        question: str,
        used_fact_indexes: set[int],
        fact: FactItem | None = None,
    ) -> str:
        """Template follow-up reply.

        Args:
            fact_pack: Facts for the conversation.
            question: What the child asked.
            used_fact_indexes: Indexes already surfaced; updated in place.
            fact: A fact the caller already picked. When omitted a fresh one
                is drawn from ``used_fact_indexes``.

        Returns:
            Reply text ending in a curiosity question.
        """
        entity = fact_pack.entity
        if fact is None:
            fact = self.pick_fresh_fact(fact_pack, used_fact_indexes)

        return " ".join(
            [
                f"Great question! I'm {entity.roleplay_name}.",
                f"Here's something awesome: {to_first_person(fact, entity)}",
                f'You asked: "{question}" and I love that curiosity.',
                self.get_curiosity_question(entity),
            ]
        )

    def pick_fresh_fact(self, fact_pack: FactPack, used_fact_indexes: set[int]) -> FactItem | None:
        """Return the first unused fact and mark it used.

        Once every index is used, the first fact is returned again; the set
        is left untouched. An empty pack gives None.
        """
        for idx, fact in enumerate(fact_pack.facts):
            if idx not in used_fact_indexes:
                used_fact_indexes.add(idx)
                return fact
        return fact_pack.facts[0] if fact_pack.facts else None

    def get_curiosity_question(self, entity: CanonicalEntity) -> str:
        candidates = CURIOSITY_QUESTIONS.get(entity.category) or CURIOSITY_QUESTIONS[EntityCategory.OTHER]
        return self._rng.choice(candidates)
