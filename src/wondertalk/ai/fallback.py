"""Deterministic fallbacks used when Gemini is unavailable.

When there is no API key, a call times out, or a reply cannot be parsed, the
pipeline still has to say something. This module holds the offline answers:

- Keyword rules that map a label (or a filename hint) to a category
- Filename heuristics that guess a label from the uploaded file name
- Canned, source-cited facts per category, with a separate set for statues
  that speak as the person they depict

The canned facts only cite allow-listed educational domains, so they survive
research filtering unchanged.

Example:
    >>> category_from_label("Golden Gate Bridge")
    <EntityCategory.LANDMARK: 'landmark'>
    >>> label_from_filename("IMG_eiffel_2024.jpg")
    'Eiffel Tower'
"""

from __future__ import annotations

import logging
from datetime import date

from wondertalk.core.models import CanonicalEntity, EntityCategory, FactItem

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

HEURISTIC_CONFIDENCE = 0.42
CANNED_FACT_CONFIDENCE = 0.62
MYSTERY_LABEL = "mystery object"

CATEGORY_KEYWORDS: list[tuple[EntityCategory, tuple[str, ...]]] = [
    (EntityCategory.LANDMARK, ("tower", "bridge", "temple", "monument", "cathedral", "museum")),
    (EntityCategory.ANIMAL, ("bird", "fish", "lion", "dog", "cat", "butterfly", "animal")),
    (EntityCategory.NATURE, ("tree", "flower", "mountain", "waterfall", "forest", "ocean", "river")),
    (EntityCategory.STATUE, ("statue", "sculpture", "bust")),
    (EntityCategory.ELECTRONICS, ("circuit", "phone", "computer", "drone", "robot", "electronics")),
    (EntityCategory.SCIENCE, ("planet", "fossil", "microscope", "satellite", "volcano", "crystal")),
]

FILENAME_LABELS: list[tuple[str, str]] = [
    ("eiffel", "Eiffel Tower"),
    ("bridge", "bridge"),
    ("tree", "tree"),
    ("flower", "flower"),
    ("statue", "statue"),
    ("phone", "smartphone"),
    ("robot", "robot"),
    ("planet", "planet"),
    ("bird", "bird"),
]

BRITANNICA = "https://www.britannica.com"
NATGEO = "https://www.nationalgeographic.com"
SMITHSONIAN = "https://www.smithsonianmag.com"
NOAA = "https://www.noaa.gov"
USGS = "https://www.usgs.gov"
NASA = "https://www.nasa.gov"

# {label} is substituted with the entity's canonical label.
CANNED_FACTS: dict[EntityCategory, list[tuple[str, str]]] = {
    EntityCategory.LANDMARK: [
        ("{label} was built with engineering tricks that were advanced for its time.", BRITANNICA),
        ("People from around the world visit {label} to learn history and culture.", NATGEO),
        ("Weather and time slowly shape {label}, so experts help preserve it.", SMITHSONIAN),
    ],
    EntityCategory.NATURE: [
        ("{label} is part of an ecosystem where many living things depend on each other.", NATGEO),
        ("Changes in climate and seasons can transform how {label} looks over time.", NOAA),
        ("Scientists study {label} to understand Earth systems and biodiversity.", USGS),
    ],
    EntityCategory.STATUE: [
        ("Artists use shapes, balance, and materials to make statues feel alive.", BRITANNICA),
        ("{label} can represent a story, a hero, or an important moment.", SMITHSONIAN),
        ("Conservators protect statues from weather and pollution damage.", NATGEO),
    ],
    EntityCategory.ELECTRONICS: [
        ("{label} works by guiding electricity through tiny pathways called circuits.", BRITANNICA),
        ("Many electronics use sensors to detect light, motion, sound, or temperature.", NASA),
        ("Engineers design electronics by solving tradeoffs between speed, power, and size.", NATGEO),
    ],
    EntityCategory.SCIENCE: [
        ("{label} helps scientists test ideas and discover how nature works.", NASA),
        ("Scientific discoveries often come from careful measurements repeated many times.", BRITANNICA),
        ("New technology can turn old science questions into fresh discoveries.", SMITHSONIAN),
    ],
    EntityCategory.ANIMAL: [
        ("{label} has adaptations that help it survive in its habitat.", NATGEO),
        ("Animal behavior can change between day and night or across seasons.", BRITANNICA),
        ("Scientists track animals to learn how ecosystems stay healthy.", NOAA),
    ],
    EntityCategory.OTHER: [
        ("{label} has a story that connects science, history, and creativity.", BRITANNICA),
        ("Experts observe small details to uncover surprising facts about {label}.", NATGEO),
        ("Questions about {label} can lead to big discoveries.", SMITHSONIAN),
    ],
}

# Used when a statue speaks as the person it depicts. These talk about the
# person, never about the artwork.
CHARACTER_FACTS: list[tuple[str, str]] = [
    ("{name} lived a life that people still study in history books today.", BRITANNICA),
    ("{name} was remembered by artists who made likenesses for future generations.", SMITHSONIAN),
    ("Historians piece together what {name} did from letters, objects, and old records.", NATGEO),
    ("The choices {name} made changed how people lived long afterwards.", BRITANNICA),
]


# =============================================================================
# Label & Category Heuristics
# =============================================================================


def category_from_label(label: str) -> EntityCategory:
    """Map a free-text label to a category using keyword rules."""
    lower = label.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return category
    return EntityCategory.OTHER


def label_from_filename(filename: str | None) -> str:
    """Guess a label from an uploaded file name.

    Returns:
        A label such as "Eiffel Tower", or "mystery object" when nothing matches.
    """
    if not filename:
        return MYSTERY_LABEL
    lower = filename.lower()
    for keyword, label in FILENAME_LABELS:
        if keyword in lower:
            return label
    return MYSTERY_LABEL


# =============================================================================
# Canned Research
# =============================================================================


def canned_facts(entity: CanonicalEntity, today: date | None = None) -> tuple[str, list[FactItem]]:
    """Build offline research for ``entity``.

    Args:
        entity: The entity to describe.
        today: Date stamped on each fact (defaults to today).

    Returns:
        Tuple of (summary, facts).
    """
    freshness = (today or date.today()).isoformat()

    if entity.is_character:
        name = entity.roleplay_name
        facts = [
            FactItem(
                claim=claim.format(name=name),
                confidence=CANNED_FACT_CONFIDENCE,
                source_urls=[source],
                freshness_date=freshness,
            )
            for claim, source in CHARACTER_FACTS
        ]
        return f"{name} has a life story full of clues about the past.", facts

    templates = CANNED_FACTS.get(entity.category, CANNED_FACTS[EntityCategory.OTHER])
    facts = [
        FactItem(
            claim=claim.format(label=entity.label),
            confidence=CANNED_FACT_CONFIDENCE,
            source_urls=[source],
            freshness_date=freshness,
        )
        for claim, source in templates
    ]
    logger.debug(f"Using canned {entity.category.value} facts for {entity.entity_id}")
    return f"{entity.label} is full of clues about how our world works.", facts
