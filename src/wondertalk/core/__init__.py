"""Core domain layer for WonderTalk.

- **models**: pydantic records (entities, facts, conversations, analyses)
- **store**: key-value store interface and the in-memory backend
- **moderation**: the Moderation Gate applied at every text boundary
- **persona**: voice archetypes, hooks and template replies

Example:
    >>> from wondertalk.core import ModerationGate, create_memory_store
    >>> store = create_memory_store(policy)
    >>> gate = ModerationGate(store.incidents)
"""

from wondertalk.core.models import (
    AnalysisResult,
    AnalysisStatus,
    CanonicalEntity,
    ConversationState,
    ConversationTurn,
    EntityCategory,
    FactItem,
    FactPack,
    ModerationResult,
    PersonaArchetype,
    PersonaProfile,
    PolicyConfig,
    RoleplayMode,
    SafetyVerdict,
)
from wondertalk.core.moderation import ModerationGate
from wondertalk.core.persona import PersonaEngine, to_first_person
from wondertalk.core.store import KeyValueStore, Store, create_memory_store

__all__ = [
    "AnalysisResult",
    "AnalysisStatus",
    "CanonicalEntity",
    "ConversationState",
    "ConversationTurn",
    "EntityCategory",
    "FactItem",
    "FactPack",
    "KeyValueStore",
    "ModerationGate",
    "ModerationResult",
    "PersonaArchetype",
    "PersonaEngine",
    "PersonaProfile",
    "PolicyConfig",
    "RoleplayMode",
    "SafetyVerdict",
    "Store",
    "create_memory_store",
    "to_first_person",
]
