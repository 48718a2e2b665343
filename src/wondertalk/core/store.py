"""Key-value storage behind an interface.

Every component that keeps state (sessions, uploads, analyses, conversations,
the fact cache, incidents, analytics) receives a store rather than reaching for
a module-level dict, so a persistent backend can be swapped in later.

The in-memory implementation is what the single-process server uses. All
methods are synchronous and never await, so a read-modify-write done by one
coroutine cannot interleave with another on the same event loop.

Example:
    >>> store = create_memory_store(PolicyConfig(...))
    >>> store.sessions.set(session.session_id, session)
    >>> store.sessions.get(session.session_id)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Iterator, TypeVar

from wondertalk.core.models import (
    AnalysisResult,
    AnalyticsEvent,
    ConversationState,
    FactCacheEntry,
    FeedbackItem,
    IncidentItem,
    PolicyConfig,
    SessionInfo,
    UploadTarget,
    VoiceAsset,
)

V = TypeVar("V")


class KeyValueStore(ABC, Generic[V]):
    """Abstract string-keyed store."""

    @abstractmethod
    def get(self, key: str) -> V | None:
        pass

    @abstractmethod
    def set(self, key: str, value: V) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if something was removed."""
        pass

    @abstractmethod
    def values(self) -> list[V]:
        pass

    def exists(self, key: str) -> bool:
        return self.get(key) is not None


class AppendLog(ABC, Generic[V]):
    """Abstract append-only record log."""

    @abstractmethod
    def append(self, item: V) -> None:
        pass

    @abstractmethod
    def list(self, limit: int | None = None) -> list[V]:
        """Return records newest first, optionally capped at ``limit``."""
        pass

    @abstractmethod
    def __iter__(self) -> Iterator[V]:
        pass


class InMemoryKeyValueStore(KeyValueStore[V]):
    def __init__(self) -> None:
        self._items: dict[str, V] = {}

    def get(self, key: str) -> V | None:
        return self._items.get(key)

    def set(self, key: str, value: V) -> None:
        self._items[key] = value

    def delete(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    def values(self) -> list[V]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)


class InMemoryAppendLog(AppendLog[V]):
    def __init__(self) -> None:
        self._items: list[V] = []

    def append(self, item: V) -> None:
        self._items.append(item)

    def list(self, limit: int | None = None) -> list[V]:
        newest_first = list(reversed(self._items))
        return newest_first if limit is None else newest_first[:limit]

    def __iter__(self) -> Iterator[V]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)


class PolicyHolder:
    """Holds the single active safety/research policy."""

    def __init__(self, policy: PolicyConfig) -> None:
        self._policy = policy

    def get(self) -> PolicyConfig:
        return self._policy

    def set(self, policy: PolicyConfig) -> None:
        self._policy = policy


@dataclass
class Store:
    """Aggregate of every store the service uses."""

    sessions: KeyValueStore[SessionInfo]
    uploads: KeyValueStore[UploadTarget]
    analyses: KeyValueStore[AnalysisResult]
    conversations: KeyValueStore[ConversationState]
    fact_cache: KeyValueStore[FactCacheEntry]
    voice_assets: KeyValueStore[VoiceAsset]
    incidents: AppendLog[IncidentItem]
    analytics: AppendLog[AnalyticsEvent]
    feedback: AppendLog[FeedbackItem]
    policy: PolicyHolder


def create_memory_store(policy: PolicyConfig) -> Store:
    """Build a fully in-memory ``Store`` seeded with ``policy``."""
    return Store(
        sessions=InMemoryKeyValueStore(),
        uploads=InMemoryKeyValueStore(),
        analyses=InMemoryKeyValueStore(),
        conversations=InMemoryKeyValueStore(),
        fact_cache=InMemoryKeyValueStore(),
        voice_assets=InMemoryKeyValueStore(),
        incidents=InMemoryAppendLog(),
        analytics=InMemoryAppendLog(),
        feedback=InMemoryAppendLog(),
        policy=PolicyHolder(policy),
    )
