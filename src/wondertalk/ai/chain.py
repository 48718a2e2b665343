"""Ordered provider chains.

Vision labeling, fact research and speech synthesis all follow the same
shape: try the best provider, and if it is disabled, times out or returns
nothing usable, move to the next one. Each provider implements
``attempt(payload)`` and returns a result or ``None``; the chain returns the
first result together with the provider that produced it.

Providers must not raise for expected failures. ``run_chain`` still catches
``AIClientError`` so a provider that forgets cannot break the pipeline.

Example:
    >>> providers = [GeminiVisionProvider(client), HeuristicVisionProvider()]
    >>> outcome = await run_chain(providers, VisionRequest(...))
    >>> outcome.provider, outcome.result.label
    ('heuristic', 'Eiffel Tower')
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Sequence, TypeVar

from wondertalk.ai.client import AIClientError

logger = logging.getLogger(__name__)

P = TypeVar("P")
R = TypeVar("R")


class Provider(ABC, Generic[P, R]):
    """One capability provider in a chain."""

    name: str = "provider"

    def is_enabled(self) -> bool:
        return True

    @abstractmethod
    async def attempt(self, payload: P) -> R | None:
        """Produce a result, or None when this provider cannot help."""
        pass


@dataclass(frozen=True)
class ChainOutcome(Generic[R]):
    provider: str
    result: R


async def run_chain(providers: Sequence[Provider[P, R]], payload: P) -> ChainOutcome[R] | None:
    """Try ``providers`` in order and return the first usable result.

    Disabled providers are skipped without any I/O.

    Returns:
        The first outcome, or None when every provider came up empty.
    """
    for provider in providers:
        if not provider.is_enabled():
            logger.debug(f"Skipping disabled provider {provider.name}")
            continue
        try:
            result = await provider.attempt(payload)
        except AIClientError as e:
            logger.warning(f"Provider {provider.name} failed: {e}")
            continue
        if result is not None:
            return ChainOutcome(provider=provider.name, result=result)
        logger.debug(f"Provider {provider.name} returned nothing, trying next")
    return None
