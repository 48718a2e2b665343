"""Research Cache - kid-safe, source-cited facts per entity.

Research is the slowest step of an analysis and the same landmark gets
photographed over and over, so fact packs are cached per entity and audience
for a configurable TTL (a day by default).

On a miss the research providers run in order (Gemini first, canned facts
last). Results are then filtered against the active policy: every source URL
must sit on or under an allow-listed domain and every fact must clear the
confidence floor. If filtering would leave nothing to say, the unfiltered
facts are kept instead.

Example:
    >>> cache = ResearchCache(client, store, ttl_minutes=1440)
    >>> pack = await cache.get_fact_pack(entity)
    >>> pack.facts[0].claim
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable
from urllib.parse import urlparse

from pydantic import ValidationError

from wondertalk.ai.chain import Provider, run_chain
from wondertalk.ai.client import AIClientError, GeminiClient
from wondertalk.ai.fallback import canned_facts
from wondertalk.ai.prompts import CHARACTER_INSTRUCTION, get_prompt
from wondertalk.core.models import (
    CanonicalEntity,
    FactCacheEntry,
    FactItem,
    FactPack,
    PolicyConfig,
    utcnow,
)
from wondertalk.core.store import Store
from wondertalk.utils.text import clamp

logger = logging.getLogger(__name__)

DEFAULT_FACT_CONFIDENCE = 0.55
DEFAULT_AUDIENCE_TAG = "age-7-10:en-US:strict-safety-v1"


@dataclass(frozen=True)
class ResearchRequest:
    entity: CanonicalEntity
    allowed_domains: list[str]


@dataclass(frozen=True)
class ResearchOutput:
    summary: str
    facts: list[FactItem]


# =============================================================================
# Source Filtering
# =============================================================================


def source_allowed(url: str, allowed_domains: list[str]) -> bool:
    """True when ``url``'s host (minus ``www.``) is an allowed domain or below one."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False
    host = host.removeprefix("www.")
    return any(host == domain or host.endswith(f".{domain}") for domain in allowed_domains)


def filter_facts(facts: list[FactItem], policy: PolicyConfig) -> list[FactItem]:
    """Apply the source allow-list and confidence floor.

    Returns:
        The surviving facts (URLs trimmed to allowed ones), or the original
        list untouched when nothing survives.
    """
    kept: list[FactItem] = []
    for fact in facts:
        if fact.confidence < policy.min_fact_confidence:
            continue
        urls = [u for u in fact.source_urls if source_allowed(u, policy.allowed_source_domains)]
        if urls:
            kept.append(fact.model_copy(update={"source_urls": urls}))

    if not kept and facts:
        logger.info("No facts passed source filtering; keeping unfiltered research")
        return list(facts)
    return kept


def parse_research(data: dict[str, Any], entity: CanonicalEntity) -> ResearchOutput | None:
    """Turn a model's research JSON into facts, dropping malformed items."""
    raw_facts = data.get("facts")
    if not isinstance(raw_facts, list):
        return None

    today = date.today().isoformat()
    facts: list[FactItem] = []
    for raw in raw_facts:
        if not isinstance(raw, dict):
            continue
        claim = raw.get("claim")
        urls = raw.get("sourceUrls")
        if not isinstance(claim, str) or not claim.strip():
            continue
        if not isinstance(urls, list) or not urls:
            continue
        try:
            confidence = clamp(float(raw.get("confidence", DEFAULT_FACT_CONFIDENCE)))
        except (TypeError, ValueError):
            confidence = DEFAULT_FACT_CONFIDENCE
        try:
            facts.append(
                FactItem(
                    claim=claim.strip(),
                    confidence=confidence,
                    source_urls=[str(u) for u in urls if isinstance(u, str) and u.strip()],
                    freshness_date=str(raw.get("freshnessDate") or today),
                )
            )
        except ValidationError:
            continue

    if not facts:
        return None

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = f"{entity.label} is full of fascinating stories and science."
    return ResearchOutput(summary=summary.strip(), facts=facts)


# =============================================================================
# Providers
# =============================================================================


class GeminiResearchProvider(Provider[ResearchRequest, ResearchOutput]):
    name = "gemini"

    def __init__(self, client: GeminiClient) -> None:
        self._client = client

    def is_enabled(self) -> bool:
        return self._client.is_enabled()

    async def attempt(self, payload: ResearchRequest) -> ResearchOutput | None:
        entity = payload.entity
        system, prompt = get_prompt("fact_research_v1").render(
            label=entity.research_subject,
            category=entity.category.value,
            allowed_domains=", ".join(payload.allowed_domains),
            character_note=(
                "\n- These facts are about the real person, not about any artwork."
                + CHARACTER_INSTRUCTION
                if entity.is_character
                else ""
            ),
        )
        try:
            response = await self._client.generate_json([prompt], system_instruction=system)
        except AIClientError as e:
            logger.info(f"Research call failed for {entity.entity_id}: {type(e).__name__}")
            return None
        if not response.parse_success:
            return None
        return parse_research(response.data, entity)


class CannedResearchProvider(Provider[ResearchRequest, ResearchOutput]):
    name = "canned"

    async def attempt(self, payload: ResearchRequest) -> ResearchOutput:
        summary, facts = canned_facts(payload.entity)
        return ResearchOutput(summary=summary, facts=facts)


# =============================================================================
# Cache
# =============================================================================


class ResearchCache:
    """Get-or-research fact packs, keyed by entity and audience.

    Args:
        client: Gemini client (may be disabled).
        store: Service store; uses ``fact_cache`` and ``policy``.
        ttl_minutes: Lifetime of a cached pack.
        audience_tag: Suffix of every cache key.
        clock: Returns "now"; injectable for expiry tests.
        providers: Override the research chain (tests).
    """

    def __init__(
        self,
        client: GeminiClient,
        store: Store,
        ttl_minutes: int = 1440,
        audience_tag: str = DEFAULT_AUDIENCE_TAG,
        clock: Callable[[], datetime] = utcnow,
        providers: list[Provider[ResearchRequest, ResearchOutput]] | None = None,
    ) -> None:
        self._store = store
        self._ttl = timedelta(minutes=ttl_minutes)
        self._audience_tag = audience_tag
        self._clock = clock
        self._providers = providers or [GeminiResearchProvider(client), CannedResearchProvider()]

    def cache_key(self, entity: CanonicalEntity) -> str:
        return f"{entity.entity_id}:{self._audience_tag}"

    async def get_fact_pack(self, entity: CanonicalEntity) -> FactPack:
        """Return a cached pack or research a fresh one. Never raises."""
        key = self.cache_key(entity)
        now = self._clock()

        cached = self._store.fact_cache.get(key)
        if cached is not None and cached.expires_at > now:
            logger.debug(f"Fact cache hit for {key}")
            return cached.fact_pack

        policy = self._store.policy.get()
        outcome = await run_chain(
            self._providers, ResearchRequest(entity, list(policy.allowed_source_domains))
        )
        if outcome is None:
            summary, facts = canned_facts(entity)
            research = ResearchOutput(summary=summary, facts=facts)
            source = "canned"
        else:
            research = outcome.result
            source = outcome.provider

        fact_pack = FactPack(
            entity=entity,
            facts=filter_facts(research.facts, policy),
            summary=research.summary,
            generated_at=now,
        )
        self._store.fact_cache.set(
            key, FactCacheEntry(fact_pack=fact_pack, expires_at=now + self._ttl)
        )
        logger.info(f"Researched {len(fact_pack.facts)} facts for {entity.entity_id} via {source}")
        return fact_pack

    def invalidate(self, entity: CanonicalEntity) -> bool:
        """Drop the cached pack for ``entity``; True if one was present."""
        return self._store.fact_cache.delete(self.cache_key(entity))
