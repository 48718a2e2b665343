"""Tests for the ResearchCache, source filtering and research parsing."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from wondertalk.ai.client import GeminiClient
from wondertalk.ai.fallback import CANNED_FACT_CONFIDENCE
from wondertalk.ai.research import (
    ResearchCache,
    filter_facts,
    parse_research,
    source_allowed,
)
from wondertalk.core.models import CanonicalEntity, PolicyConfig
from wondertalk.core.store import Store

from conftest import make_fact, make_genai_response


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# =============================================================================
# Filtering
# =============================================================================


class TestSourceFiltering:
    @pytest.mark.parametrize(
        "url,allowed",
        [
            ("https://www.nasa.gov/mission", True),
            ("https://science.nasa.gov/x", True),
            ("https://nasa.gov.evil.com/x", False),
            ("https://randomblog.net/post", False),
            ("not a url", False),
        ],
    )
    def test_source_allowed(self, url: str, allowed: bool) -> None:
        assert source_allowed(url, ["nasa.gov", "britannica.com"]) is allowed

    def test_filter_drops_low_confidence_and_bad_sources(self, policy: PolicyConfig) -> None:
        facts = [
            make_fact("kept", "https://www.britannica.com/a", confidence=0.9),
            make_fact("low", "https://www.britannica.com/b", confidence=0.1),
            make_fact("blog", "https://randomblog.net/c", confidence=0.9),
        ]
        kept = filter_facts(facts, policy)
        assert [f.claim for f in kept] == ["kept"]

    def test_filter_trims_urls_to_allowed(self, policy: PolicyConfig) -> None:
        fact = make_fact("mixed", "https://www.nasa.gov/a").model_copy(
            update={"source_urls": ["https://randomblog.net/x", "https://www.nasa.gov/a"]}
        )
        kept = filter_facts([fact], policy)
        assert kept[0].source_urls == ["https://www.nasa.gov/a"]

    def test_filter_keeps_unfiltered_when_nothing_survives(self, policy: PolicyConfig) -> None:
        facts = [make_fact("blog", "https://randomblog.net/c")]
        assert filter_facts(facts, policy) == facts


class TestParseResearch:
    def test_parses_and_skips_malformed(self, eiffel_entity: CanonicalEntity) -> None:
        output = parse_research(
            {
                "summary": "An iron tower.",
                "facts": [
                    {
                        "claim": "It sways in the wind.",
                        "confidence": 0.8,
                        "sourceUrls": ["https://www.britannica.com/x"],
                        "freshnessDate": "2024-05-01",
                    },
                    {"claim": "no sources"},
                    {"claim": "", "sourceUrls": ["https://www.nasa.gov"]},
                    "garbage",
                ],
            },
            eiffel_entity,
        )
        assert output is not None
        assert output.summary == "An iron tower."
        assert len(output.facts) == 1
        assert output.facts[0].freshness_date == "2024-05-01"

    def test_no_facts_gives_none(self, eiffel_entity: CanonicalEntity) -> None:
        assert parse_research({"facts": []}, eiffel_entity) is None
        assert parse_research({"summary": "x"}, eiffel_entity) is None

    def test_missing_summary_gets_default(self, eiffel_entity: CanonicalEntity) -> None:
        output = parse_research(
            {"facts": [{"claim": "c", "sourceUrls": ["https://www.nasa.gov"]}]}, eiffel_entity
        )
        assert output is not None
        assert "Eiffel Tower" in output.summary
        assert output.facts[0].confidence == 0.55


# =============================================================================
# Cache
# =============================================================================


class TestResearchCache:
    def test_disabled_client_uses_canned_facts(
        self, disabled_client: GeminiClient, store: Store, eiffel_entity: CanonicalEntity
    ) -> None:
        cache = ResearchCache(disabled_client, store)
        pack = asyncio.run(cache.get_fact_pack(eiffel_entity))

        assert pack.entity == eiffel_entity
        assert len(pack.facts) == 3
        assert all(f.confidence == CANNED_FACT_CONFIDENCE for f in pack.facts)
        assert "Eiffel Tower" in pack.facts[0].claim

    def test_character_canned_facts_are_about_the_person(
        self, disabled_client: GeminiClient, store: Store, alexander_entity: CanonicalEntity
    ) -> None:
        pack = asyncio.run(ResearchCache(disabled_client, store).get_fact_pack(alexander_entity))
        assert all("Alexander the Great" in f.claim for f in pack.facts)
        assert not any("statue" in f.claim.lower() for f in pack.facts)

    def test_cache_hit_skips_model(
        self, make_gemini_client, store: Store, eiffel_entity: CanonicalEntity
    ) -> None:
        client = make_gemini_client(
            make_genai_response(
                data={
                    "summary": "Tall.",
                    "facts": [
                        {"claim": "Fact A", "confidence": 0.9, "sourceUrls": ["https://www.nasa.gov/a"]}
                    ],
                }
            )
        )
        cache = ResearchCache(client, store)

        async def run():
            first = await cache.get_fact_pack(eiffel_entity)
            second = await cache.get_fact_pack(eiffel_entity)
            return first, second

        first, second = asyncio.run(run())
        assert first == second
        assert first.facts[0].claim == "Fact A"
        assert client._client.aio.models.generate_content.await_count == 1

    def test_expired_entry_is_refreshed(
        self, disabled_client: GeminiClient, store: Store, eiffel_entity: CanonicalEntity
    ) -> None:
        clock = FakeClock()
        cache = ResearchCache(disabled_client, store, ttl_minutes=10, clock=clock)

        first = asyncio.run(cache.get_fact_pack(eiffel_entity))
        clock.advance(minutes=5)
        assert asyncio.run(cache.get_fact_pack(eiffel_entity)) is first

        clock.advance(minutes=10)
        refreshed = asyncio.run(cache.get_fact_pack(eiffel_entity))
        assert refreshed is not first
        assert refreshed.generated_at == clock.now

    def test_cache_key_includes_audience(
        self, disabled_client: GeminiClient, store: Store, eiffel_entity: CanonicalEntity
    ) -> None:
        cache = ResearchCache(disabled_client, store, audience_tag="age-7-10:fr-FR:strict")
        assert cache.cache_key(eiffel_entity) == "entity-eiffel-tower:age-7-10:fr-FR:strict"

    def test_invalidate(
        self, disabled_client: GeminiClient, store: Store, eiffel_entity: CanonicalEntity
    ) -> None:
        cache = ResearchCache(disabled_client, store)
        asyncio.run(cache.get_fact_pack(eiffel_entity))
        assert cache.invalidate(eiffel_entity) is True
        assert cache.invalidate(eiffel_entity) is False

    def test_policy_filter_applies_to_model_facts(
        self, make_gemini_client, store: Store, eiffel_entity: CanonicalEntity
    ) -> None:
        client = make_gemini_client(
            make_genai_response(
                data={
                    "summary": "Tall.",
                    "facts": [
                        {"claim": "Good", "confidence": 0.9, "sourceUrls": ["https://www.nasa.gov/a"]},
                        {"claim": "Blog", "confidence": 0.9, "sourceUrls": ["https://blog.example/x"]},
                    ],
                }
            )
        )
        pack = asyncio.run(ResearchCache(client, store).get_fact_pack(eiffel_entity))
        assert [f.claim for f in pack.facts] == ["Good"]
