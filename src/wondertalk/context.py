"""Wiring of every pipeline component from one ``AppConfig``.

The HTTP app and the CLI both build an ``AppContext`` and then only talk to
the components on it. Tests build one with a disabled Gemini client and
their own voice providers.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from wondertalk.ai.chain import Provider
from wondertalk.ai.client import GeminiClient
from wondertalk.ai.generation import ReplyGenerator
from wondertalk.ai.research import ResearchCache
from wondertalk.ai.speech import SpeechService
from wondertalk.ai.vision import EntityResolver
from wondertalk.config import AppConfig, get_api_key
from wondertalk.core.models import PolicyConfig
from wondertalk.core.moderation import ModerationGate
from wondertalk.core.persona import PersonaEngine
from wondertalk.core.store import Store, create_memory_store
from wondertalk.pipeline.analysis import AnalysisOrchestrator
from wondertalk.pipeline.conversation import ConversationTurnEngine
from wondertalk.pipeline.ingestion import IngestionService, MalwareScanner
from wondertalk.services.admin import AdminService
from wondertalk.services.analytics import AnalyticsTracker
from wondertalk.services.sessions import SessionService
from wondertalk.services.uploads import UploadService
from wondertalk.voice.providers import (
    ElevenLabsProvider,
    GeminiTTSProvider,
    SpeechRequest,
    SynthesisResult,
)
from wondertalk.voice.synthesizer import VoiceSynthesizer

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: AppConfig
    store: Store
    gemini: GeminiClient
    moderation: ModerationGate
    resolver: EntityResolver
    research: ResearchCache
    persona: PersonaEngine
    generator: ReplyGenerator
    synthesizer: VoiceSynthesizer
    speech: SpeechService
    ingestion: IngestionService
    sessions: SessionService
    uploads: UploadService
    analytics: AnalyticsTracker
    admin: AdminService
    orchestrator: AnalysisOrchestrator
    conversations: ConversationTurnEngine


def policy_from_config(config: AppConfig) -> PolicyConfig:
    return PolicyConfig(
        blocked_topics=list(config.safety.blocked_topics),
        allowed_source_domains=list(config.research.allowed_source_domains),
        max_reply_seconds=config.safety.max_reply_seconds,
        min_fact_confidence=config.research.min_fact_confidence,
    )


def build_context(
    config: AppConfig,
    *,
    store: Store | None = None,
    gemini_client: GeminiClient | None = None,
    voice_providers: list[Provider[SpeechRequest, SynthesisResult]] | None = None,
    scanner: MalwareScanner | None = None,
    rng: random.Random | None = None,
) -> AppContext:
    """Build every component for ``config``.

    Args:
        config: Application configuration.
        store: Backing store; a fresh in-memory store by default.
        gemini_client: Pre-built client; by default one is created from the
            configured Gemini key (disabled when there is none).
        voice_providers: Override the TTS providers.
        scanner: Malware scanner for uploads.
        rng: Random source for hooks and curiosity questions.
    """
    config.paths.ensure_dirs_exist()
    store = store or create_memory_store(policy_from_config(config))
    gemini = gemini_client or GeminiClient(config.gemini, api_key=get_api_key("gemini"))

    if voice_providers is None:
        voice_providers = [
            GeminiTTSProvider(gemini, config.voice),
            ElevenLabsProvider(config.voice, api_key=get_api_key("elevenlabs")),
        ]

    moderation = ModerationGate(store.incidents, strict_safety=config.safety.strict_safety)
    resolver = EntityResolver(gemini, identity_refinement=config.gemini.identity_refinement)
    research = ResearchCache(
        gemini,
        store,
        ttl_minutes=config.research.fact_cache_ttl_minutes,
        audience_tag=config.research.audience_tag,
    )
    persona = PersonaEngine(rng=rng)
    generator = ReplyGenerator(gemini)
    synthesizer = VoiceSynthesizer(
        voice_providers,
        store,
        config.paths.audio_dir,
        config.server.api_base_url,
        preference=config.voice.provider,
    )
    speech = SpeechService(gemini, fetch_timeout_seconds=config.gemini.request_timeout_seconds)
    ingestion = IngestionService(max_image_bytes=config.session.max_image_bytes, scanner=scanner)
    sessions = SessionService(store.sessions, ttl_minutes=config.session.session_ttl_minutes)
    uploads = UploadService(
        store.uploads,
        config.paths.uploads_dir,
        config.server.api_base_url,
        ttl_minutes=config.session.upload_ttl_minutes,
    )
    analytics = AnalyticsTracker(store.analytics, store.incidents)
    admin = AdminService(store.policy, store.incidents, config.voice)

    orchestrator = AnalysisOrchestrator(
        store=store,
        uploads=uploads,
        ingestion=ingestion,
        resolver=resolver,
        moderation=moderation,
        research=research,
        persona=persona,
        generator=generator,
        synthesizer=synthesizer,
        analytics=analytics,
    )
    conversations = ConversationTurnEngine(
        store=store,
        moderation=moderation,
        persona=persona,
        generator=generator,
        synthesizer=synthesizer,
        speech=speech,
        analytics=analytics,
    )

    logger.info(
        f"Pipeline ready (gemini {'on' if gemini.is_enabled() else 'off'}, "
        f"voices: {', '.join(synthesizer.provider_names) or 'none'})"
    )
    return AppContext(
        config=config,
        store=store,
        gemini=gemini,
        moderation=moderation,
        resolver=resolver,
        research=research,
        persona=persona,
        generator=generator,
        synthesizer=synthesizer,
        speech=speech,
        ingestion=ingestion,
        sessions=sessions,
        uploads=uploads,
        analytics=analytics,
        admin=admin,
        orchestrator=orchestrator,
        conversations=conversations,
    )
