"""Analysis Orchestrator - the photo-to-first-reply pipeline.

``create_analysis`` records a ``queued`` result and returns immediately; the
heavy lifting runs as a background task on the event loop while clients poll
``get_analysis``. The pipeline:

1. Resolve the upload behind the media URL and check it belongs to the session
2. Validate, scan and normalise the image
3. Detect the entity (moderating the vision label)
4. Fetch the fact pack and build persona and hook
5. Generate the opening reply (template fallback), moderate it, voice it
6. Create the conversation and mark the analysis ready

Status only moves forward: queued -> processing -> ready | failed. Missing
audio never fails an analysis; a bad upload always does.

Example:
    >>> analysis = orchestrator.create_analysis(session_id, image_url)
    >>> analysis.status
    <AnalysisStatus.QUEUED: 'queued'>
    >>> final = await orchestrator.wait(analysis.analysis_id)
    >>> final.status, final.conversation_id
"""

from __future__ import annotations

import asyncio
import logging
import re
from functools import partial
from pathlib import Path
from typing import Any

from wondertalk.ai.generation import ReplyGenerator
from wondertalk.ai.research import ResearchCache
from wondertalk.ai.vision import EntityResolver, mystery_entity
from wondertalk.core.models import (
    AnalysisResult,
    AnalysisStatus,
    AnalyticsEventName,
    ConversationState,
    ConversationTurn,
    utcnow,
)
from wondertalk.core.moderation import ModerationGate
from wondertalk.core.persona import PersonaEngine
from wondertalk.core.store import Store
from wondertalk.pipeline.ingestion import IngestionError, IngestionService
from wondertalk.services.analytics import AnalyticsTracker
from wondertalk.services.uploads import UploadService
from wondertalk.utils.logging import LogContext
from wondertalk.voice.synthesizer import VoiceSynthesizer

logger = logging.getLogger(__name__)

INITIAL_TURN_INPUT = "[initial-analysis]"
OPENING_FACT_COUNT = 3
OPENING_USED_INDEXES = (0, 1)

_UPLOAD_ID = re.compile(r"/v1/media/([A-Fa-f0-9-]+)")

_TRANSITIONS: dict[AnalysisStatus, frozenset[AnalysisStatus]] = {
    AnalysisStatus.QUEUED: frozenset({AnalysisStatus.PROCESSING, AnalysisStatus.FAILED}),
    AnalysisStatus.PROCESSING: frozenset({AnalysisStatus.READY, AnalysisStatus.FAILED}),
    AnalysisStatus.READY: frozenset(),
    AnalysisStatus.FAILED: frozenset(),
}


# =============================================================================
# Exceptions
# =============================================================================


class AnalysisError(Exception):
    """Base class for errors that end an analysis as ``failed``."""

    pass


class InvalidImageUrlError(AnalysisError):
    def __init__(self, image_url: str) -> None:
        super().__init__(f"Invalid image URL: {image_url}")


class ImageNotFoundError(AnalysisError):
    def __init__(self, upload_id: str) -> None:
        super().__init__(f"Image not found: {upload_id}")


class SessionMismatchError(AnalysisError):
    def __init__(self) -> None:
        super().__init__("Image session mismatch")


class InvalidTransitionError(AnalysisError):
    """Raised on an attempt to move an analysis backwards or out of a terminal state."""

    def __init__(self, analysis_id: str, current: AnalysisStatus, target: AnalysisStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Analysis {analysis_id} cannot move from {current.value} to {target.value}"
        )


def parse_upload_id(image_url: str) -> str | None:
    match = _UPLOAD_ID.search(image_url)
    return match.group(1) if match else None


# =============================================================================
# Orchestrator
# =============================================================================


class AnalysisOrchestrator:
    """Runs analyses in the background and owns their state machine."""

    def __init__(
        self,
        store: Store,
        uploads: UploadService,
        ingestion: IngestionService,
        resolver: EntityResolver,
        moderation: ModerationGate,
        research: ResearchCache,
        persona: PersonaEngine,
        generator: ReplyGenerator,
        synthesizer: VoiceSynthesizer,
        analytics: AnalyticsTracker,
    ) -> None:
        self._store = store
        self._uploads = uploads
        self._ingestion = ingestion
        self._resolver = resolver
        self._moderation = moderation
        self._research = research
        self._persona = persona
        self._generator = generator
        self._synthesizer = synthesizer
        self._analytics = analytics
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def create_analysis(self, session_id: str, image_url: str) -> AnalysisResult:
        """Queue an analysis and start processing it.

        Must be called from within a running event loop.
        """
        analysis = AnalysisResult(session_id=session_id, image_url=image_url)
        self._store.analyses.set(analysis.analysis_id, analysis)
        self._analytics.track(
            AnalyticsEventName.ANALYSIS_REQUESTED, session_id, analysis_id=analysis.analysis_id
        )

        task = asyncio.create_task(self._process(analysis.analysis_id))
        self._tasks[analysis.analysis_id] = task
        task.add_done_callback(partial(self._on_task_done, analysis.analysis_id))
        return analysis

    def get_analysis(self, analysis_id: str) -> AnalysisResult | None:
        return self._store.analyses.get(analysis_id)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def wait(self, analysis_id: str, timeout: float | None = None) -> AnalysisResult | None:
        """Wait for a running analysis to finish (or ``timeout`` to pass).

        Timing out does not cancel the analysis.
        """
        task = self._tasks.get(analysis_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return self.get_analysis(analysis_id)

    async def shutdown(self) -> None:
        """Cancel analyses still running, e.g. on server shutdown."""
        if self.pending_count:
            logger.info(f"Cancelling {self.pending_count} running analyses")
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def _transition(self, analysis_id: str, status: AnalysisStatus, **fields: Any) -> AnalysisResult:
        current = self._store.analyses.get(analysis_id)
        if current is None:
            raise KeyError(analysis_id)
        if status not in _TRANSITIONS[current.status]:
            raise InvalidTransitionError(analysis_id, current.status, status)

        updated = current.model_copy(update={**fields, "status": status, "updated_at": utcnow()})
        self._store.analyses.set(analysis_id, updated)
        logger.debug(f"Analysis {analysis_id}: {current.status.value} -> {status.value}")
        return updated

    def _fail(self, analysis_id: str, error: str) -> None:
        current = self._store.analyses.get(analysis_id)
        if current is None or current.status.is_terminal:
            return
        self._transition(analysis_id, AnalysisStatus.FAILED, error=error)
        logger.warning(f"Analysis {analysis_id} failed: {error}")

    def _on_task_done(self, analysis_id: str, task: asyncio.Task[None]) -> None:
        self._tasks.pop(analysis_id, None)
        if task.cancelled():
            self._fail(analysis_id, "Analysis cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Unexpected error in analysis {analysis_id}",
                exc_info=(type(error), error, error.__traceback__),
            )
            self._fail(analysis_id, f"{type(error).__name__}: {error}")

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    async def _process(self, analysis_id: str) -> None:
        analysis = self._store.analyses.get(analysis_id)
        if analysis is None:
            return

        self._transition(analysis_id, AnalysisStatus.PROCESSING)
        try:
            with LogContext(f"Analysis {analysis_id}", level=logging.DEBUG, logger=logger):
                await self._run(analysis)
        except (AnalysisError, IngestionError) as e:
            self._fail(analysis_id, str(e))

    async def _run(self, analysis: AnalysisResult) -> None:
        session_id = analysis.session_id

        upload_id = parse_upload_id(analysis.image_url)
        if upload_id is None:
            raise InvalidImageUrlError(analysis.image_url)
        upload = self._uploads.resolve_image(upload_id)
        if upload is None or not upload.file_path or not upload.mime_type:
            raise ImageNotFoundError(upload_id)
        if upload.session_id != session_id:
            raise SessionMismatchError()

        self._ingestion.validate_mime_type(upload.mime_type)
        source_path = Path(upload.file_path)
        await self._ingestion.malware_scan(source_path)
        image = await self._ingestion.preprocess_image(source_path)

        entity = await self._resolver.detect_entity(
            image.data, image.mime_type, upload.original_filename or source_path.name
        )
        label_check = self._moderation.moderate_image_label(session_id, entity.detected_label)
        if not label_check.allowed:
            entity = mystery_entity()

        fact_pack = await self._research.get_fact_pack(entity)
        persona = self._persona.build_persona(entity)
        hook = self._persona.build_hook(entity)

        draft = await self._generator.opening_reply(
            entity, hook, fact_pack.summary, fact_pack.facts[:OPENING_FACT_COUNT]
        )
        if draft is None:
            draft = self._persona.build_first_reply(fact_pack, hook)

        moderated = self._moderation.moderate_output(session_id, draft)
        reply_text = moderated.transformed_text or draft

        voice = await self._synthesizer.synthesize_to_asset(reply_text, persona.voice_archetype)

        conversation = ConversationState(
            session_id=session_id,
            entity=entity,
            fact_pack=fact_pack,
            persona=persona,
            used_fact_indexes={i for i in OPENING_USED_INDEXES if i < len(fact_pack.facts)},
            turns=[
                ConversationTurn(
                    user_input=INITIAL_TURN_INPUT,
                    assistant_text=reply_text,
                    safety_verdict=moderated.verdict,
                )
            ],
        )
        self._store.conversations.set(conversation.conversation_id, conversation)

        self._transition(
            analysis.analysis_id,
            AnalysisStatus.READY,
            entity=entity,
            hook_text=hook,
            first_reply_text=reply_text,
            first_reply_audio_stream_url=voice.stream_url if voice else None,
            safety_status=moderated.verdict,
            conversation_id=conversation.conversation_id,
        )
        self._analytics.track(
            AnalyticsEventName.FIRST_AUDIO_READY,
            session_id,
            analysis_id=analysis.analysis_id,
            has_audio=voice is not None,
            entity=entity.label,
        )
        logger.info(
            f"Analysis {analysis.analysis_id} ready: {entity.entity_id} "
            f"({'with' if voice else 'without'} audio)"
        )
