"""aiohttp application exposing the discovery pipeline under ``/v1``.

Handlers stay thin: parse and validate the request, check the session (or
the admin key), call one component on the ``AppContext`` and serialise the
result. Typed errors raised by components are turned into JSON error
responses by ``error_middleware``.

Routes:
    GET  /v1/health
    POST /v1/session/create, /v1/session/rotate
    POST /v1/photo/upload-url        PUT /v1/upload/{upload_id}?token=
    GET  /v1/media/{upload_id}
    POST /v1/photo/analyze           GET /v1/photo/analyze/{analysis_id}
    POST /v1/chat/turn               POST /v1/speech/transcribe
    GET  /v1/audio/{audio_id}        POST /v1/feedback
    GET|PUT /v1/admin/policy, GET /v1/admin/voices|incidents|analytics

Example:
    >>> ctx = build_context(load_config())
    >>> web.run_app(create_app(ctx), port=ctx.config.server.port)
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from aiohttp import web
from pydantic import ValidationError

from wondertalk.api.schemas import (
    ChatTurnRequest,
    FeedbackRequest,
    PhotoAnalyzeRequest,
    SessionCreateRequest,
)
from wondertalk.context import AppContext
from wondertalk.core.models import AnalyticsEventName, FeedbackItem, SessionInfo, utcnow
from wondertalk.pipeline.conversation import ConversationError, ConversationNotFoundError
from wondertalk.pipeline.ingestion import IngestionError
from wondertalk.services.admin import PolicyUpdate
from wondertalk.services.rate_limit import FixedWindowRateLimiter, rate_limit_middleware
from wondertalk.services.sessions import SessionError
from wondertalk.services.uploads import UploadError

logger = logging.getLogger(__name__)

SERVICE_NAME = "wondertalk-api"
CONTEXT_KEY = web.AppKey("context", AppContext)
AUDIO_MIME_TYPES = frozenset({"audio/webm", "audio/wav", "audio/x-wav", "audio/mpeg", "audio/ogg"})
DEV_ORIGINS = ("http://localhost:5173", "http://127.0.0.1:5173")

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class ForbiddenError(Exception):
    """Authenticated, but not allowed to touch this resource."""

    pass


# =============================================================================
# Middleware
# =============================================================================


def _error(message: str, status: int, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as e:
        return _error("Invalid request", 400, details=json.loads(e.json(include_url=False)))
    except SessionError as e:
        return _error(str(e), 401)
    except ForbiddenError as e:
        return _error(str(e), 403)
    except ConversationNotFoundError as e:
        return _error(str(e), 404)
    except (ConversationError, IngestionError, UploadError) as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return _error("Internal server error", 500, detail=type(e).__name__)


def cors_middleware(allowed_origins: set[str]) -> Callable[..., Awaitable[web.StreamResponse]]:
    def _headers(origin: str) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
            "Access-Control-Allow-Headers": (
                "Content-Type, Authorization, X-Session-Id, X-Session-Token, "
                "X-Admin-Key, X-Device-Fingerprint"
            ),
            "Vary": "Origin",
        }

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        origin = request.headers.get("Origin", "")
        allowed = origin in allowed_origins
        if request.method == "OPTIONS":
            return web.Response(status=204, headers=_headers(origin) if allowed else {})

        response = await handler(request)
        if allowed:
            response.headers.update(_headers(origin))
        return response

    return middleware


# =============================================================================
# Request helpers
# =============================================================================


def _ctx(request: web.Request) -> AppContext:
    return request.app[CONTEXT_KEY]


async def _read_json(request: web.Request) -> dict[str, Any]:
    if not request.body_exists:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Expected JSON body."}), content_type="application/json"
        )
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Body must be a JSON object."}),
            content_type="application/json",
        )
    return body


def session_credentials(
    request: web.Request, body: dict[str, Any] | None = None
) -> tuple[str | None, str | None]:
    """Session id and token from headers, then the JSON body, then the query."""
    body = body or {}
    session_id = (
        request.headers.get("X-Session-Id")
        or body.get("session_id")
        or request.query.get("session_id")
    )

    auth = request.headers.get("Authorization", "")
    bearer = auth[7:].strip() if auth.startswith("Bearer ") else None
    token = request.headers.get("X-Session-Token") or body.get("token") or bearer

    return (
        str(session_id) if session_id else None,
        str(token) if token else None,
    )


def _require_session(request: web.Request, body: dict[str, Any] | None = None) -> SessionInfo:
    session_id, token = session_credentials(request, body)
    return _ctx(request).sessions.require_session(session_id, token)


def _require_admin(request: web.Request) -> None:
    expected = _ctx(request).config.server.admin_key.get_secret_value()
    provided = request.headers.get("X-Admin-Key", "")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise ForbiddenError("Forbidden")


def _same_session(claimed: Any, session: SessionInfo) -> None:
    if str(claimed) != session.session_id:
        raise ForbiddenError("session_id mismatch")


async def _read_file(path: str) -> bytes:
    return await asyncio.to_thread(Path(path).read_bytes)


# =============================================================================
# Handlers: sessions and uploads
# =============================================================================


async def handle_root(request: web.Request) -> web.Response:
    return web.json_response(
        {"service": SERVICE_NAME, "docs": "/v1/health", "timestamp": utcnow().isoformat()}
    )


async def handle_health(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    return web.json_response(
        {
            "ok": True,
            "service": SERVICE_NAME,
            "timestamp": utcnow().isoformat(),
            "gemini_enabled": ctx.gemini.is_enabled(),
            "voice_providers": ctx.synthesizer.provider_names,
        }
    )


async def handle_session_create(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    payload = SessionCreateRequest.model_validate(await _read_json(request))
    session = ctx.sessions.create_session(
        locale=payload.locale,
        user_agent=payload.user_agent or request.headers.get("User-Agent"),
        device_capabilities=payload.device_capabilities,
    )
    ctx.analytics.track(
        AnalyticsEventName.SESSION_CREATED, session.session_id, locale=session.locale
    )
    return web.json_response(
        {
            "session_id": session.session_id,
            "token": session.token,
            "expires_at": session.expires_at.isoformat(),
        },
        status=201,
    )


async def handle_session_rotate(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    session = _require_session(request, await _read_json(request))
    rotated = ctx.sessions.rotate_session_token(session.session_id)
    if rotated is None:
        return _error("Session not found", 404)
    return web.json_response(
        {
            "session_id": rotated.session_id,
            "token": rotated.token,
            "expires_at": rotated.expires_at.isoformat(),
        }
    )


async def handle_upload_url(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    session = _require_session(request, await _read_json(request))
    ticket = ctx.uploads.create_upload_target(session.session_id)
    ctx.analytics.track(
        AnalyticsEventName.UPLOAD_STARTED, session.session_id, upload_id=ticket.upload_id
    )
    return web.json_response(
        {
            "upload_id": ticket.upload_id,
            "upload_url": ticket.upload_url,
            "image_url": ticket.image_url,
            "expires_at": ticket.expires_at.isoformat(),
        },
        status=201,
    )


async def handle_upload_put(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    token = request.query.get("token")
    if not token:
        return _error("token query param is required", 400)
    if "Content-Type" not in request.headers:
        return _error("Content-Type header is required", 400)

    mime_type = request.content_type
    ctx.ingestion.validate_mime_type(mime_type)
    body = await request.read()
    ctx.ingestion.validate_size(len(body))

    await ctx.uploads.accept_upload(
        request.match_info["upload_id"],
        token,
        body,
        mime_type,
        original_filename=request.query.get("filename"),
    )
    return web.json_response({"ok": True})


async def handle_media(request: web.Request) -> web.Response:
    upload = _ctx(request).uploads.resolve_image(request.match_info["upload_id"])
    if upload is None or not upload.file_path or not upload.mime_type:
        return _error("Image not found", 404)
    data = await _read_file(upload.file_path)
    return web.Response(body=data, content_type=upload.mime_type)


# =============================================================================
# Handlers: analysis and conversation
# =============================================================================


async def handle_analyze(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    body = await _read_json(request)
    session = _require_session(request, body)
    payload = PhotoAnalyzeRequest.model_validate(body)
    _same_session(payload.session_id, session)

    analysis = ctx.orchestrator.create_analysis(session.session_id, str(payload.image_url))
    return web.json_response(
        {"analysis_id": analysis.analysis_id, "status": analysis.status.value}, status=202
    )


async def handle_analysis_get(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    session = _require_session(request)
    analysis = ctx.orchestrator.get_analysis(request.match_info["analysis_id"])
    if analysis is None:
        return _error("analysis not found", 404)
    if analysis.session_id != session.session_id:
        raise ForbiddenError("analysis/session mismatch")

    return web.json_response(
        {
            "analysis_id": analysis.analysis_id,
            "status": analysis.status.value,
            "entity": (
                analysis.entity.model_dump(mode="json", by_alias=True) if analysis.entity else None
            ),
            "hook_text": analysis.hook_text,
            "first_reply_text": analysis.first_reply_text,
            "first_reply_audio_stream_url": analysis.first_reply_audio_stream_url,
            "safety_status": analysis.safety_status.value if analysis.safety_status else None,
            "conversation_id": analysis.conversation_id,
            "error": analysis.error,
        }
    )


async def handle_chat_turn(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    body = await _read_json(request)
    session = _require_session(request, body)
    payload = ChatTurnRequest.model_validate(body)
    _same_session(payload.session_id, session)

    result = await ctx.conversations.chat_turn(
        session.session_id,
        str(payload.conversation_id),
        text=payload.text if payload.input_type == "text" else None,
        audio_ref=(
            str(payload.audio_blob_url)
            if payload.input_type == "voice" and payload.audio_blob_url
            else None
        ),
    )
    return web.json_response(
        {
            "reply_text": result.turn.assistant_text,
            "reply_audio_stream_url": result.reply_audio_stream_url,
            "followup_suggestions": result.followup_suggestions,
            "turn_id": result.turn.turn_id,
            "safety_verdict": result.turn.safety_verdict.value,
        }
    )


async def handle_transcribe(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    _require_session(request)
    if "Content-Type" not in request.headers:
        return _error("Content-Type is required", 400)
    mime_type = request.content_type
    if mime_type not in AUDIO_MIME_TYPES:
        return _error(f"Unsupported audio type: {mime_type}", 400)

    text = await ctx.speech.transcribe_bytes(await request.read(), mime_type)
    if not text:
        return _error("Unable to transcribe audio", 422)
    return web.json_response({"text": text})


async def handle_audio(request: web.Request) -> web.Response:
    asset = _ctx(request).synthesizer.resolve_audio(request.match_info["audio_id"])
    if asset is None:
        return _error("audio not found", 404)
    try:
        data = await _read_file(asset.file_path)
    except FileNotFoundError:
        return _error("audio not found", 404)
    return web.Response(
        body=data,
        content_type=asset.content_type.split(";")[0],
        headers={"Cache-Control": "public, max-age=300"},
    )


async def handle_feedback(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    body = await _read_json(request)
    session = _require_session(request, body)
    payload = FeedbackRequest.model_validate(body)
    _same_session(payload.session_id, session)

    ctx.store.feedback.append(
        FeedbackItem(
            session_id=session.session_id, turn_id=str(payload.turn_id), signal=payload.signal
        )
    )
    ctx.analytics.track(
        AnalyticsEventName.FEEDBACK_SUBMITTED, session.session_id, signal=payload.signal.value
    )
    return web.json_response({"ok": True}, status=202)


# =============================================================================
# Handlers: admin
# =============================================================================


async def handle_policy_get(request: web.Request) -> web.Response:
    _require_admin(request)
    return web.json_response(_ctx(request).admin.get_policy().model_dump(mode="json"))


async def handle_policy_put(request: web.Request) -> web.Response:
    _require_admin(request)
    update = PolicyUpdate.model_validate(await _read_json(request))
    policy = _ctx(request).admin.update_policy(update)
    return web.json_response(policy.model_dump(mode="json"))


async def handle_voices(request: web.Request) -> web.Response:
    _require_admin(request)
    voices = _ctx(request).admin.get_voices()
    return web.json_response([v.model_dump(mode="json") for v in voices])


async def handle_incidents(request: web.Request) -> web.Response:
    _require_admin(request)
    incidents = _ctx(request).admin.get_incidents()
    return web.json_response([i.model_dump(mode="json") for i in incidents])


async def handle_analytics(request: web.Request) -> web.Response:
    _require_admin(request)
    return web.json_response(_ctx(request).analytics.dashboard().model_dump(mode="json"))


# =============================================================================
# Application
# =============================================================================


def register_routes(app: web.Application) -> None:
    app.router.add_get("/", handle_root)
    app.router.add_get("/v1/health", handle_health)
    app.router.add_post("/v1/session/create", handle_session_create)
    app.router.add_post("/v1/session/rotate", handle_session_rotate)
    app.router.add_post("/v1/photo/upload-url", handle_upload_url)
    app.router.add_put("/v1/upload/{upload_id}", handle_upload_put)
    app.router.add_get("/v1/media/{upload_id}", handle_media)
    app.router.add_post("/v1/photo/analyze", handle_analyze)
    app.router.add_get("/v1/photo/analyze/{analysis_id}", handle_analysis_get)
    app.router.add_post("/v1/chat/turn", handle_chat_turn)
    app.router.add_post("/v1/speech/transcribe", handle_transcribe)
    app.router.add_get("/v1/audio/{audio_id}", handle_audio)
    app.router.add_post("/v1/feedback", handle_feedback)
    app.router.add_get("/v1/admin/policy", handle_policy_get)
    app.router.add_put("/v1/admin/policy", handle_policy_put)
    app.router.add_get("/v1/admin/voices", handle_voices)
    app.router.add_get("/v1/admin/incidents", handle_incidents)
    app.router.add_get("/v1/admin/analytics", handle_analytics)


def create_app(
    ctx: AppContext, rate_limiter: FixedWindowRateLimiter | None = None
) -> web.Application:
    """Build the aiohttp application around an ``AppContext``."""
    server = ctx.config.server
    limiter = rate_limiter or FixedWindowRateLimiter(
        max_requests=server.rate_limit_requests,
        window_seconds=server.rate_limit_window_seconds,
    )
    origins = {server.web_base_url, *DEV_ORIGINS}

    app = web.Application(
        middlewares=[error_middleware, cors_middleware(origins), rate_limit_middleware(limiter)],
        client_max_size=ctx.config.session.max_image_bytes + 1024 * 1024,
    )
    app[CONTEXT_KEY] = ctx
    register_routes(app)

    async def _shutdown(app: web.Application) -> None:
        await app[CONTEXT_KEY].orchestrator.shutdown()

    app.on_cleanup.append(_shutdown)
    return app


def run_server(ctx: AppContext, host: str | None = None, port: int | None = None) -> None:
    """Serve until interrupted."""
    server = ctx.config.server
    web.run_app(
        create_app(ctx),
        host=host or server.host,
        port=port or server.port,
        print=logger.info,
    )
