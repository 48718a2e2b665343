"""Tests for sessions, uploads, rate limiting, admin and analytics."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from wondertalk.config import VoiceConfig
from wondertalk.core.models import AnalyticsEventName, DeviceCapabilities, IncidentItem
from wondertalk.core.store import Store
from wondertalk.services.admin import AdminService, PolicyUpdate
from wondertalk.services.analytics import AnalyticsTracker
from wondertalk.services.rate_limit import FixedWindowRateLimiter
from wondertalk.services.sessions import SessionError, SessionService
from wondertalk.services.uploads import UploadError, UploadService

BASE_URL = "http://localhost:8787"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# =============================================================================
# Sessions
# =============================================================================


class TestSessionService:
    def test_create_and_validate(self, store: Store) -> None:
        service = SessionService(store.sessions)
        session = service.create_session(
            locale="fr-FR",
            device_capabilities=DeviceCapabilities(speech_recognition=True),
        )
        assert session.locale == "fr-FR"
        assert session.user_agent == "unknown"
        assert service.validate_session(session.session_id, session.token) == session
        assert service.validate_session(session.session_id, "wrong") is None
        assert service.validate_session("missing", session.token) is None

    def test_device_capabilities_accept_camel_case(self) -> None:
        caps = DeviceCapabilities.model_validate({"speechRecognition": True, "mediaRecorder": False})
        assert caps.speech_recognition is True
        assert caps.media_recorder is False

    def test_expired_session_is_invalid(self, store: Store) -> None:
        clock = FakeClock()
        service = SessionService(store.sessions, ttl_minutes=60, clock=clock)
        session = service.create_session()

        clock.advance(minutes=61)
        assert service.validate_session(session.session_id, session.token) is None
        with pytest.raises(SessionError):
            service.require_session(session.session_id, session.token)

    def test_require_session_needs_both_parts(self, store: Store) -> None:
        service = SessionService(store.sessions)
        with pytest.raises(SessionError, match="required"):
            service.require_session(None, "token")

    def test_rotate_issues_new_token_and_extends(self, store: Store) -> None:
        clock = FakeClock()
        service = SessionService(store.sessions, ttl_minutes=60, clock=clock)
        session = service.create_session()

        clock.advance(minutes=30)
        rotated = service.rotate_session_token(session.session_id)

        assert rotated is not None
        assert rotated.token != session.token
        assert rotated.expires_at == clock.now + timedelta(minutes=60)
        assert service.validate_session(session.session_id, session.token) is None
        assert service.validate_session(session.session_id, rotated.token) is not None
        assert service.rotate_session_token("missing") is None


# =============================================================================
# Uploads
# =============================================================================


class TestUploadService:
    def test_ticket_urls(self, store: Store, tmp_path: Path) -> None:
        service = UploadService(store.uploads, tmp_path, BASE_URL + "/")
        ticket = service.create_upload_target("s1")

        assert ticket.upload_url == f"{BASE_URL}/v1/upload/{ticket.upload_id}?token={ticket.token}"
        assert ticket.image_url == f"{BASE_URL}/v1/media/{ticket.upload_id}"
        assert service.resolve_image(ticket.upload_id) is None

    def test_accept_upload_stores_file(
        self, store: Store, tmp_path: Path, png_bytes: bytes
    ) -> None:
        service = UploadService(store.uploads, tmp_path / "uploads", BASE_URL)
        ticket = service.create_upload_target("s1")

        target = asyncio.run(
            service.accept_upload(
                ticket.upload_id, ticket.token, png_bytes, "image/png", original_filename="eiffel.png"
            )
        )

        assert target.consumed is True
        assert target.file_path.endswith(f"{ticket.upload_id}.png")
        assert Path(target.file_path).read_bytes() == png_bytes
        assert target.original_filename == "eiffel.png"
        assert service.resolve_image(ticket.upload_id) == target

    def test_upload_is_single_use(self, store: Store, tmp_path: Path, png_bytes: bytes) -> None:
        service = UploadService(store.uploads, tmp_path, BASE_URL)
        ticket = service.create_upload_target("s1")
        asyncio.run(service.accept_upload(ticket.upload_id, ticket.token, png_bytes, "image/png"))

        with pytest.raises(UploadError, match="consumed"):
            asyncio.run(
                service.accept_upload(ticket.upload_id, ticket.token, png_bytes, "image/png")
            )

    def test_failed_write_leaves_target_usable(
        self, store: Store, tmp_path: Path, png_bytes: bytes
    ) -> None:
        service = UploadService(store.uploads, tmp_path, BASE_URL)
        ticket = service.create_upload_target("s1")

        with patch(
            "wondertalk.services.uploads._write_file", side_effect=OSError("disk full")
        ):
            with pytest.raises(UploadError, match="try again"):
                asyncio.run(
                    service.accept_upload(ticket.upload_id, ticket.token, png_bytes, "image/png")
                )

        pending = service.get_upload(ticket.upload_id)
        assert pending.consumed is False
        assert service.resolve_image(ticket.upload_id) is None

        target = asyncio.run(
            service.accept_upload(ticket.upload_id, ticket.token, png_bytes, "image/png")
        )
        assert target.consumed is True
        assert Path(target.file_path).read_bytes() == png_bytes

    def test_rejects_bad_token_unknown_and_expired(
        self, store: Store, tmp_path: Path, png_bytes: bytes
    ) -> None:
        clock = FakeClock()
        service = UploadService(store.uploads, tmp_path, BASE_URL, ttl_minutes=10, clock=clock)
        ticket = service.create_upload_target("s1")

        with pytest.raises(UploadError, match="Invalid upload token"):
            asyncio.run(service.accept_upload(ticket.upload_id, "nope", png_bytes, "image/png"))
        with pytest.raises(UploadError, match="Unknown"):
            asyncio.run(service.accept_upload("missing", ticket.token, png_bytes, "image/png"))

        clock.advance(minutes=11)
        with pytest.raises(UploadError, match="expired"):
            asyncio.run(
                service.accept_upload(ticket.upload_id, ticket.token, png_bytes, "image/png")
            )


# =============================================================================
# Rate Limiting
# =============================================================================


class TestFixedWindowRateLimiter:
    def test_blocks_after_limit_until_window_resets(self) -> None:
        now = [0.0]
        limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=60, clock=lambda: now[0])

        assert [limiter.allow("fp:a") for _ in range(4)] == [True, True, True, False]
        assert limiter.allow("fp:b") is True

        now[0] = 61.0
        assert limiter.allow("fp:a") is True

    def test_prune_drops_expired_windows(self) -> None:
        now = [0.0]
        limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=10, clock=lambda: now[0])
        limiter.allow("a")
        limiter.allow("b")
        now[0] = 11.0
        assert limiter.prune() == 2
        assert limiter.prune() == 0

    def test_allow_sweeps_expired_windows(self) -> None:
        now = [0.0]
        limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=10, clock=lambda: now[0])
        for i in range(500):
            limiter.allow(f"fp:device-{i}")
        assert limiter.tracked_keys == 500

        now[0] = 11.0
        assert limiter.allow("fp:late") is True
        assert limiter.tracked_keys == 1

    def test_sweep_keeps_live_windows(self) -> None:
        now = [0.0]
        limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=10, clock=lambda: now[0])
        limiter.allow("old")
        now[0] = 5.0
        limiter.allow("busy")
        limiter.allow("busy")

        now[0] = 10.0
        assert limiter.allow("new") is True
        assert limiter.tracked_keys == 2
        assert limiter.allow("busy") is False


# =============================================================================
# Admin
# =============================================================================


class TestAdminService:
    def test_partial_policy_update_merges(self, store: Store) -> None:
        admin = AdminService(store.policy, store.incidents, VoiceConfig())
        before = admin.get_policy()

        updated = admin.update_policy(PolicyUpdate.model_validate({"maxReplySeconds": 25}))

        assert updated.max_reply_seconds == 25
        assert updated.allowed_source_domains == before.allowed_source_domains
        assert store.policy.get() == updated

    @pytest.mark.parametrize(
        "payload", [{"maxReplySeconds": 2}, {"maxReplySeconds": 99}, {"unknownField": 1}]
    )
    def test_invalid_policy_update(self, payload: dict) -> None:
        with pytest.raises(ValidationError):
            PolicyUpdate.model_validate(payload)

    def test_voices_cover_every_archetype_per_provider(self, store: Store) -> None:
        admin = AdminService(store.policy, store.incidents, VoiceConfig())
        voices = admin.get_voices()

        assert len(voices) == 8
        gemini = {v.archetype.value: v.voice_id for v in voices if v.provider == "gemini"}
        assert gemini == {"playful": "Leda", "wise": "Kore", "adventurous": "Aoede", "inventor": "Orus"}
        assert all(v.voice_id for v in voices if v.provider == "elevenlabs")

    def test_incidents_newest_first_and_capped(self, store: Store) -> None:
        admin = AdminService(store.policy, store.incidents, VoiceConfig())
        for i in range(5):
            store.incidents.append(IncidentItem(session_id="s", reason=f"r{i}", payload="p"))

        incidents = admin.get_incidents(limit=3)
        assert [i.reason for i in incidents] == ["r4", "r3", "r2"]


# =============================================================================
# Analytics
# =============================================================================


class TestAnalyticsTracker:
    def test_dashboard_counts(self, store: Store) -> None:
        tracker = AnalyticsTracker(store.analytics, store.incidents)
        tracker.track(AnalyticsEventName.SESSION_CREATED, "s1")
        tracker.track(AnalyticsEventName.SESSION_CREATED, "s2")
        tracker.track(AnalyticsEventName.UPLOAD_STARTED, "s1", upload_id="u1")
        tracker.track(AnalyticsEventName.CHAT_TURN, "s1")
        tracker.track(AnalyticsEventName.CHAT_TURN, "s1")
        tracker.track(AnalyticsEventName.CHAT_TURN, "s2")
        store.incidents.append(IncidentItem(session_id="s1", reason="r", payload="p"))

        dashboard = tracker.dashboard()

        assert dashboard.total_sessions == 2
        assert dashboard.total_uploads == 1
        assert dashboard.average_turns_per_session == 1.5
        assert dashboard.safety_incidents == 1
        assert dashboard.events[2].metadata == {"upload_id": "u1"}

    def test_empty_dashboard(self, store: Store) -> None:
        dashboard = AnalyticsTracker(store.analytics, store.incidents).dashboard()
        assert dashboard.total_sessions == 0
        assert dashboard.average_turns_per_session == 0.0

    def test_recent_events_are_capped(self, store: Store) -> None:
        tracker = AnalyticsTracker(store.analytics, store.incidents)
        for i in range(120):
            tracker.track(AnalyticsEventName.CHAT_TURN, f"s{i}")
        events = tracker.dashboard().events
        assert len(events) == 100
        assert events[-1].session_id == "s119"
