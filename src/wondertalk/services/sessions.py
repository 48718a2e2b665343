"""Anonymous device sessions.

A session is a random id plus a bearer token with a sliding expiry. There
are no accounts: the token only proves that requests come from the device
that created the session.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from wondertalk.core.models import DeviceCapabilities, SessionInfo, new_id, utcnow
from wondertalk.core.store import KeyValueStore

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Raised when session credentials are missing, invalid or expired."""

    pass


class SessionService:
    def __init__(
        self,
        sessions: KeyValueStore[SessionInfo],
        ttl_minutes: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    def create_session(
        self,
        locale: str | None = None,
        user_agent: str | None = None,
        device_capabilities: DeviceCapabilities | None = None,
    ) -> SessionInfo:
        now = self._clock()
        session = SessionInfo(
            created_at=now,
            expires_at=now + self._ttl,
            locale=locale or "en-US",
            user_agent=user_agent or "unknown",
            device_capabilities=device_capabilities,
        )
        self._sessions.set(session.session_id, session)
        logger.info(f"Created session {session.session_id} ({session.locale})")
        return session

    def validate_session(self, session_id: str, token: str) -> SessionInfo | None:
        """Return the session if ``token`` matches and it has not expired."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.expires_at < self._clock() or session.token != token:
            return None
        return session

    def require_session(self, session_id: str | None, token: str | None) -> SessionInfo:
        """Like ``validate_session`` but raises.

        Raises:
            SessionError: Credentials missing or not valid.
        """
        if not session_id or not token:
            raise SessionError("session_id and token are required")
        session = self.validate_session(session_id, token)
        if session is None:
            raise SessionError("Invalid or expired session")
        return session

    def rotate_session_token(self, session_id: str) -> SessionInfo | None:
        """Issue a new token and push the expiry out by one TTL."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        rotated = session.model_copy(
            update={"token": new_id(), "expires_at": self._clock() + self._ttl}
        )
        self._sessions.set(session_id, rotated)
        logger.debug(f"Rotated token for session {session_id}")
        return rotated
