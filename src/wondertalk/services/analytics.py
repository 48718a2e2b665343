"""Product analytics events and the parent dashboard summary."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from wondertalk.core.models import AnalyticsEvent, AnalyticsEventName, IncidentItem
from wondertalk.core.store import AppendLog

logger = logging.getLogger(__name__)

RECENT_EVENT_LIMIT = 100


class AnalyticsDashboard(BaseModel):
    total_sessions: int
    total_uploads: int
    average_turns_per_session: float
    safety_incidents: int
    events: list[AnalyticsEvent]


class AnalyticsTracker:
    def __init__(
        self, events: AppendLog[AnalyticsEvent], incidents: AppendLog[IncidentItem]
    ) -> None:
        self._events = events
        self._incidents = incidents

    def track(
        self, event_name: AnalyticsEventName, session_id: str, **metadata: Any
    ) -> AnalyticsEvent:
        event = AnalyticsEvent(event_name=event_name, session_id=session_id, metadata=metadata)
        self._events.append(event)
        logger.debug(f"Tracked {event_name.value} for session {session_id}")
        return event

    def dashboard(self) -> AnalyticsDashboard:
        """Aggregate counts over every recorded event."""
        events = list(self._events)
        sessions = {e.session_id for e in events}
        uploads = sum(1 for e in events if e.event_name is AnalyticsEventName.UPLOAD_STARTED)
        turns = sum(1 for e in events if e.event_name is AnalyticsEventName.CHAT_TURN)

        return AnalyticsDashboard(
            total_sessions=len(sessions),
            total_uploads=uploads,
            average_turns_per_session=round(turns / len(sessions), 2) if sessions else 0.0,
            safety_incidents=len(list(self._incidents)),
            events=events[-RECENT_EVENT_LIMIT:],
        )
