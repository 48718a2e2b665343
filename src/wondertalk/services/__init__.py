"""Thin collaborators around the pipeline: sessions, uploads, analytics, admin, rate limits."""

from wondertalk.services.admin import AdminService, PolicyUpdate, VoiceOption
from wondertalk.services.analytics import AnalyticsDashboard, AnalyticsTracker
from wondertalk.services.rate_limit import FixedWindowRateLimiter, rate_limit_middleware
from wondertalk.services.sessions import SessionError, SessionService
from wondertalk.services.uploads import UploadError, UploadService, UploadTicket

__all__ = [
    "AdminService",
    "AnalyticsDashboard",
    "AnalyticsTracker",
    "FixedWindowRateLimiter",
    "PolicyUpdate",
    "SessionError",
    "SessionService",
    "UploadError",
    "UploadService",
    "UploadTicket",
    "VoiceOption",
    "rate_limit_middleware",
]
