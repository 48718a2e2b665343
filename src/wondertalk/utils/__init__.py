"""Utility helpers: logging setup and text handling."""

from wondertalk.utils.logging import LogContext, RedactingFilter, setup_logging
from wondertalk.utils.text import clamp, extract_json_object, sanitize_for_logs, slugify

__all__ = [
    "LogContext",
    "RedactingFilter",
    "setup_logging",
    "clamp",
    "extract_json_object",
    "sanitize_for_logs",
    "slugify",
]
