"""HTTP surface of the discovery service (aiohttp)."""

from wondertalk.api.app import CONTEXT_KEY, create_app, run_server

__all__ = ["CONTEXT_KEY", "create_app", "run_server"]
