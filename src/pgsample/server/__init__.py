"""HTTP surface: Starlette application, request bodies and rate-limit headers."""

from pgsample.server.app import SyncServer, create_app, rate_limit_headers
from pgsample.server.requests import LiveQueryRequest, SyncRequest

__all__ = [
    "LiveQueryRequest",
    "SyncRequest",
    "SyncServer",
    "create_app",
    "rate_limit_headers",
]
