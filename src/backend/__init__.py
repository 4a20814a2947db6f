"""
HTTP layer for ZipRelay.

Usage:
    # Start server
    cd src
    python -m uvicorn backend.server:app --reload --port 3000
"""

from .adapter import stream_session_events, SSE_CONTENT_TYPE
from .server import app, create_app

__all__ = [
    "stream_session_events",
    "SSE_CONTENT_TYPE",
    "app",
    "create_app",
]
