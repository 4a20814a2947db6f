"""
Orchestrator package.

Architecture:
    /process ─► UploadCoordinator ─► ArchivePipeline (one archive at a time)
                      │
                      └─► Session.log ─► EventSink ─► /progress (SSE)

Sessions live in an injected SessionRegistry; nothing here is global.
"""
from .coordinator import UploadCoordinator
from .event_log import EventLog, EventSink
from .session import Session, SessionRegistry

__all__ = [
    "UploadCoordinator",
    "EventLog",
    "EventSink",
    "Session",
    "SessionRegistry",
]
