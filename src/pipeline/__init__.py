"""
Archive Pipeline Package

Streams archives out of object storage and relays every member back in:
- decoder: archive bytes → ArchiveEntry stream
- relay: one entry → one destination object
- archive: one archive → many concurrent relays + progress events
"""

from .archive import ArchivePipeline, ArchiveReadError
from .decoder import ArchiveEntry, zip_entries
from .events import (
    CompletedEvent,
    ErrorEvent,
    ProgressEvent,
    SessionEvent,
    encode_sse,
)
from .relay import EntryRelay, RelayResult
from .state import ArchiveResult, ArchiveState, EntryResult, RunSummary

__all__ = [
    # Pipeline
    "ArchivePipeline",
    "ArchiveReadError",
    "EntryRelay",
    "RelayResult",

    # Decoding
    "ArchiveEntry",
    "zip_entries",

    # Events
    "ProgressEvent",
    "CompletedEvent",
    "ErrorEvent",
    "SessionEvent",
    "encode_sse",

    # State
    "ArchiveResult",
    "ArchiveState",
    "EntryResult",
    "RunSummary",
]
