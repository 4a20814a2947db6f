"""
Result models for archive processing.

ArchiveResult is owned by its ArchivePipeline while the archive is running;
RunSummary is owned by the UploadCoordinator. Both are handed to the session
log only as frozen copies inside an event.
"""
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ArchiveState(str, Enum):
    STARTED = "started"
    RELAYING = "relaying"
    DRAINING = "draining"
    FINISHED = "finished"


class EntryResult(_Model):
    """Outcome of relaying one archive member."""
    name: str
    url: Optional[str] = None
    status: Literal["success", "failed"]
    size: int = 0
    error: Optional[str] = None


class ArchiveResult(_Model):
    """
    Per-archive counters.

    Invariant: uploaded + failed <= total, with equality once the archive
    is finished.
    """
    total: int = 0
    uploaded: int = 0
    failed: int = 0
    files: list[EntryResult] = Field(default_factory=list)

    @property
    def settled(self) -> int:
        return self.uploaded + self.failed

    def record(self, entry: EntryResult) -> None:
        if entry.status == "success":
            self.uploaded += 1
        else:
            self.failed += 1
        self.files.append(entry)

    def percent(self) -> int:
        """Uploaded share of the entries discovered so far, rounded half up."""
        if self.total == 0:
            return 0
        return int(self.uploaded * 100 / self.total + 0.5)


class ArchiveStatus(_Model):
    total: int = 0
    success: int = 0
    failed: int = 0


class RunSummary(_Model):
    """Totals across every archive of one processing request."""
    archive_count: int = 0
    files_processed: int = 0
    files_failed: int = 0
    elapsed_ms: int = 0
    per_archive_status: dict[str, ArchiveStatus] = Field(default_factory=dict)

    def add(self, archive_id: str, result: ArchiveResult) -> None:
        self.archive_count += 1
        self.files_processed += result.settled
        self.files_failed += result.failed
        self.per_archive_status[archive_id] = ArchiveStatus(
            total=result.total,
            success=result.uploaded,
            failed=result.failed,
        )
