"""
Session events broadcast to progress subscribers.

Each event is one SSE message:

    event: <progress|completed|error>
    data: <JSON payload>
"""
import json
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .state import ArchiveResult, RunSummary


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def payload(self) -> dict:
        """JSON-ready payload without the `type` tag."""
        return self.model_dump(mode="json", by_alias=True, exclude={"type"}, exclude_none=True)


class ProgressEvent(_Payload):
    """Archive progress, emitted on start and after every entry settles."""
    type: Literal["progress"] = "progress"
    zip_id: str
    progress: int = 0
    uploaded: int = 0
    failed: int = 0
    total_files: int = 0
    file: Optional[str] = None
    status: Optional[Literal["success", "failed"]] = None


class CompletedEvent(_Payload):
    """Every archive of the run reached its finished state."""
    type: Literal["completed"] = "completed"
    results: dict[str, ArchiveResult]
    summary: RunSummary


class ErrorEvent(_Payload):
    """The run stopped early."""
    type: Literal["error"] = "error"
    message: str
    zip_id: Optional[str] = None


SessionEvent = Annotated[
    Union[ProgressEvent, CompletedEvent, ErrorEvent],
    Field(discriminator="type"),
]


def encode_sse(event: SessionEvent) -> str:
    """Frame an event for a text/event-stream response."""
    data = json.dumps(event.payload(), ensure_ascii=False)
    return f"event: {event.type}\ndata: {data}\n\n"
