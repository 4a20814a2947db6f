"""
Shared test doubles: in-memory object storage and a scripted archive decoder.
"""
import asyncio
from typing import Optional

import pytest

from pipeline.decoder import ArchiveEntry
from tools.storage import StorageError, UploadGrant


class MemoryWriteStream:
    def __init__(self, storage: "MemoryStorage", object_id: str, content_type: str):
        self.storage = storage
        self.object_id = object_id
        self.content_type = content_type
        self.parts: list[bytes] = []
        self.aborted = False
        self.closed = False
        self._released = False

    def _release(self) -> None:
        if not self._released:
            self._released = True
            self.storage.in_flight -= 1

    async def write(self, chunk: bytes) -> None:
        await asyncio.sleep(0)
        error = self.storage.write_failures.get(self.object_id)
        if error:
            raise StorageError(error)
        self.parts.append(chunk)

    async def close(self) -> None:
        await asyncio.sleep(self.storage.close_delays.get(self.object_id, 0))
        self._release()
        error = self.storage.close_failures.get(self.object_id)
        if error:
            raise StorageError(error)
        self.closed = True
        self.storage.objects[self.object_id] = b"".join(self.parts)
        self.storage.content_types[self.object_id] = self.content_type
        self.storage.journal.append(("stored", self.object_id))

    async def abort(self) -> None:
        self._release()
        self.aborted = True
        self.storage.journal.append(("aborted", self.object_id))


class MemoryStorage:
    """
    Object storage in a dict.

    write_failures / close_failures map destination ids to error messages;
    close_delays maps destination ids to seconds the confirmation takes.
    """

    bucket = "test-bucket"

    def __init__(self, objects: Optional[dict] = None, chunk_size: int = 7):
        self.objects: dict[str, bytes] = dict(objects or {})
        self.content_types: dict[str, str] = {}
        self.chunk_size = chunk_size
        self.write_failures: dict[str, str] = {}
        self.close_failures: dict[str, str] = {}
        self.close_delays: dict[str, float] = {}
        self.unreadable: set[str] = set()
        self.journal: list[tuple[str, str]] = []
        self.sinks: dict[str, MemoryWriteStream] = {}
        self.grants: list[tuple[str, str, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def open_read_stream(self, object_id: str):
        self.journal.append(("read", object_id))
        if object_id in self.unreadable or object_id not in self.objects:
            raise StorageError(f"object not found: {object_id}")
        data = self.objects[object_id]
        for start in range(0, len(data), self.chunk_size):
            await asyncio.sleep(0)
            yield data[start:start + self.chunk_size]

    async def open_write_stream(self, object_id: str, content_type: str) -> MemoryWriteStream:
        self.journal.append(("open", object_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        sink = MemoryWriteStream(self, object_id, content_type)
        self.sinks[object_id] = sink
        return sink

    async def create_upload_grant(self, object_id: str, content_type: str, ttl: int) -> UploadGrant:
        self.grants.append((object_id, content_type, ttl))
        return UploadGrant(
            upload_url=f"https://storage.test/upload/{object_id}?token=t0k",
            object_name=object_id,
            token="t0k",
            content_type=content_type,
            expires_in=ttl,
        )

    def public_url(self, object_id: str) -> str:
        return f"https://storage.test/{self.bucket}/{object_id}"

    async def aclose(self) -> None:
        pass


class ScriptedDecoder:
    """
    Decoder that ignores ZIP parsing: the archive bytes are a key into
    `archives`, which lists (name, content) pairs. content=None marks a
    directory; an Exception instance is raised at that point of the stream.

    Like a real streaming decoder, it refuses to advance while the previous
    entry still has unread chunks.
    """

    def __init__(self, archives: dict[bytes, list], chunk_size: int = 3):
        self.archives = archives
        self.chunk_size = chunk_size

    async def __call__(self, byte_stream):
        raw = b""
        async for chunk in byte_stream:
            raw += chunk

        pending = None
        for item in self.archives[raw]:
            if pending is not None and not pending["done"]:
                raise RuntimeError("previous entry was not consumed")
            if isinstance(item, Exception):
                raise item

            name, content = item
            state = {"done": False}
            pending = state
            yield ArchiveEntry(
                name=name,
                is_directory=content is None,
                chunks=self._chunks(content or b"", state),
                size=len(content or b""),
            )

    async def _chunks(self, content: bytes, state: dict):
        for start in range(0, len(content), self.chunk_size):
            await asyncio.sleep(0)
            yield content[start:start + self.chunk_size]
        state["done"] = True


async def chunked(*parts: bytes):
    for part in parts:
        await asyncio.sleep(0)
        yield part


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()
