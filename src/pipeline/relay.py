"""
EntryRelay: stream one archive member into object storage.

    entry chunks ──► WriteStream.write() ... WriteStream.close() ──► settled

A relay settles only after the destination confirms the object is stored.
`drained` fires earlier, as soon as the source entry is fully read, so the
archive decoder can move on while the upload is still being finalised.
"""
import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Literal, Optional

from config import Config
from tools.storage import StorageBackend, guess_content_type


@dataclass(frozen=True)
class RelayResult:
    status: Literal["success", "failed"]
    bytes_written: int = 0
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


def describe_error(exc: BaseException) -> str:
    """First non-empty message along the exception chain, else the class name."""
    current = exc
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if str(current):
            return str(current)
        current = current.__cause__ or current.__context__
    return exc.__class__.__name__


class EntryRelay:
    """
    Relay a single entry's bytes to `destination`.

    Usage:
        relay = EntryRelay(storage, "x.png", "extracted/x.png", entry.chunks)
        task = asyncio.create_task(relay.run())
        await relay.drained.wait()   # safe to read the next entry
        result = await task          # destination confirmed (or failed)
    """

    def __init__(
        self,
        storage: StorageBackend,
        name: str,
        destination: str,
        chunks: AsyncIterator[bytes],
    ):
        self.storage = storage
        self.name = name
        self.destination = destination
        self.drained = asyncio.Event()
        self.bytes_written = 0
        self._chunks = chunks
        self._settled = False

    async def run(self) -> RelayResult:
        """Pipe the entry and resolve exactly once."""
        if self._settled:
            raise RuntimeError(f"relay for {self.name} already ran")
        self._settled = True

        sink = None
        try:
            sink = await self.storage.open_write_stream(
                self.destination, guess_content_type(self.name)
            )
            async for chunk in self._chunks:
                await sink.write(chunk)
                self.bytes_written += len(chunk)
            self.drained.set()

            # Durable completion is decided by the destination, not by us
            await sink.close()
        except Exception as e:
            error = describe_error(e)
            print(f"   ❌ [RELAY] {self.name}: {error}", flush=True)
            if sink is not None:
                await sink.abort()
            await self._discard_rest()
            return RelayResult(status="failed", bytes_written=self.bytes_written, error=error)
        finally:
            self.drained.set()

        if Config.DEBUG:
            print(f"   ✓ [RELAY] {self.name} → {self.destination} ({self.bytes_written} bytes)", flush=True)
        return RelayResult(
            status="success",
            bytes_written=self.bytes_written,
            url=self.storage.public_url(self.destination),
        )

    async def _discard_rest(self) -> None:
        # The decoder cannot reach the next entry until this one is consumed
        if self.drained.is_set():
            return
        try:
            async for _ in self._chunks:
                pass
        except Exception as e:
            print(f"   ⚠️  [RELAY] {self.name}: source unreadable after failure: {describe_error(e)}", flush=True)
