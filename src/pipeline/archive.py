"""
ArchivePipeline: one archive, many concurrent relays.

    STARTED ──► (per entry: RELAYING)* ──► DRAINING ──► FINISHED

Entries are discovered while the archive streams in, so `total` grows as we
go and progress is computed against the entries known at settlement time.
The archive finishes only after every launched relay has settled.
"""
import asyncio
from typing import Callable, Optional

from config import Config
from tools.storage import StorageBackend, build_storage_path
from .decoder import Decoder, zip_entries
from .events import ProgressEvent, SessionEvent
from .relay import EntryRelay, RelayResult, describe_error
from .state import ArchiveResult, ArchiveState, EntryResult


class ArchiveReadError(Exception):
    """The archive stream itself could not be read or parsed."""

    def __init__(self, archive_id: str, message: str):
        super().__init__(message)
        self.archive_id = archive_id
        self.message = message


class ArchivePipeline:
    """
    Extract one archive from storage and relay its members back to storage.

    Args:
        archive_id: Object id of the archive in storage
        storage: Backend for both the archive read and the member writes
        emit: Called with each progress event, in settlement order
        decoder: Turns the archive byte stream into ArchiveEntry objects
        destination_prefix: Prefix for every uploaded member
        max_concurrent_relays: Upper bound on in-flight relays
    """

    def __init__(
        self,
        archive_id: str,
        storage: StorageBackend,
        emit: Callable[[SessionEvent], None],
        decoder: Decoder = zip_entries,
        destination_prefix: str = Config.DESTINATION_PREFIX,
        max_concurrent_relays: int = Config.MAX_CONCURRENT_RELAYS,
    ):
        self.archive_id = archive_id
        self.storage = storage
        self.decoder = decoder
        self.destination_prefix = destination_prefix
        self.state = ArchiveState.STARTED
        self.result = ArchiveResult()
        self._emit = emit
        self._slots = asyncio.Semaphore(max(1, max_concurrent_relays))

    def _progress(self, file: Optional[str] = None, status: Optional[str] = None) -> ProgressEvent:
        return ProgressEvent(
            zip_id=self.archive_id,
            progress=self.result.percent(),
            uploaded=self.result.uploaded,
            failed=self.result.failed,
            total_files=self.result.total,
            file=file,
            status=status,
        )

    async def run(self) -> ArchiveResult:
        """
        Process the archive to completion.

        Returns:
            The finished ArchiveResult (uploaded + failed == total)

        Raises:
            ArchiveReadError: If the archive stream fails; relays that were
                already launched are allowed to settle first
        """
        print(f"📦 [ARCHIVE] {self.archive_id}: started", flush=True)
        self.state = ArchiveState.STARTED
        self._emit(self._progress())

        tasks: list[asyncio.Task] = []
        read_error: Optional[Exception] = None

        try:
            source = self.storage.open_read_stream(self.archive_id)
            async for entry in self.decoder(source):
                if entry.is_directory:
                    await entry.drain()
                    continue

                self.result.total += 1
                await self._slots.acquire()
                self.state = ArchiveState.RELAYING

                relay = EntryRelay(
                    self.storage,
                    entry.name,
                    build_storage_path(self.destination_prefix, entry.name),
                    entry.chunks,
                )
                tasks.append(asyncio.create_task(self._relay_and_record(relay)))

                # Next entry is only readable once this one is consumed
                await relay.drained.wait()
        except Exception as e:
            read_error = e

        self.state = ArchiveState.DRAINING
        await asyncio.gather(*tasks)
        self.state = ArchiveState.FINISHED

        if read_error is not None:
            message = describe_error(read_error)
            if message == read_error.__class__.__name__:
                message = f"archive truncated or corrupt ({message})"
            print(f"❌ [ARCHIVE] {self.archive_id}: unreadable archive: {message}", flush=True)
            raise ArchiveReadError(self.archive_id, message) from read_error

        print(
            f"✅ [ARCHIVE] {self.archive_id}: {self.result.uploaded}/{self.result.total} uploaded, "
            f"{self.result.failed} failed",
            flush=True,
        )
        return self.result

    async def _relay_and_record(self, relay: EntryRelay) -> RelayResult:
        try:
            outcome = await relay.run()
        finally:
            self._slots.release()

        self.result.record(EntryResult(
            name=relay.name,
            url=outcome.url,
            status=outcome.status,
            size=outcome.bytes_written,
            error=outcome.error,
        ))
        self._emit(self._progress(file=relay.name, status=outcome.status))
        return outcome
