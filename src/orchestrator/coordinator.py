"""
UploadCoordinator: one processing request, archives one at a time.

    archive 1 ──► finished ──► archive 2 ──► finished ──► ... ──► completed

Entries inside an archive relay concurrently; archives never overlap. A
failure to read an archive ends the run with an `error` event and the
remaining archives are not attempted.
"""
import asyncio
import time
import traceback
from typing import Optional

from config import Config
from pipeline.archive import ArchivePipeline, ArchiveReadError
from pipeline.decoder import Decoder, zip_entries
from pipeline.events import CompletedEvent, ErrorEvent
from pipeline.relay import describe_error
from pipeline.state import ArchiveResult, RunSummary
from tools.storage import StorageBackend
from .session import Session, SessionRegistry


class UploadCoordinator:
    """
    Drives ArchivePipelines for a session and reports through its event log.

    Usage:
        coordinator = UploadCoordinator(registry, storage)
        coordinator.launch(session_id, ["uploads/abc/a.zip", "uploads/abc/b.zip"])
    """

    def __init__(
        self,
        registry: SessionRegistry,
        storage: StorageBackend,
        decoder: Decoder = zip_entries,
        destination_prefix: str = Config.DESTINATION_PREFIX,
        max_concurrent_relays: int = Config.MAX_CONCURRENT_RELAYS,
    ):
        self.registry = registry
        self.storage = storage
        self.decoder = decoder
        self.destination_prefix = destination_prefix
        self.max_concurrent_relays = max_concurrent_relays
        self._runs: set[asyncio.Task] = set()

    def launch(self, session_id: str, archive_ids: list[str]) -> asyncio.Task:
        """
        Start a run in the background and return its task.

        The session is marked running before this returns, so it exists (and
        will not expire) by the time the caller answers the request.
        """
        session = self.registry.start_run(session_id)
        task = asyncio.create_task(self._process(session, archive_ids))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def run(self, session_id: str, archive_ids: list[str]) -> Optional[RunSummary]:
        """
        Process every archive, in order.

        Returns:
            The RunSummary, or None if the run stopped on an error
        """
        session = self.registry.start_run(session_id)
        return await self._process(session, archive_ids)

    async def _process(self, session: Session, archive_ids: list[str]) -> Optional[RunSummary]:
        session_id = session.id
        emit = session.log.append
        started = time.monotonic()
        results: dict[str, ArchiveResult] = {}
        summary = RunSummary()

        print(f"\n🚀 [PROCESS] session={session_id[:8]} archives={len(archive_ids)}", flush=True)

        try:
            for archive_id in archive_ids:
                pipeline = ArchivePipeline(
                    archive_id,
                    self.storage,
                    emit,
                    decoder=self.decoder,
                    destination_prefix=self.destination_prefix,
                    max_concurrent_relays=self.max_concurrent_relays,
                )
                result = await pipeline.run()
                results[archive_id] = result
                summary.add(archive_id, result)

            summary.elapsed_ms = int((time.monotonic() - started) * 1000)
            emit(CompletedEvent(
                results={key: value.model_copy(deep=True) for key, value in results.items()},
                summary=summary.model_copy(deep=True),
            ))
            print(
                f"🏁 [PROCESS] session={session_id[:8]} done: {summary.files_processed} files, "
                f"{summary.files_failed} failed, {summary.elapsed_ms} ms",
                flush=True,
            )
            return summary

        except ArchiveReadError as e:
            emit(ErrorEvent(message=e.message, zip_id=e.archive_id))
            return None

        except Exception as e:
            traceback.print_exc()
            print(f"❌ [PROCESS] session={session_id[:8]} failed: {describe_error(e)}", flush=True)
            emit(ErrorEvent(message=describe_error(e)))
            return None

        finally:
            self.registry.finish_run(session_id)

    async def shutdown(self) -> None:
        """Cancel background runs (application shutdown)."""
        runs = list(self._runs)
        for task in runs:
            task.cancel()
        await asyncio.gather(*runs, return_exceptions=True)
