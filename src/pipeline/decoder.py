"""
ZIP decoding on top of stream-unzip.

Entries come out in the order they appear in the archive. Each entry's chunks
must be fully consumed before the next entry can be read, which is what
`ArchiveEntry.drain()` is for.
"""
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Callable, Optional

from stream_unzip import async_stream_unzip

from config import Config


@dataclass
class ArchiveEntry:
    """One member of an archive."""
    name: str
    is_directory: bool
    chunks: AsyncIterator[bytes]
    size: Optional[int] = None

    async def drain(self) -> None:
        async for _ in self.chunks:
            pass


Decoder = Callable[[AsyncIterable[bytes]], AsyncIterator[ArchiveEntry]]


def _decode_name(raw) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        # Legacy ZIP writers use the IBM PC code page
        return raw.decode("cp437")


async def zip_entries(
    byte_stream: AsyncIterable[bytes],
    chunk_size: int = Config.ARCHIVE_CHUNK_SIZE,
) -> AsyncIterator[ArchiveEntry]:
    """
    Lazily demultiplex a ZIP byte stream into entries.

    Args:
        byte_stream: Raw archive bytes, e.g. a storage read stream
        chunk_size: Size of the decompressed chunks handed to consumers

    Yields:
        ArchiveEntry per member; directory markers have is_directory=True
    """
    async for raw_name, size, chunks in async_stream_unzip(byte_stream, chunk_size=chunk_size):
        name = _decode_name(raw_name)
        yield ArchiveEntry(
            name=name,
            is_directory=name.endswith("/"),
            chunks=chunks,
            size=size,
        )
