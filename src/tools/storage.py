"""
Supabase Storage backend for streamed archive relays.

Stream-First Architecture:
    1. Archive objects are read as a byte stream (never fully downloaded)
    2. Each extracted member is written through a bounded write stream
    3. Public URLs are derived from bucket + path, no extra request needed

Usage:
    from tools.storage import SupabaseStorage

    storage = SupabaseStorage.from_config()

    async for chunk in storage.open_read_stream("uploads/abc/photos.zip"):
        ...

    sink = await storage.open_write_stream("extracted/x.png", "image/png")
    await sink.write(b"...")
    await sink.close()   # returns once Supabase has stored the object
"""
import asyncio
import mimetypes
import posixpath
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol
from urllib.parse import quote

import httpx
from supabase import create_client, Client

from config import Config


# Supabase signs upload URLs for a fixed two hours
SIGNED_UPLOAD_MAX_TTL = 2 * 60 * 60


class StorageError(Exception):
    """A storage read, write or signing request failed."""


@dataclass(frozen=True)
class UploadGrant:
    """Pre-authorized URL a client can PUT an archive to."""
    upload_url: str
    object_name: str
    token: Optional[str]
    content_type: str
    expires_in: int


class WriteStream(Protocol):
    async def write(self, chunk: bytes) -> None: ...

    async def close(self) -> None: ...

    async def abort(self) -> None: ...


class StorageBackend(Protocol):
    """Interface the pipeline needs from object storage."""

    def open_read_stream(self, object_id: str) -> AsyncIterator[bytes]: ...

    async def open_write_stream(self, object_id: str, content_type: str) -> WriteStream: ...

    async def create_upload_grant(self, object_id: str, content_type: str, ttl: int) -> UploadGrant: ...

    def public_url(self, object_id: str) -> str: ...


# ─────────────────────────────────────────────────────────────
# Path helpers
# ─────────────────────────────────────────────────────────────

def build_storage_path(*parts: str) -> str:
    """
    Join path parts into a bucket-relative object path.

    Leading slashes, empty segments, "." and ".." are dropped so an archive
    member can never escape its prefix.

    Example:
        build_storage_path("extracted", "/photos/../x.png")
        # -> "extracted/photos/x.png"
    """
    segments = []
    for part in parts:
        for segment in part.replace("\\", "/").split("/"):
            if segment in ("", ".", ".."):
                continue
            segments.append(segment)
    return "/".join(segments)


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or "application/octet-stream"


def is_zip_name(name: str) -> bool:
    return posixpath.splitext(name)[1].lower() == ".zip"


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.status_code < 400:
        return
    try:
        detail = response.json().get("message") or response.text
    except ValueError:
        detail = response.text
    raise StorageError(f"{action} failed ({response.status_code}): {detail}")


# ─────────────────────────────────────────────────────────────
# Write stream
# ─────────────────────────────────────────────────────────────

class SupabaseWriteStream:
    """
    Streams one object upload to Supabase Storage.

    Chunks go through a bounded queue into a chunked POST request, so at most
    `max_buffered_chunks` chunks are held in memory. `close()` only returns
    once Supabase has answered the request, i.e. the object is stored.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict,
        max_buffered_chunks: int = 4,
    ):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, max_buffered_chunks))
        self._upload = asyncio.create_task(self._send(client, url, headers))
        self.bytes_written = 0

    async def _body(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    async def _send(self, client: httpx.AsyncClient, url: str, headers: dict) -> None:
        try:
            response = await client.post(url, content=self._body(), headers=headers)
        except httpx.HTTPError as e:
            raise StorageError(f"upload failed: {e}") from e
        _raise_for_status(response, "upload")

    async def _put(self, item: Optional[bytes]) -> None:
        put = asyncio.ensure_future(self._queue.put(item))
        done, _ = await asyncio.wait(
            {put, self._upload}, return_when=asyncio.FIRST_COMPLETED
        )
        if put in done:
            return
        # The request ended before taking all of our bytes
        put.cancel()
        await self._upload
        raise StorageError("upload finished before the stream was closed")

    async def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        await self._put(chunk)
        self.bytes_written += len(chunk)

    async def close(self) -> None:
        await self._put(None)
        await self._upload

    async def abort(self) -> None:
        if not self._upload.done():
            self._upload.cancel()
        await asyncio.gather(self._upload, return_exceptions=True)


# ─────────────────────────────────────────────────────────────
# Backend
# ─────────────────────────────────────────────────────────────

def get_storage_client() -> Client:
    """Get Supabase client for storage operations."""
    return create_client(
        Config.SUPABASE_URL,
        Config.get_supabase_key()
    )


class SupabaseStorage:
    """
    Object storage backed by a single Supabase Storage bucket.

    Object reads and writes go straight to the Storage REST API with httpx so
    they can be streamed; upload grants use the Supabase client.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        bucket: str,
        chunk_size: int = 65536,
        max_buffered_chunks: int = 4,
        http_client: Optional[httpx.AsyncClient] = None,
        storage_client: Optional[Client] = None,
    ):
        if not url:
            raise ValueError("SUPABASE_URL is not set. Add it to your .env file.")
        self.base_url = url.rstrip("/") + "/storage/v1"
        self.bucket = bucket
        self.chunk_size = chunk_size
        self.max_buffered_chunks = max_buffered_chunks
        self._api_key = api_key
        # Streamed uploads have no deadline; a stalled write stalls its entry
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=None, write=None, pool=None)
        )
        self._storage_client = storage_client

    @classmethod
    def from_config(cls) -> "SupabaseStorage":
        return cls(
            url=Config.SUPABASE_URL,
            api_key=Config.get_supabase_key(),
            bucket=Config.SUPABASE_STORAGE_BUCKET,
            chunk_size=Config.ARCHIVE_CHUNK_SIZE,
            max_buffered_chunks=Config.RELAY_BUFFER_CHUNKS,
        )

    @property
    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "apikey": self._api_key,
        }

    def _object_url(self, object_id: str) -> str:
        return f"{self.base_url}/object/{self.bucket}/{quote(object_id)}"

    def public_url(self, object_id: str) -> str:
        """
        Public URL of a stored object.

        Example:
            storage.public_url("extracted/x.png")
            # -> https://xxx.supabase.co/storage/v1/object/public/archives/extracted/x.png
        """
        return f"{self.base_url}/object/public/{self.bucket}/{quote(object_id)}"

    async def open_read_stream(self, object_id: str) -> AsyncIterator[bytes]:
        """
        Stream an object's bytes.

        Raises:
            StorageError: If the object cannot be fetched
        """
        try:
            async with self._http.stream(
                "GET", self._object_url(object_id), headers=self._headers
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    _raise_for_status(response, f"download of {object_id}")
                async for chunk in response.aiter_bytes(self.chunk_size):
                    yield chunk
        except httpx.HTTPError as e:
            raise StorageError(f"download of {object_id} failed: {e}") from e

    async def open_write_stream(self, object_id: str, content_type: str) -> SupabaseWriteStream:
        headers = {
            **self._headers,
            "Content-Type": content_type,
            "x-upsert": "true",
        }
        return SupabaseWriteStream(
            self._http,
            self._object_url(object_id),
            headers,
            max_buffered_chunks=self.max_buffered_chunks,
        )

    async def create_upload_grant(self, object_id: str, content_type: str, ttl: int) -> UploadGrant:
        """
        Issue a signed upload URL for `object_id`.

        Supabase enforces its own two hour window; `ttl` is clamped to it and
        reported back so clients know how long the grant is usable.
        """
        if self._storage_client is None:
            self._storage_client = get_storage_client()
        bucket = self._storage_client.storage.from_(self.bucket)

        try:
            result = await asyncio.to_thread(bucket.create_signed_upload_url, object_id)
        except Exception as e:
            raise StorageError(f"signing upload for {object_id} failed: {e}") from e

        upload_url = result.get("signed_url") or result.get("signedUrl")
        if not upload_url:
            raise StorageError(f"signing upload for {object_id} returned no URL")

        return UploadGrant(
            upload_url=upload_url,
            object_name=object_id,
            token=result.get("token"),
            content_type=content_type,
            expires_in=min(int(ttl), SIGNED_UPLOAD_MAX_TTL),
        )

    async def aclose(self) -> None:
        await self._http.aclose()


