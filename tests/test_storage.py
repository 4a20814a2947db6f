"""
Supabase Storage backend against a mocked Storage REST API.
"""
import asyncio

import httpx
import pytest

from tools.storage import (
    SIGNED_UPLOAD_MAX_TTL,
    StorageError,
    SupabaseStorage,
    build_storage_path,
    guess_content_type,
    is_zip_name,
)


def _storage(handler, **kwargs) -> SupabaseStorage:
    return SupabaseStorage(
        url="https://proj.supabase.co/",
        api_key="service-key",
        bucket="archives",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


class FakeBucket:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def create_signed_upload_url(self, path):
        self.calls.append(path)
        return self.result


class FakeStorageClient:
    def __init__(self, bucket: FakeBucket):
        self.bucket = bucket
        self.storage = self

    def from_(self, name):
        return self.bucket


# ─────────────────────────────────────────────────────────────
# Writes
# ─────────────────────────────────────────────────────────────

def test_write_stream_uploads_chunks():
    requests = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request, await request.aread()))
        return httpx.Response(200, json={"Key": "archives/extracted/x.png"})

    async def scenario():
        storage = _storage(handler)
        sink = await storage.open_write_stream("extracted/x.png", "image/png")
        await sink.write(b"ab")
        await sink.write(b"")
        await sink.write(b"cd")
        await sink.close()
        await storage.aclose()
        return sink

    sink = asyncio.run(scenario())
    assert sink.bytes_written == 4

    request, body = requests[0]
    assert body == b"abcd"
    assert request.method == "POST"
    assert request.url.path == "/storage/v1/object/archives/extracted/x.png"
    assert request.headers["x-upsert"] == "true"
    assert request.headers["content-type"] == "image/png"
    assert request.headers["authorization"] == "Bearer service-key"
    assert request.headers["apikey"] == "service-key"


def test_rejected_upload_raises_on_close():
    async def handler(request: httpx.Request) -> httpx.Response:
        await request.aread()
        return httpx.Response(500, json={"message": "disk full"})

    async def scenario():
        storage = _storage(handler)
        sink = await storage.open_write_stream("extracted/q.png", "image/png")
        await sink.write(b"qq")
        with pytest.raises(StorageError, match="disk full"):
            await sink.close()
        await storage.aclose()

    asyncio.run(scenario())


def test_abort_cancels_upload():
    async def handler(request: httpx.Request) -> httpx.Response:
        await request.aread()
        return httpx.Response(200)

    async def scenario():
        storage = _storage(handler)
        sink = await storage.open_write_stream("extracted/half.bin", "application/octet-stream")
        await sink.write(b"partial")
        await sink.abort()
        done = sink._upload.done()
        await storage.aclose()
        return done

    assert asyncio.run(scenario())


# ─────────────────────────────────────────────────────────────
# Reads
# ─────────────────────────────────────────────────────────────

def test_read_stream_yields_object_bytes():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/storage/v1/object/archives/uploads/s1/a.zip"
        return httpx.Response(200, content=b"0123456789")

    async def scenario():
        storage = _storage(handler, chunk_size=4)
        chunks = [chunk async for chunk in storage.open_read_stream("uploads/s1/a.zip")]
        await storage.aclose()
        return chunks

    chunks = asyncio.run(scenario())
    assert b"".join(chunks) == b"0123456789"
    assert max(len(chunk) for chunk in chunks) <= 4


def test_read_of_missing_object_raises():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Object not found"})

    async def scenario():
        storage = _storage(handler)
        with pytest.raises(StorageError, match="Object not found"):
            async for _ in storage.open_read_stream("uploads/s1/missing.zip"):
                pass
        await storage.aclose()

    asyncio.run(scenario())


def test_read_transport_error_becomes_storage_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        storage = _storage(handler)
        with pytest.raises(StorageError, match="connection refused"):
            async for _ in storage.open_read_stream("uploads/s1/a.zip"):
                pass
        await storage.aclose()

    asyncio.run(scenario())


# ─────────────────────────────────────────────────────────────
# Grants and URLs
# ─────────────────────────────────────────────────────────────

def test_upload_grant_is_clamped_to_supabase_window():
    bucket = FakeBucket({
        "signed_url": "https://proj.supabase.co/storage/v1/object/upload/sign/archives/uploads/s1/a.zip?token=abc",
        "token": "abc",
        "path": "uploads/s1/a.zip",
    })

    async def scenario():
        storage = _storage(lambda request: httpx.Response(200), storage_client=FakeStorageClient(bucket))
        grant = await storage.create_upload_grant("uploads/s1/a.zip", "application/zip", 86400)
        await storage.aclose()
        return grant

    grant = asyncio.run(scenario())
    assert bucket.calls == ["uploads/s1/a.zip"]
    assert grant.upload_url.endswith("?token=abc")
    assert grant.token == "abc"
    assert grant.object_name == "uploads/s1/a.zip"
    assert grant.expires_in == SIGNED_UPLOAD_MAX_TTL


def test_upload_grant_without_url_is_an_error():
    bucket = FakeBucket({"token": "abc"})

    async def scenario():
        storage = _storage(lambda request: httpx.Response(200), storage_client=FakeStorageClient(bucket))
        with pytest.raises(StorageError):
            await storage.create_upload_grant("uploads/s1/a.zip", "application/zip", 60)
        await storage.aclose()

    asyncio.run(scenario())


def test_public_url():
    async def scenario():
        storage = _storage(lambda request: httpx.Response(200))
        url = storage.public_url("extracted/a b.png")
        await storage.aclose()
        return url

    assert asyncio.run(scenario()) == (
        "https://proj.supabase.co/storage/v1/object/public/archives/extracted/a%20b.png"
    )


def test_missing_url_is_rejected():
    with pytest.raises(ValueError):
        SupabaseStorage(url="", api_key="k", bucket="archives")


# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize("parts,expected", [
    (("extracted", "x.png"), "extracted/x.png"),
    (("extracted", "/photos/../x.png"), "extracted/photos/x.png"),
    (("extracted", "a\\b\\c.txt"), "extracted/a/b/c.txt"),
    (("uploads", "s1", "./archive.zip"), "uploads/s1/archive.zip"),
    (("", "x"), "x"),
])
def test_build_storage_path(parts, expected):
    assert build_storage_path(*parts) == expected


def test_zip_names():
    assert is_zip_name("photos.zip")
    assert is_zip_name("PHOTOS.ZIP")
    assert not is_zip_name("photos.zip.png")
    assert not is_zip_name("zip")


def test_content_type_guess():
    assert guess_content_type("x.png") == "image/png"
    assert guess_content_type("no-extension") == "application/octet-stream"
