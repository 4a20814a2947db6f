"""
Storage tool exports.
"""
from .storage import (
    SIGNED_UPLOAD_MAX_TTL,
    StorageBackend,
    StorageError,
    SupabaseStorage,
    SupabaseWriteStream,
    UploadGrant,
    WriteStream,
    build_storage_path,
    get_storage_client,
    guess_content_type,
    is_zip_name,
)

__all__ = [
    "SIGNED_UPLOAD_MAX_TTL",
    "StorageBackend",
    "StorageError",
    "SupabaseStorage",
    "SupabaseWriteStream",
    "UploadGrant",
    "WriteStream",
    "build_storage_path",
    "get_storage_client",
    "guess_content_type",
    "is_zip_name",
]
