"""
Centralized configuration. Load once, use everywhere.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    SERVICE_NAME = "ZipRelay"
    VERSION = "1.0.0"

    # Supabase URL
    SUPABASE_URL = os.getenv("SUPABASE_URL")

    # ─────────────────────────────────────────────────────────────
    # Supabase API Keys - New format (sb_secret_...)
    # ─────────────────────────────────────────────────────────────
    SUPABASE_SECRET_KEY = os.getenv("SUPABASE_SECRET_KEY")

    # ─────────────────────────────────────────────────────────────
    # Legacy Supabase Keys (deprecated, for backwards compatibility)
    # ─────────────────────────────────────────────────────────────
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    # Supabase Storage
    SUPABASE_STORAGE_BUCKET = os.getenv("SUPABASE_STORAGE_BUCKET", "archives")

    # Where extracted members are written, and where clients stage archives
    DESTINATION_PREFIX = os.getenv("DESTINATION_PREFIX", "extracted")
    UPLOAD_PREFIX = os.getenv("UPLOAD_PREFIX", "uploads")

    # Archives accepted by one /process request
    MAX_ARCHIVES_PER_REQUEST = int(os.getenv("MAX_ARCHIVES_PER_REQUEST", "10"))

    # Signed upload URLs (Supabase caps these at 2 hours server-side)
    UPLOAD_GRANT_TTL_SECONDS = int(os.getenv("UPLOAD_GRANT_TTL_SECONDS", "900"))

    # ─────────────────────────────────────────────────────────────
    # Session retention
    # ─────────────────────────────────────────────────────────────
    # How long a finished session stays replayable
    SESSION_RETENTION_SECONDS = float(os.getenv("SESSION_RETENTION_SECONDS", "300"))

    # Upper bound for sessions whose run never finishes (or never starts)
    SESSION_IDLE_TTL_SECONDS = float(os.getenv("SESSION_IDLE_TTL_SECONDS", "3600"))

    # ─────────────────────────────────────────────────────────────
    # Pipeline limits
    # ─────────────────────────────────────────────────────────────
    # Simultaneous destination uploads per archive
    MAX_CONCURRENT_RELAYS = int(os.getenv("MAX_CONCURRENT_RELAYS", "8"))

    # Chunks a destination stream may hold before the writer waits
    RELAY_BUFFER_CHUNKS = int(os.getenv("RELAY_BUFFER_CHUNKS", "4"))

    # Read size used by the ZIP decoder
    ARCHIVE_CHUNK_SIZE = int(os.getenv("ARCHIVE_CHUNK_SIZE", "65536"))

    # SSE keep-alive comment interval (seconds)
    HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", "15"))

    # HTTP server
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "3000"))
    CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS", "*"))

    # Debug mode - set DEBUG=1 in env to enable verbose logging
    DEBUG = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")

    @classmethod
    def get_supabase_key(cls) -> str:
        """
        Get the server-side Supabase API key.

        Archive reads, member uploads and upload signing all need a key that
        bypasses RLS, so only the secret/service_role keys are considered.

        Priority:
            1. SUPABASE_SECRET_KEY (sb_secret_...)
            2. SUPABASE_SERVICE_ROLE_KEY (legacy JWT)
            3. Old single SUPABASE_KEY (deprecated)
        """
        if cls.SUPABASE_SECRET_KEY:
            return cls.SUPABASE_SECRET_KEY
        if cls.SUPABASE_SERVICE_ROLE_KEY:
            return cls.SUPABASE_SERVICE_ROLE_KEY

        # Fallback to legacy single key (deprecated)
        legacy_key = os.getenv("SUPABASE_KEY")
        if legacy_key:
            import warnings
            warnings.warn(
                "SUPABASE_KEY is deprecated. Use SUPABASE_SECRET_KEY instead. "
                "See .env.example for details.",
                DeprecationWarning
            )
            return legacy_key

        raise ValueError(
            "No Supabase API key found. Set SUPABASE_SECRET_KEY in your .env file. "
            "See .env.example for the key format."
        )
