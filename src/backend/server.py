"""
FastAPI server for archive relays with SSE progress.

Run:
    cd src
    python -m uvicorn backend.server:app --reload --port 3000

Or:
    python src/main.py serve
"""
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from config import Config
from orchestrator import SessionRegistry, UploadCoordinator
from pipeline.decoder import Decoder, zip_entries
from tools.storage import (
    StorageBackend,
    StorageError,
    SupabaseStorage,
    build_storage_path,
    is_zip_name,
)
from .adapter import SSE_CONTENT_TYPE, stream_session_events


router = APIRouter()


class ProcessRequest(BaseModel):
    """Archives to extract for a session."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    objects: list[str] = Field(min_length=1, max_length=Config.MAX_ARCHIVES_PER_REQUEST)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_storage(request: Request) -> StorageBackend:
    return request.app.state.storage


def get_coordinator(request: Request) -> UploadCoordinator:
    return request.app.state.coordinator


# ─────────────────────────────────────────────────────────────
# Direct Upload Grants
# ─────────────────────────────────────────────────────────────

@router.get("/signed-url")
async def signed_url(
    file_name: Optional[str] = Query(None, alias="fileName"),
    content_type: str = Query("application/zip", alias="contentType"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    storage: StorageBackend = Depends(get_storage),
):
    """
    Issue a pre-signed URL the client uploads an archive to.

    The returned objectName is what the client later sends to /process.
    """
    if not file_name or not session_id:
        raise HTTPException(status_code=400, detail="fileName and sessionId are required")
    if not is_zip_name(file_name):
        raise HTTPException(status_code=400, detail="Only ZIP archives are accepted")

    object_name = build_storage_path(Config.UPLOAD_PREFIX, session_id, file_name)
    try:
        grant = await storage.create_upload_grant(
            object_name, content_type, Config.UPLOAD_GRANT_TTL_SECONDS
        )
    except StorageError as e:
        print(f"❌ [UPLOAD] signing {object_name} failed: {e}", flush=True)
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "uploadUrl": grant.upload_url,
        "objectName": grant.object_name,
        "token": grant.token,
        "contentType": grant.content_type,
        "expiresIn": grant.expires_in,
    }


# ─────────────────────────────────────────────────────────────
# Processing
# ─────────────────────────────────────────────────────────────

@router.post("/process")
async def process(
    body: ProcessRequest,
    coordinator: UploadCoordinator = Depends(get_coordinator),
):
    """
    Start extracting archives for a session.

    Returns immediately; progress and results arrive on /progress/{sessionId}.
    """
    coordinator.launch(body.session_id, list(body.objects))
    return {"ok": True}


@router.get("/progress/{session_id}")
async def progress(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Server-Sent Events for a session.

    Replays everything the session has emitted so far, then streams live.
    """
    return StreamingResponse(
        stream_session_events(registry, session_id, Config.HEARTBEAT_INTERVAL),
        media_type=SSE_CONTENT_TYPE,
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
            "Connection": "keep-alive",
        },
    )


# ─────────────────────────────────────────────────────────────
# Health Check
# ─────────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "OK",
        "message": f"{Config.SERVICE_NAME} is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": Config.SERVICE_NAME,
        "version": Config.VERSION,
        "endpoints": {
            "signed_url": "GET /signed-url?fileName&contentType&sessionId - Pre-signed archive upload",
            "process": "POST /process - Extract archives {sessionId, objects}",
            "progress": "GET /progress/{sessionId} - SSE progress stream",
            "health": "GET /health - Health check",
        }
    }


# ─────────────────────────────────────────────────────────────
# App
# ─────────────────────────────────────────────────────────────

async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    traceback.print_exc()
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    storage: Optional[StorageBackend] = None,
    registry: Optional[SessionRegistry] = None,
    decoder: Decoder = zip_entries,
) -> FastAPI:
    """
    Build the API.

    Args:
        storage: Object storage (defaults to Supabase from Config)
        registry: Session registry (defaults to a fresh one)
        decoder: Archive decoder handed to the coordinator
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.registry = registry if registry is not None else SessionRegistry()
        app.state.storage = storage if storage is not None else SupabaseStorage.from_config()
        app.state.coordinator = UploadCoordinator(
            app.state.registry,
            app.state.storage,
            decoder=decoder,
        )
        print(f"🚀 [SERVER] {Config.SERVICE_NAME} ready (bucket={Config.SUPABASE_STORAGE_BUCKET})", flush=True)
        yield
        await app.state.coordinator.shutdown()
        await app.state.registry.close()
        if storage is None:
            await app.state.storage.aclose()

    app = FastAPI(
        title=f"{Config.SERVICE_NAME} Server",
        description="Extracts stored ZIP archives back into object storage with live SSE progress",
        version=Config.VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.CORS_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(RequestValidationError, validation_error)
    app.add_exception_handler(Exception, unhandled_error)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
