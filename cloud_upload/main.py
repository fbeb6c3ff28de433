# main.py
import asyncio
import json
import logging
import posixpath
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from cloud_upload.adapters.base import StorageAdapter
from cloud_upload.adapters.factory import create_storage_adapter
from cloud_upload.config import Settings
from cloud_upload.models.storage_models import CloudUploadOptions, PartInfo
from cloud_upload.models.wire_models import (
    AbortRequest,
    ChunkResponse,
    CompleteRequest,
    CompleteResponse,
    InitRequest,
    InitResponse,
    UploadedPart,
    UploadStatusResponse,
)
from cloud_upload.services.cleanup_service import CleanupService
from cloud_upload.services.resumable_service import ResumableUploader
from cloud_upload.services.state_store import RedisStateStore
from cloud_upload.utils import format_file_size

logger = logging.getLogger(__name__)

DOWNLOAD_URL_EXPIRY = 3600  # seconds


def generate_key(filename: str, prefix: str = "", path: Optional[str] = None) -> str:
    """Object key for a new upload: ``{prefix}/{path}/{uuid}{ext}``, empty segments dropped"""
    ext = posixpath.splitext(filename)[1]
    segments = [s.strip("/") for s in (prefix, path or "") if s and s.strip("/")]
    return "/".join(segments + [f"{uuid4()}{ext}"])


def get_storage(request: Request) -> StorageAdapter:
    storage = request.app.state.storage
    if storage is None:
        raise HTTPException(status_code=503, detail="Storage is not configured")
    return storage


def create_app(
    storage: Optional[StorageAdapter] = None,
    settings: Optional[Settings] = None,
    uploader: Optional[ResumableUploader] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        owns_storage = app.state.storage is None
        if owns_storage:
            app.state.storage = create_storage_adapter(settings)

        # Resumable records live in Redis unless an uploader was supplied
        state_store = None
        if app.state.uploader is None:
            state_store = RedisStateStore.from_settings(settings)
            app.state.uploader = ResumableUploader.from_settings(app.state.storage, settings, state_store)

        cleanup_service = CleanupService(app.state.uploader, settings.cleanup_interval, settings.state_expiry)
        cleanup_task = asyncio.create_task(cleanup_service.start_cleanup_scheduler())

        yield

        # Shutdown
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        if state_store is not None:
            await state_store.aclose()
            app.state.uploader = None
        if owns_storage:
            await app.state.storage.aclose()
            app.state.storage = None

    app = FastAPI(title="Cloud Upload Service", lifespan=lifespan)
    app.state.storage = storage
    app.state.settings = settings
    app.state.uploader = uploader

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/upload/init", response_model=InitResponse, response_model_exclude_none=True)
    async def init_upload(body: InitRequest, storage: StorageAdapter = Depends(get_storage)):
        """Start a multipart upload and return its uploadId and object key"""
        if body.file_size > settings.max_file_size:
            raise HTTPException(
                status_code=400,
                detail=f"File too large: maximum is {format_file_size(settings.max_file_size)}",
            )

        key = generate_key(body.filename, settings.upload_path_prefix, body.path)
        metadata = None
        if body.metadata:
            metadata = {k: v if isinstance(v, str) else json.dumps(v) for k, v in body.metadata.items()}
        options = CloudUploadOptions(content_type=body.mime_type, metadata=metadata)

        try:
            result = await storage.initiate_multipart_upload(key, options)
        except Exception as e:
            logger.error(f"Failed to initiate upload for {body.filename}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return InitResponse(upload_id=result.upload_id, key=result.key)

    @app.post("/upload/chunk", response_model=ChunkResponse)
    async def upload_chunk(
        file: UploadFile = File(...),
        index: int = Form(...),
        upload_id: str = Form(..., alias="uploadId"),
        key: str = Form(...),
        storage: StorageAdapter = Depends(get_storage),
    ):
        """Upload one chunk; chunk index 0 is part number 1"""
        if index < 0:
            raise HTTPException(status_code=400, detail=f"Invalid chunk index: {index}")

        data = await file.read()
        if len(data) > settings.max_part_size:
            raise HTTPException(
                status_code=400,
                detail=f"Chunk too large: maximum is {format_file_size(settings.max_part_size)}",
            )

        try:
            part = await storage.upload_part(key, upload_id, index + 1, data)
        except Exception as e:
            logger.error(f"Failed to upload chunk {index} of {key}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return ChunkResponse(index=index, etag=part.etag)

    @app.post("/upload/complete", response_model=CompleteResponse, response_model_exclude_none=True)
    async def complete_upload(body: CompleteRequest, storage: StorageAdapter = Depends(get_storage)):
        """Complete the multipart upload"""
        if not body.chunks:
            raise HTTPException(status_code=400, detail="No chunks to complete")

        parts = [PartInfo(part_number=c.index + 1, etag=c.etag, size=c.size) for c in body.chunks]
        try:
            await storage.complete_multipart_upload(body.key, body.upload_id, parts)
        except Exception as e:
            logger.error(f"Failed to complete upload {body.upload_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        url = None
        try:
            url = storage.get_presigned_url(body.key, expires_in=DOWNLOAD_URL_EXPIRY)
        except Exception as e:
            logger.warning(f"Could not presign download URL for {body.key}: {e}")
        return CompleteResponse(file_id=body.key, url=url)

    @app.post("/upload/abort")
    async def abort_upload(body: AbortRequest, storage: StorageAdapter = Depends(get_storage)):
        """Abort an ongoing upload"""
        try:
            await storage.abort_multipart_upload(body.key, body.upload_id)
        except Exception as e:
            logger.error(f"Failed to abort upload {body.upload_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return {"success": True}

    @app.get("/upload/status", response_model=UploadStatusResponse)
    async def upload_status(
        upload_id: str = Query(..., alias="uploadId"),
        key: str = Query(...),
        storage: StorageAdapter = Depends(get_storage),
    ):
        """Parts the provider has received so far"""
        parts = []
        marker = None
        try:
            while True:
                page = await storage.list_parts(key, upload_id, part_number_marker=marker)
                parts.extend(UploadedPart(part_number=p.part_number, etag=p.etag, size=p.size) for p in page.parts)
                if not page.is_truncated or page.next_part_number_marker is None:
                    break
                marker = page.next_part_number_marker
        except Exception as e:
            logger.error(f"Failed to list parts of {upload_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return UploadStatusResponse(upload_id=upload_id, key=key, parts=parts)

    return app


app = create_app()
