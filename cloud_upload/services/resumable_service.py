# services/resumable_service.py
"""Resumable uploads on top of the multipart engine.

Each upload gets a persisted record (file fingerprint plus the multipart
session state) so an interrupted upload can be continued by a later
process, paused, or cancelled.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from cloud_upload.adapters.base import StorageAdapter
from cloud_upload.config import Settings
from cloud_upload.exceptions import ConfigurationError, ResumeMismatchError
from cloud_upload.models.storage_models import CloudUploadOptions
from cloud_upload.models.upload_models import (
    ACTIVE_STATUSES,
    MultipartUploadState,
    PartStatus,
    PendingUpload,
    ResumableUploadResult,
    ResumableUploadState,
    UploadStatus,
)
from cloud_upload.services.multipart_service import (
    DEFAULT_CONCURRENCY,
    DEFAULT_PART_SIZE,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY,
    MultipartUploader,
    ProgressCallback,
    notify,
)
from cloud_upload.services.state_store import MemoryStateStore, UploadStateStore
from cloud_upload.utils import Source, as_byte_source, compute_file_hash

logger = logging.getLogger(__name__)

RecordCallback = Callable[[ResumableUploadState], Any]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _ActiveUpload:
    record: ResumableUploadState
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    stop_status: Optional[UploadStatus] = None
    aborted: bool = False


class ResumableUploader:
    def __init__(
        self,
        storage: StorageAdapter,
        state_store: Optional[UploadStateStore] = None,
        part_size: Optional[int] = DEFAULT_PART_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        auto_save_interval: float = 1.0,
        state_expiry: timedelta = timedelta(days=7),
    ):
        self.storage = storage
        self.state_store = state_store or MemoryStateStore()
        self.engine = MultipartUploader(
            part_size=part_size, concurrency=concurrency, retries=retries, retry_delay=retry_delay
        )
        self.auto_save_interval = auto_save_interval
        self.state_expiry = state_expiry
        self._active: Dict[str, _ActiveUpload] = {}

    @classmethod
    def from_settings(
        cls, storage: StorageAdapter, settings: Settings, state_store: Optional[UploadStateStore] = None
    ) -> "ResumableUploader":
        return cls(
            storage,
            state_store,
            part_size=settings.part_size,
            concurrency=settings.concurrency,
            retries=settings.retries,
            retry_delay=settings.retry_delay,
            auto_save_interval=settings.auto_save_interval,
            state_expiry=settings.state_expiry,
        )

    async def upload(
        self,
        source: Source,
        key: str,
        filename: Optional[str] = None,
        options: Optional[CloudUploadOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_state_change: Optional[RecordCallback] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ResumableUploadResult:
        """Upload source to key, continuing an unfinished upload of the same file if one exists"""
        source = as_byte_source(source)
        file_hash = await compute_file_hash(source)

        for pending in await self.state_store.list_pending():
            if (
                pending.key == key
                and pending.file_hash == file_hash
                and pending.file_size == source.size
                and pending.id not in self._active
            ):
                logger.info(f"Found unfinished upload {pending.id} for {key}, resuming")
                return await self.resume(pending.id, source, on_progress, on_state_change)

        now = _now()
        record = ResumableUploadState(
            id=str(uuid4()),
            key=key,
            filename=filename or source.name,
            file_size=source.size,
            file_hash=file_hash,
            status=UploadStatus.UPLOADING,
            created_at=now,
            updated_at=now,
            options=options,
            metadata=metadata,
        )
        await self._save(record)
        return await self._run(record, source, on_progress, on_state_change)

    async def resume(
        self,
        upload_id: str,
        source: Source,
        on_progress: Optional[ProgressCallback] = None,
        on_state_change: Optional[RecordCallback] = None,
    ) -> ResumableUploadResult:
        record = await self.state_store.get(upload_id)
        if record is None:
            return self._failure(upload_id, f"upload {upload_id} not found")
        if upload_id in self._active:
            return self._failure(upload_id, f"upload {upload_id} is already in progress", record)
        if record.status in (UploadStatus.CANCELLED, UploadStatus.COMPLETED):
            return self._failure(upload_id, f"upload {upload_id} is {record.status.value}", record)

        source = as_byte_source(source)
        if source.size != record.file_size or await compute_file_hash(source) != record.file_hash:
            return self._failure(upload_id, str(ResumeMismatchError()), record)

        # Parts a dead process left in flight are sent again
        if record.multipart_state:
            for part in record.multipart_state.parts:
                if part.status == PartStatus.UPLOADING:
                    part.status = PartStatus.FAILED

        record.status = UploadStatus.UPLOADING
        record.error = None
        await self._save(record)
        logger.info(f"Resuming upload {upload_id} for {record.key}")
        return await self._run(record, source, on_progress, on_state_change)

    async def _run(
        self,
        record: ResumableUploadState,
        source: Source,
        on_progress: Optional[ProgressCallback],
        on_state_change: Optional[RecordCallback],
    ) -> ResumableUploadResult:
        active = _ActiveUpload(record)
        self._active[record.id] = active
        last_save: Optional[float] = None

        async def on_engine_state(state: MultipartUploadState) -> None:
            nonlocal last_save
            record.multipart_state = state
            now = time.monotonic()
            if last_save is None or now - last_save >= self.auto_save_interval:
                last_save = now
                await self._save(record)
            await notify(on_state_change, record)

        try:
            try:
                result = await self.engine.upload(
                    source,
                    record.key,
                    self.storage,
                    options=record.options,
                    on_progress=on_progress,
                    on_state_change=on_engine_state,
                    resume_state=record.multipart_state,
                    stop_event=active.stop_event,
                )
            except ConfigurationError as e:
                await self._finish(record, UploadStatus.FAILED, str(e), on_state_change)
                raise

            if result.success:
                status = UploadStatus.COMPLETED
            else:
                status = active.stop_status or UploadStatus.FAILED

            if status == UploadStatus.CANCELLED and not active.aborted and record.multipart_state:
                active.aborted = True
                await self.engine.abort(self.storage, record.multipart_state)

            await self._finish(record, status, result.error, on_state_change)
            if result.success:
                await self.state_store.delete(record.id)
        finally:
            self._active.pop(record.id, None)

        return ResumableUploadResult(
            success=result.success,
            id=record.id,
            key=record.key,
            size=record.file_size,
            part_count=result.part_count,
            duration=result.duration,
            error=result.error,
        )

    async def _finish(
        self,
        record: ResumableUploadState,
        status: UploadStatus,
        error: Optional[str],
        on_state_change: Optional[RecordCallback],
    ) -> None:
        record.status = status
        record.error = None if status == UploadStatus.COMPLETED else error
        await self._save(record)
        await notify(on_state_change, record)

    async def pause(self, upload_id: str) -> bool:
        """Stop dispatching parts; in-flight parts finish and the record stays resumable"""
        active = self._active.get(upload_id)
        if active:
            active.stop_status = UploadStatus.PAUSED
            active.stop_event.set()
            record = active.record
        else:
            record = await self.state_store.get(upload_id)
            if record is None or record.status not in ACTIVE_STATUSES:
                return False

        record.status = UploadStatus.PAUSED
        await self._save(record)
        logger.info(f"Paused upload {upload_id}")
        return True

    async def cancel(self, upload_id: str) -> bool:
        """Stop the upload for good and abort its provider-side session"""
        active = self._active.get(upload_id)
        if active:
            active.stop_status = UploadStatus.CANCELLED
            active.stop_event.set()
            record = active.record
        else:
            record = await self.state_store.get(upload_id)
            if record is None or record.status in (UploadStatus.COMPLETED, UploadStatus.CANCELLED):
                return False

        record.status = UploadStatus.CANCELLED
        await self._save(record)
        logger.info(f"Cancelled upload {upload_id}")

        # Exactly one abort per session; a running upload that has not
        # initiated yet aborts from _run once it has a session
        if record.multipart_state and not (active and active.aborted):
            if active:
                active.aborted = True
            await self.engine.abort(self.storage, record.multipart_state)
        return True

    async def list_pending(self) -> List[PendingUpload]:
        return [self._summary(record) for record in await self.state_store.list_pending()]

    async def get_state(self, upload_id: str) -> Optional[ResumableUploadState]:
        return await self.state_store.get(upload_id)

    async def cleanup(self, max_age: Optional[timedelta] = None) -> int:
        """Drop records older than max_age and abort the provider sessions they still hold"""
        removed = await self.state_store.cleanup(max_age or self.state_expiry)
        for record in removed:
            if (
                record.multipart_state
                and record.status not in (UploadStatus.COMPLETED, UploadStatus.CANCELLED)
                and record.id not in self._active
            ):
                await self.engine.abort(self.storage, record.multipart_state)
        if removed:
            logger.info(f"Cleaned up {len(removed)} expired upload records")
        return len(removed)

    async def _save(self, record: ResumableUploadState) -> None:
        record.updated_at = _now()
        await self.state_store.save(record.id, record)

    @staticmethod
    def _summary(record: ResumableUploadState) -> PendingUpload:
        state = record.multipart_state
        loaded = state.completed_size if state else 0
        return PendingUpload(
            id=record.id,
            key=record.key,
            filename=record.filename,
            file_size=record.file_size,
            status=record.status,
            completed_parts=len(state.completed_parts) if state else 0,
            total_parts=len(state.parts) if state else 0,
            percentage=loaded * 100 // record.file_size if record.file_size else 0,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    @staticmethod
    def _failure(
        upload_id: str, error: str, record: Optional[ResumableUploadState] = None
    ) -> ResumableUploadResult:
        logger.warning(f"Cannot resume upload {upload_id}: {error}")
        return ResumableUploadResult(
            success=False,
            id=upload_id,
            key=record.key if record else "",
            size=record.file_size if record else 0,
            error=error,
        )
