# services/multipart_service.py
"""Chunked upload engine.

Splits a byte source into parts, uploads them through a StorageAdapter with
bounded concurrency and per-part retry, and completes (or leaves resumable)
the provider-side multipart session.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Callable, List, Optional, Set

import httpx

from cloud_upload.adapters.base import StorageAdapter
from cloud_upload.exceptions import (
    ConfigurationError,
    MultipartUploadError,
    ResumeMismatchError,
    StorageRequestError,
    UploadStoppedError,
)
from cloud_upload.models.storage_models import CloudUploadOptions, PartInfo
from cloud_upload.models.upload_models import (
    MultipartUploadResult,
    MultipartUploadState,
    PartStatus,
    UploadPart,
    UploadProgress,
)
from cloud_upload.utils import (
    GiB,
    MiB,
    ByteSource,
    Source,
    as_byte_source,
    calculate_part_size,
    format_file_size,
)

logger = logging.getLogger(__name__)

# Provider limits shared by S3, OSS and COS
MIN_PART_SIZE = 5 * MiB
MAX_PART_SIZE = 5 * GiB
MAX_PARTS = 10000

DEFAULT_PART_SIZE = 5 * MiB
DEFAULT_CONCURRENCY = 3
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds

# Errors worth another attempt at the same part
TRANSIENT_ERRORS = (StorageRequestError, httpx.HTTPError)

ProgressCallback = Callable[[UploadProgress], Any]
StateCallback = Callable[[MultipartUploadState], Any]


async def notify(callback: Optional[Callable[[Any], Any]], value: Any) -> None:
    """Invoke a plain or coroutine callback; its exceptions propagate"""
    if callback is None:
        return
    result = callback(value)
    if inspect.isawaitable(result):
        await result


def plan_parts(file_size: int, part_size: int, max_parts: int = MAX_PARTS) -> List[UploadPart]:
    """Split [0, file_size) into contiguous parts of part_size (the last may be shorter)"""
    if part_size <= 0:
        raise ConfigurationError("Part size must be positive")
    count = max(1, -(-file_size // part_size))
    if count > max_parts:
        raise ConfigurationError(
            f"File too large: {count} parts exceeds the limit of {max_parts} "
            f"with {format_file_size(part_size)} parts"
        )

    parts = []
    for index in range(count):
        start = index * part_size
        end = min(start + part_size, file_size)
        parts.append(UploadPart(part_number=index + 1, start=start, end=end, size=end - start))
    return parts


class MultipartUploader:
    """Uploads one source as a multipart session.

    part_size=None picks a size per file with calculate_part_size.
    """

    def __init__(
        self,
        part_size: Optional[int] = DEFAULT_PART_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        if part_size is not None and part_size < MIN_PART_SIZE:
            raise ConfigurationError(f"Part size cannot be smaller than {format_file_size(MIN_PART_SIZE)}")
        if part_size is not None and part_size > MAX_PART_SIZE:
            raise ConfigurationError(f"Part size cannot be larger than {format_file_size(MAX_PART_SIZE)}")
        if concurrency < 1:
            raise ConfigurationError("Concurrency must be at least 1")
        if retries < 0 or retry_delay < 0:
            raise ConfigurationError("Retries and retry delay cannot be negative")

        self.part_size = part_size
        self.concurrency = concurrency
        self.retries = retries
        self.retry_delay = retry_delay

    async def upload(
        self,
        source: Source,
        key: str,
        storage: StorageAdapter,
        options: Optional[CloudUploadOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_state_change: Optional[StateCallback] = None,
        resume_state: Optional[MultipartUploadState] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> MultipartUploadResult:
        """Upload source to key.

        Configuration errors (too many parts) are raised before any network
        call. Every other failure is reported through the returned result;
        the state handed to on_state_change then stays resumable.
        """
        source = as_byte_source(source)
        file_size = source.size
        started = time.monotonic()

        part_size = self.part_size if self.part_size is not None else calculate_part_size(file_size)
        parts = None
        if resume_state is None:
            parts = plan_parts(file_size, part_size)

        state: Optional[MultipartUploadState] = resume_state
        try:
            if state is None:
                init = await storage.initiate_multipart_upload(key, options)
                state = MultipartUploadState(
                    upload_id=init.upload_id,
                    key=key,
                    file_size=file_size,
                    part_size=part_size,
                    parts=parts,
                    start_time=time.time(),
                    options=options,
                )
            elif state.file_size != file_size:
                raise ResumeMismatchError(
                    f"cannot resume: session expects {state.file_size} bytes, source has {file_size}"
                )

            await notify(on_state_change, state)
            await notify(on_progress, self._progress(state, started))

            await self._upload_parts(storage, source, state, started, on_progress, on_state_change, stop_event)

            if stop_event is not None and stop_event.is_set():
                raise UploadStoppedError()
            failed = [p for p in state.parts if p.status != PartStatus.COMPLETED]
            if failed:
                raise MultipartUploadError(len(failed))

            completed = await storage.complete_multipart_upload(
                key,
                state.upload_id,
                [PartInfo(part_number=p.part_number, etag=p.etag, size=p.size) for p in state.parts],
            )
            duration = time.monotonic() - started
            logger.info(
                f"Uploaded {key} ({format_file_size(file_size)}, {len(state.parts)} parts) in {duration:.2f}s"
            )
            return MultipartUploadResult(
                success=True,
                key=key,
                size=file_size,
                etag=completed.etag,
                part_count=len(state.parts),
                duration=duration,
            )
        except Exception as e:
            logger.error(f"Multipart upload of {key} failed: {e}")
            return MultipartUploadResult(
                success=False,
                key=key,
                size=file_size,
                part_count=len(state.parts) if state else 0,
                failed_parts=e.failed_parts if isinstance(e, MultipartUploadError) else 0,
                duration=time.monotonic() - started,
                error=str(e),
            )

    async def _upload_parts(
        self,
        storage: StorageAdapter,
        source: ByteSource,
        state: MultipartUploadState,
        started: float,
        on_progress: Optional[ProgressCallback],
        on_state_change: Optional[StateCallback],
        stop_event: Optional[asyncio.Event],
    ) -> None:
        pending = [p for p in state.parts if p.status in (PartStatus.PENDING, PartStatus.FAILED)]
        in_flight: Set[asyncio.Task] = set()

        def stopped() -> bool:
            return stop_event is not None and stop_event.is_set()

        try:
            for part in pending:
                if stopped():
                    break
                if len(in_flight) >= self.concurrency:
                    done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                    self._raise_task_errors(done)
                    if stopped():
                        break

                part.status = PartStatus.UPLOADING
                part.error = None
                await notify(on_state_change, state)
                in_flight.add(asyncio.create_task(
                    self._upload_part(storage, source, state, part, started, on_progress, on_state_change, stop_event)
                ))

            if in_flight:
                done, in_flight = await asyncio.wait(in_flight)
                self._raise_task_errors(done)
        except asyncio.CancelledError:
            for task in in_flight:
                task.cancel()
            raise
        except Exception:
            # Let in-flight parts settle before unwinding
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
            raise

        if stopped():
            logger.info(f"Upload of {state.key} stopped; {len(state.completed_parts)}/{len(state.parts)} parts done")

    @staticmethod
    def _raise_task_errors(done: Set[asyncio.Task]) -> None:
        for task in done:
            error = task.exception()
            if error is not None:
                raise error

    async def _upload_part(
        self,
        storage: StorageAdapter,
        source: ByteSource,
        state: MultipartUploadState,
        part: UploadPart,
        started: float,
        on_progress: Optional[ProgressCallback],
        on_state_change: Optional[StateCallback],
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        # Each part is written by exactly one task, so no lock is needed
        try:
            data = await source.read(part.start, part.end)
            result = await self._upload_part_with_retry(storage, state.key, state.upload_id, part, data, stop_event)
        except Exception as e:
            part.status = PartStatus.FAILED
            part.error = str(e)
            logger.error(f"Part {part.part_number} of {state.key} failed: {e}")
            await notify(on_state_change, state)
            return

        part.etag = result.etag
        part.status = PartStatus.COMPLETED
        await notify(on_progress, self._progress(state, started))
        await notify(on_state_change, state)

    async def _upload_part_with_retry(
        self,
        storage: StorageAdapter,
        key: str,
        upload_id: str,
        part: UploadPart,
        data: bytes,
        stop_event: Optional[asyncio.Event] = None,
    ) -> PartInfo:
        def stopped() -> bool:
            return stop_event is not None and stop_event.is_set()

        last_error: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            if attempt and stopped():
                break
            try:
                # Retries reuse the part number so the provider overwrites the earlier attempt
                return await storage.upload_part(key, upload_id, part.part_number, data)
            except TRANSIENT_ERRORS as e:
                last_error = e
                # A paused or cancelled session gets no further attempts
                if attempt == self.retries or stopped():
                    break
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"Part {part.part_number} of {key} failed (attempt {attempt + 1}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
        raise last_error

    @staticmethod
    def _progress(state: MultipartUploadState, started: float) -> UploadProgress:
        loaded = state.completed_size
        total = state.file_size
        elapsed = time.monotonic() - started
        speed = loaded / elapsed if elapsed > 0 else 0.0
        remaining = total - loaded
        return UploadProgress(
            loaded=loaded,
            total=total,
            percentage=100 if total == 0 else loaded * 100 // total,
            completed_parts=len(state.completed_parts),
            total_parts=len(state.parts),
            speed=speed,
            remaining_time=remaining / speed if speed > 0 else 0.0,
        )

    async def abort(self, storage: StorageAdapter, state: MultipartUploadState) -> bool:
        """Best-effort abort of the provider-side session; returns False if it failed"""
        try:
            await storage.abort_multipart_upload(state.key, state.upload_id)
            return True
        except Exception as e:
            # The session may already be completed or gone; an orphan costs storage, so say so
            logger.warning(f"Could not abort multipart upload {state.upload_id} for {state.key}: {e}")
            return False
