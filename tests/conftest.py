import asyncio
import hashlib
from collections import Counter
from typing import Dict, List, Optional

import pytest

from cloud_upload.exceptions import StorageRequestError
from cloud_upload.models.storage_models import (
    CompleteMultipartResult,
    ListPartsResult,
    MultipartUploadInit,
    PartInfo,
)
from cloud_upload.services.state_store import MemoryStateStore
from cloud_upload.utils import ByteSource

MiB = 1024 * 1024


class FakeStorageAdapter:
    """In-memory stand-in for a StorageAdapter that records every call.

    ``fail_parts`` maps a part number to how many attempts should fail
    (-1 fails forever), and ``part_errors`` raises a given exception once.
    Setting ``block`` to an unset event holds every part upload until the
    event is set.
    """

    provider = "fake"

    def __init__(self):
        self.calls: List[tuple] = []
        self.sessions: Dict[str, Dict[int, bytes]] = {}
        self.objects: Dict[str, bytes] = {}
        self.fail_parts: Dict[int, int] = {}
        self.delays: Dict[int, float] = {}
        self.part_errors: Dict[int, Exception] = {}
        self.part_attempts: Counter = Counter()
        self.block: Optional[asyncio.Event] = None
        self.part_started = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def initiate_multipart_upload(self, key, options=None):
        upload_id = f"upload-{len(self.sessions) + 1}"
        self.sessions[upload_id] = {}
        self.calls.append(("initiate", key))
        return MultipartUploadInit(upload_id=upload_id, key=key)

    async def upload_part(self, key, upload_id, part_number, data):
        self.calls.append(("upload_part", part_number))
        self.part_attempts[part_number] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.part_started.set()
            if self.block is not None:
                await self.block.wait()
            await asyncio.sleep(self.delays.get(part_number, 0))

            if part_number in self.part_errors:
                raise self.part_errors.pop(part_number)

            remaining = self.fail_parts.get(part_number, 0)
            if remaining:
                if remaining > 0:
                    self.fail_parts[part_number] = remaining - 1
                raise StorageRequestError(f"upload part {part_number}", 500, "InternalError", provider="fake")
            if upload_id not in self.sessions:
                raise StorageRequestError(f"upload part {part_number}", 404, "NoSuchUpload", provider="fake")

            self.sessions[upload_id][part_number] = bytes(data)
            return PartInfo(part_number=part_number, etag=hashlib.md5(data).hexdigest(), size=len(data))
        finally:
            self.in_flight -= 1

    async def complete_multipart_upload(self, key, upload_id, parts):
        parts = sorted(parts, key=lambda p: p.part_number)
        self.calls.append(("complete", [p.part_number for p in parts]))
        stored = self.sessions.pop(upload_id)
        self.objects[key] = b"".join(stored[p.part_number] for p in parts)
        return CompleteMultipartResult(key=key, etag="final-etag")

    async def abort_multipart_upload(self, key, upload_id):
        self.calls.append(("abort", upload_id))
        self.sessions.pop(upload_id, None)

    async def list_parts(self, key, upload_id, part_number_marker=None):
        self.calls.append(("list_parts", upload_id))
        stored = self.sessions.get(upload_id, {})
        return ListPartsResult(parts=[
            PartInfo(part_number=n, etag=hashlib.md5(data).hexdigest(), size=len(data))
            for n, data in sorted(stored.items())
        ])

    def get_presigned_url(self, key, expires_in=3600, method="GET", content_type=None):
        return f"https://fake.example.com/{key}?expires={expires_in}"


class HugeSource(ByteSource):
    """Reports a size without holding the bytes"""

    def __init__(self, size):
        self._size = size

    @property
    def size(self):
        return self._size

    async def read(self, start, end):
        return bytes(end - start)


def make_data(size: int) -> bytes:
    pattern = bytes(range(256))
    return (pattern * (size // len(pattern) + 1))[:size]


@pytest.fixture
def storage():
    return FakeStorageAdapter()


@pytest.fixture
def state_store():
    return MemoryStateStore()
