# services/state_store.py
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from cloud_upload.config import Settings
from cloud_upload.models.upload_models import ACTIVE_STATUSES, ResumableUploadState

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "resumable_upload:"


def _age(record: ResumableUploadState, now: datetime) -> timedelta:
    updated_at = record.updated_at
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return now - updated_at


class UploadStateStore(ABC):
    """Persistence for resumable upload records, keyed by upload id"""

    @abstractmethod
    async def save(self, upload_id: str, record: ResumableUploadState) -> None:
        ...

    @abstractmethod
    async def get(self, upload_id: str) -> Optional[ResumableUploadState]:
        ...

    @abstractmethod
    async def delete(self, upload_id: str) -> None:
        ...

    @abstractmethod
    async def list_pending(self) -> List[ResumableUploadState]:
        """Records that are pending, uploading or paused"""

    @abstractmethod
    async def cleanup(self, max_age: timedelta) -> List[ResumableUploadState]:
        """Delete records not updated within max_age and return them"""


class MemoryStateStore(UploadStateStore):
    """Process-local store; records are copied in and out so callers never share them"""

    def __init__(self):
        self._records: Dict[str, ResumableUploadState] = {}

    async def save(self, upload_id: str, record: ResumableUploadState) -> None:
        self._records[upload_id] = record.model_copy(deep=True)

    async def get(self, upload_id: str) -> Optional[ResumableUploadState]:
        record = self._records.get(upload_id)
        return record.model_copy(deep=True) if record else None

    async def delete(self, upload_id: str) -> None:
        self._records.pop(upload_id, None)

    async def list_pending(self) -> List[ResumableUploadState]:
        return [r.model_copy(deep=True) for r in self._records.values() if r.status in ACTIVE_STATUSES]

    async def cleanup(self, max_age: timedelta) -> List[ResumableUploadState]:
        now = datetime.now(timezone.utc)
        removed = []
        for upload_id, record in list(self._records.items()):
            if _age(record, now) > max_age:
                removed.append(self._records.pop(upload_id))
        return removed


class RedisStateStore(UploadStateStore):
    """Records stored as JSON under ``{prefix}{id}``, optionally with a TTL"""

    def __init__(self, client: redis.Redis, prefix: str = DEFAULT_PREFIX, ttl: Optional[timedelta] = None):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisStateStore":
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password or None,
            socket_connect_timeout=5,
            health_check_interval=30,
            db=0,
        )
        return cls(client, prefix=settings.state_prefix, ttl=settings.state_expiry)

    def _key(self, upload_id: str) -> str:
        return f"{self.prefix}{upload_id}"

    async def save(self, upload_id: str, record: ResumableUploadState) -> None:
        ex = int(self.ttl.total_seconds()) if self.ttl else None
        await self.client.set(self._key(upload_id), record.model_dump_json(), ex=ex)

    async def get(self, upload_id: str) -> Optional[ResumableUploadState]:
        data = await self.client.get(self._key(upload_id))
        if data is None:
            return None
        return ResumableUploadState.model_validate_json(data)

    async def delete(self, upload_id: str) -> None:
        await self.client.delete(self._key(upload_id))

    async def _scan(self):
        async for key in self.client.scan_iter(match=f"{self.prefix}*"):
            data = await self.client.get(key)
            if data is None:
                continue
            try:
                yield key, ResumableUploadState.model_validate_json(data)
            except ValidationError as e:
                yield key, e

    async def list_pending(self) -> List[ResumableUploadState]:
        records = []
        async for key, record in self._scan():
            if isinstance(record, ValidationError):
                logger.warning(f"Skipping unreadable upload state {key!r}: {record.error_count()} error(s)")
                continue
            if record.status in ACTIVE_STATUSES:
                records.append(record)
        return records

    async def cleanup(self, max_age: timedelta) -> List[ResumableUploadState]:
        now = datetime.now(timezone.utc)
        removed = []
        unreadable = 0
        async for key, record in self._scan():
            if isinstance(record, ValidationError):
                await self.client.delete(key)
                unreadable += 1
            elif _age(record, now) > max_age:
                await self.client.delete(key)
                removed.append(record)
        if unreadable:
            logger.info(f"Deleted {unreadable} unreadable upload state entries")
        return removed

    async def aclose(self) -> None:
        await self.client.aclose()
