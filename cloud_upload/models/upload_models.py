# models/upload_models.py
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum

from cloud_upload.models.storage_models import CloudUploadOptions


class UploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Records in these states may still be resumed
ACTIVE_STATUSES = (UploadStatus.PENDING, UploadStatus.UPLOADING, UploadStatus.PAUSED)


class PartStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadPart(BaseModel):
    part_number: int  # 1-based
    start: int
    end: int  # exclusive
    size: int
    status: PartStatus = PartStatus.PENDING
    etag: Optional[str] = None
    error: Optional[str] = None


class MultipartUploadState(BaseModel):
    upload_id: str
    key: str
    file_size: int
    part_size: int
    parts: List[UploadPart] = []
    start_time: float
    options: Optional[CloudUploadOptions] = None

    @property
    def completed_parts(self) -> List[UploadPart]:
        return [p for p in self.parts if p.status == PartStatus.COMPLETED]

    @property
    def completed_size(self) -> int:
        return sum(p.size for p in self.completed_parts)


class ResumableUploadState(BaseModel):
    id: str
    key: str
    filename: str
    file_size: int
    file_hash: str
    status: UploadStatus = UploadStatus.PENDING
    multipart_state: Optional[MultipartUploadState] = None
    created_at: datetime
    updated_at: datetime
    options: Optional[CloudUploadOptions] = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class UploadProgress(BaseModel):
    loaded: int
    total: int
    percentage: int  # 0-100
    completed_parts: int
    total_parts: int
    speed: float  # bytes per second
    remaining_time: float  # seconds


class MultipartUploadResult(BaseModel):
    success: bool
    key: str
    size: int
    etag: Optional[str] = None
    part_count: int = 0
    failed_parts: int = 0
    duration: float = 0.0  # seconds
    error: Optional[str] = None


class ResumableUploadResult(BaseModel):
    success: bool
    id: str
    key: str
    size: int
    part_count: int = 0
    duration: float = 0.0
    error: Optional[str] = None


class PendingUpload(BaseModel):
    id: str
    key: str
    filename: str
    file_size: int
    status: UploadStatus
    completed_parts: int
    total_parts: int
    percentage: int
    created_at: datetime
    updated_at: datetime
