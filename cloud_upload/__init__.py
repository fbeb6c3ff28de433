from cloud_upload.adapters import (
    COSStorageAdapter,
    OSSStorageAdapter,
    S3StorageAdapter,
    StorageAdapter,
    create_storage_adapter,
)
from cloud_upload.config import Settings
from cloud_upload.exceptions import (
    ConfigurationError,
    MultipartUploadError,
    ResumeMismatchError,
    StorageRequestError,
    UploadError,
    UploadStoppedError,
)
from cloud_upload.services import (
    CleanupService,
    MemoryStateStore,
    MultipartUploader,
    RedisStateStore,
    ResumableUploader,
    UploadStateStore,
    plan_parts,
)
from cloud_upload.utils import BytesSource, FileSource, calculate_part_size, compute_file_hash

__version__ = "0.1.0"
