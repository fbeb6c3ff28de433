from cloud_upload.models.storage_models import (
    CloudUploadOptions,
    CompleteMultipartResult,
    COSConfig,
    Credentials,
    ListPartsResult,
    MultipartUploadInit,
    OSSConfig,
    PartInfo,
    S3Config,
)
from cloud_upload.models.upload_models import (
    ACTIVE_STATUSES,
    MultipartUploadResult,
    MultipartUploadState,
    PartStatus,
    PendingUpload,
    ResumableUploadResult,
    ResumableUploadState,
    UploadPart,
    UploadProgress,
    UploadStatus,
)
