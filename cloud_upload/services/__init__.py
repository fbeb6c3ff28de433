from cloud_upload.services.cleanup_service import CleanupService
from cloud_upload.services.multipart_service import MultipartUploader, plan_parts
from cloud_upload.services.resumable_service import ResumableUploader
from cloud_upload.services.state_store import MemoryStateStore, RedisStateStore, UploadStateStore
