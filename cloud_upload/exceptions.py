# exceptions.py
from typing import Optional


class UploadError(Exception):
    """Base class for every error raised by cloud_upload"""


class ConfigurationError(UploadError):
    """Invalid settings detected before any network call (never retried)"""


class StorageRequestError(UploadError):
    """A storage provider answered with a non-2xx status"""

    def __init__(self, operation: str, status_code: int, body: str = "", provider: Optional[str] = None):
        self.operation = operation
        self.status_code = status_code
        self.body = body
        self.provider = provider
        prefix = f"{provider} " if provider else ""
        message = f"{prefix}{operation} failed: {status_code}"
        if body:
            message = f"{message} {body[:500]}"
        super().__init__(message)


class MultipartUploadError(UploadError):
    def __init__(self, failed_parts: int):
        self.failed_parts = failed_parts
        super().__init__(f"{failed_parts} part(s) failed to upload")


class ResumeMismatchError(UploadError):
    def __init__(self, message: str = "cannot resume: file does not match"):
        super().__init__(message)


class UploadStoppedError(UploadError):
    def __init__(self, message: str = "upload stopped before all parts were sent"):
        super().__init__(message)
