# adapters/factory.py
from typing import Optional

import httpx

from cloud_upload.adapters.base import StorageAdapter
from cloud_upload.adapters.cos import COSStorageAdapter
from cloud_upload.adapters.oss import OSSStorageAdapter
from cloud_upload.adapters.s3 import S3StorageAdapter
from cloud_upload.config import Settings
from cloud_upload.exceptions import ConfigurationError
from cloud_upload.models.storage_models import COSConfig, OSSConfig, S3Config


def create_storage_adapter(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> StorageAdapter:
    """Build the adapter selected by settings.storage_provider"""
    if not settings.bucket_name:
        raise ConfigurationError("BUCKET_NAME is not set")
    if not settings.access_key or not settings.secret_key:
        raise ConfigurationError("AWS_ACCESS_KEY and AWS_SECRET_KEY must be set")

    if settings.storage_provider == "s3":
        return S3StorageAdapter(
            S3Config(
                bucket=settings.bucket_name,
                region=settings.region,
                access_key_id=settings.access_key,
                secret_access_key=settings.secret_key,
                session_token=settings.session_token,
                endpoint=settings.endpoint,
                force_path_style=settings.force_path_style,
            ),
            timeout=settings.request_timeout,
            client=client,
        )

    if settings.storage_provider == "oss":
        return OSSStorageAdapter(
            OSSConfig(
                bucket=settings.bucket_name,
                region=settings.region,
                access_key_id=settings.access_key,
                access_key_secret=settings.secret_key,
                security_token=settings.session_token,
                endpoint=settings.endpoint,
                use_s3_compatible=settings.use_s3_compatible,
                force_path_style=settings.force_path_style,
            ),
            timeout=settings.request_timeout,
            client=client,
        )

    if settings.storage_provider == "cos":
        return COSStorageAdapter(
            COSConfig(
                bucket=settings.bucket_name,
                region=settings.region,
                secret_id=settings.access_key,
                secret_key=settings.secret_key,
                session_token=settings.session_token,
                endpoint=settings.endpoint,
                use_s3_compatible=settings.use_s3_compatible,
                force_path_style=settings.force_path_style,
            ),
            timeout=settings.request_timeout,
            client=client,
        )

    raise ConfigurationError(f"Unknown storage provider: {settings.storage_provider}")
