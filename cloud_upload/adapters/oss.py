# adapters/oss.py
from typing import Optional

import httpx

from cloud_upload.adapters.base import StorageAdapter
from cloud_upload.models.storage_models import Credentials, OSSConfig
from cloud_upload.signers.oss import OSSSigner
from cloud_upload.signers.sigv4 import SigV4Signer


class OSSStorageAdapter(StorageAdapter):
    """Aliyun OSS.

    With ``use_s3_compatible`` the adapter signs with SigV4 and sends
    ``x-amz-`` headers, which lets it target MinIO and other S3-compatible
    test servers.
    """

    provider = "oss"

    def __init__(self, config: OSSConfig, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        if config.endpoint:
            endpoint = config.endpoint
        else:
            scheme = "https" if config.secure else "http"
            domain = f"{config.region}-internal.aliyuncs.com" if config.internal else f"{config.region}.aliyuncs.com"
            endpoint = f"{scheme}://{config.bucket}.{domain}"

        credentials = Credentials(
            access_key_id=config.access_key_id,
            secret_access_key=config.access_key_secret,
            region=config.region,
            session_token=config.security_token,
        )
        if config.use_s3_compatible:
            signer = SigV4Signer(credentials)
            header_prefix = "x-amz-"
        else:
            signer = OSSSigner(credentials, bucket=config.bucket)
            header_prefix = "x-oss-"

        super().__init__(
            bucket=config.bucket,
            endpoint=endpoint,
            signer=signer,
            header_prefix=header_prefix,
            path_style=config.use_s3_compatible and config.force_path_style,
            timeout=timeout,
            client=client,
        )
