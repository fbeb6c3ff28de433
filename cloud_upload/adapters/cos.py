# adapters/cos.py
from typing import Optional

import httpx

from cloud_upload.adapters.base import StorageAdapter
from cloud_upload.models.storage_models import COSConfig, Credentials
from cloud_upload.signers.cos import COSSigner
from cloud_upload.signers.sigv4 import SigV4Signer


class COSStorageAdapter(StorageAdapter):
    """Tencent COS, natively signed or through its S3-compatible API"""

    provider = "cos"

    def __init__(self, config: COSConfig, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        if config.endpoint:
            endpoint = config.endpoint
        elif config.accelerate:
            endpoint = f"https://{config.bucket}.cos.accelerate.myqcloud.com"
        else:
            endpoint = f"https://{config.bucket}.cos.{config.region}.myqcloud.com"

        credentials = Credentials(
            access_key_id=config.secret_id,
            secret_access_key=config.secret_key,
            region=config.region,
            session_token=config.session_token,
        )
        if config.use_s3_compatible:
            signer = SigV4Signer(credentials)
            header_prefix = "x-amz-"
        else:
            signer = COSSigner(credentials)
            header_prefix = "x-cos-"

        super().__init__(
            bucket=config.bucket,
            endpoint=endpoint,
            signer=signer,
            header_prefix=header_prefix,
            path_style=config.use_s3_compatible and config.force_path_style,
            timeout=timeout,
            client=client,
        )
