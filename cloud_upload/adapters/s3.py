# adapters/s3.py
from typing import Optional

import httpx

from cloud_upload.adapters.base import StorageAdapter
from cloud_upload.models.storage_models import Credentials, S3Config
from cloud_upload.signers.sigv4 import SigV4Signer


class S3StorageAdapter(StorageAdapter):
    """AWS S3, or any S3-compatible service (MinIO, R2, ...) through ``endpoint``"""

    provider = "s3"

    def __init__(self, config: S3Config, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        if config.endpoint:
            endpoint = config.endpoint
        elif config.force_path_style:
            endpoint = f"https://s3.{config.region}.amazonaws.com"
        else:
            endpoint = f"https://{config.bucket}.s3.{config.region}.amazonaws.com"

        signer = SigV4Signer(Credentials(
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            region=config.region,
            session_token=config.session_token,
        ))
        super().__init__(
            bucket=config.bucket,
            endpoint=endpoint,
            signer=signer,
            header_prefix="x-amz-",
            # custom endpoints are addressed path-style
            path_style=config.force_path_style or bool(config.endpoint),
            timeout=timeout,
            client=client,
        )
