# models/storage_models.py
from pydantic import BaseModel, ConfigDict
from typing import Dict, List, Literal, Optional


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_key_id: str
    secret_access_key: str
    region: str = "us-east-1"
    session_token: Optional[str] = None


class CloudUploadOptions(BaseModel):
    content_type: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    storage_class: Optional[str] = None
    acl: Optional[Literal["private", "public-read", "public-read-write"]] = None
    cache_control: Optional[str] = None
    content_encoding: Optional[str] = None

    def to_headers(self, prefix: str) -> Dict[str, str]:
        """Render as request headers; prefix is the provider's custom header prefix (x-amz-, x-oss-, x-cos-)"""
        headers: Dict[str, str] = {}
        if self.content_type:
            headers["Content-Type"] = self.content_type
        if self.cache_control:
            headers["Cache-Control"] = self.cache_control
        if self.content_encoding:
            headers["Content-Encoding"] = self.content_encoding
        if self.acl:
            # OSS names the header x-oss-object-acl, the others x-*-acl
            acl_header = "object-acl" if prefix == "x-oss-" else "acl"
            headers[f"{prefix}{acl_header}"] = self.acl
        if self.storage_class:
            headers[f"{prefix}storage-class"] = self.storage_class
        for name, value in (self.metadata or {}).items():
            headers[f"{prefix}meta-{name}"] = value
        return headers


class PartInfo(BaseModel):
    part_number: int
    etag: str
    size: Optional[int] = None


class MultipartUploadInit(BaseModel):
    upload_id: str
    key: str


class ListPartsResult(BaseModel):
    parts: List[PartInfo] = []
    is_truncated: bool = False
    next_part_number_marker: Optional[int] = None


class CompleteMultipartResult(BaseModel):
    key: str
    etag: Optional[str] = None
    location: Optional[str] = None


class S3Config(BaseModel):
    bucket: str
    region: str
    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None
    endpoint: Optional[str] = None
    force_path_style: bool = False


class OSSConfig(BaseModel):
    bucket: str
    region: str  # e.g. oss-cn-hangzhou
    access_key_id: str
    access_key_secret: str
    security_token: Optional[str] = None
    endpoint: Optional[str] = None
    internal: bool = False
    secure: bool = True
    use_s3_compatible: bool = False
    force_path_style: bool = False


class COSConfig(BaseModel):
    bucket: str  # e.g. examplebucket-1250000000
    region: str  # e.g. ap-guangzhou
    secret_id: str
    secret_key: str
    session_token: Optional[str] = None
    accelerate: bool = False
    endpoint: Optional[str] = None
    use_s3_compatible: bool = False
    force_path_style: bool = False
