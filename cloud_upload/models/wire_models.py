# models/wire_models.py
# Request/response bodies of the upload server. Field names on the wire are camelCase.
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InitRequest(WireModel):
    filename: str
    file_size: int = Field(alias="fileSize", gt=0)
    chunks: int = Field(gt=0)
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    path: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    overwrite: Optional[bool] = None


class InitResponse(WireModel):
    upload_id: str = Field(alias="uploadId")
    key: str
    urls: Optional[List[str]] = None


class ChunkResponse(WireModel):
    index: int  # 0-based
    etag: str


class CompletedChunk(WireModel):
    index: int = Field(ge=0)
    etag: str
    size: Optional[int] = None


class CompleteRequest(WireModel):
    upload_id: str = Field(alias="uploadId")
    key: str
    chunks: List[CompletedChunk]
    filename: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class CompleteResponse(WireModel):
    file_id: str = Field(alias="fileId")
    url: Optional[str] = None


class AbortRequest(WireModel):
    upload_id: str = Field(alias="uploadId")
    key: str


class UploadedPart(WireModel):
    part_number: int = Field(alias="partNumber")
    etag: str
    size: Optional[int] = None


class UploadStatusResponse(WireModel):
    upload_id: str = Field(alias="uploadId")
    key: str
    parts: List[UploadedPart] = []
