# adapters/base.py
import logging
import xml.etree.ElementTree as ET
from typing import Dict, Iterable, List, Optional, Union
from xml.sax.saxutils import escape

import httpx

from cloud_upload.exceptions import StorageRequestError
from cloud_upload.models.storage_models import (
    CloudUploadOptions,
    CompleteMultipartResult,
    ListPartsResult,
    MultipartUploadInit,
    PartInfo,
)
from cloud_upload.signers.base import RequestSigner, uri_encode

logger = logging.getLogger(__name__)

Data = Union[bytes, bytearray, memoryview]

# Methods sent without a request body
BODYLESS_METHODS = ("GET", "HEAD", "DELETE")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element.iter():
        if _local_name(child.tag) == name:
            return child.text
    return None


def _find_all(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element.iter() if _local_name(child.tag) == name]


def _strip_etag(etag: Optional[str]) -> str:
    return (etag or "").replace("&quot;", "").strip('"')


class StorageAdapter:
    """Signed HTTP access to one bucket of an S3-style object store.

    S3, OSS and COS share the same multipart protocol (``?uploads``,
    ``?partNumber=&uploadId=``, ``CompleteMultipartUpload`` XML); providers
    differ in endpoint layout, custom header prefix and request signing,
    which subclasses configure. Each adapter holds exactly one signer,
    chosen at construction.
    """

    provider = "s3"

    def __init__(
        self,
        bucket: str,
        endpoint: str,
        signer: RequestSigner,
        header_prefix: str = "x-amz-",
        path_style: bool = False,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.bucket = bucket
        self.endpoint = endpoint.rstrip("/")
        self.signer = signer
        self.header_prefix = header_prefix
        self.path_style = path_style
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    def build_url(self, key: str, query: Optional[Dict[str, str]] = None) -> str:
        path = uri_encode(key).replace("%2F", "/")
        if self.path_style:
            url = f"{self.endpoint}/{self.bucket}/{path}"
        else:
            url = f"{self.endpoint}/{path}"
        if query:
            url += "?" + "&".join(f"{uri_encode(k)}={uri_encode(v)}" for k, v in query.items())
        return url

    async def request(
        self,
        method: str,
        key: str,
        query: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Data = b"",
    ) -> httpx.Response:
        url = self.build_url(key, query)
        signed = self.signer.sign(method, url, headers or {}, body)
        content = None if method in BODYLESS_METHODS else bytes(body)
        return await self._client.request(method, url, headers=signed, content=content)

    def _raise_for_status(self, response: httpx.Response, operation: str, allowed: Iterable[int] = ()):
        if response.is_success or response.status_code in allowed:
            return
        raise StorageRequestError(operation, response.status_code, response.text, provider=self.provider)

    def _parse_xml(self, response: httpx.Response, operation: str) -> ET.Element:
        try:
            root = ET.fromstring(response.content)
        except ET.ParseError:
            raise StorageRequestError(operation, response.status_code, response.text, provider=self.provider)
        # S3 may answer 200 with an <Error> document (e.g. CompleteMultipartUpload)
        if _local_name(root.tag) == "Error":
            raise StorageRequestError(operation, response.status_code, response.text, provider=self.provider)
        return root

    # =========================================================================
    # Multipart upload
    # =========================================================================

    async def initiate_multipart_upload(
        self, key: str, options: Optional[CloudUploadOptions] = None
    ) -> MultipartUploadInit:
        headers = options.to_headers(self.header_prefix) if options else {}
        response = await self.request("POST", key, query={"uploads": ""}, headers=headers)
        self._raise_for_status(response, "initiate multipart upload")

        upload_id = _find_text(self._parse_xml(response, "initiate multipart upload"), "UploadId")
        if not upload_id:
            raise StorageRequestError(
                "initiate multipart upload", response.status_code, "no UploadId in response", provider=self.provider
            )
        logger.info(f"Initiated multipart upload {upload_id} for {key}")
        return MultipartUploadInit(upload_id=upload_id, key=key)

    async def upload_part(self, key: str, upload_id: str, part_number: int, data: Data) -> PartInfo:
        response = await self.request(
            "PUT",
            key,
            query={"partNumber": str(part_number), "uploadId": upload_id},
            headers={"Content-Length": str(len(data))},
            body=data,
        )
        self._raise_for_status(response, f"upload part {part_number}")
        return PartInfo(
            part_number=part_number,
            etag=_strip_etag(response.headers.get("ETag")),
            size=len(data),
        )

    async def complete_multipart_upload(
        self, key: str, upload_id: str, parts: List[PartInfo]
    ) -> CompleteMultipartResult:
        sorted_parts = sorted(parts, key=lambda p: p.part_number)
        parts_xml = "".join(
            f"<Part><PartNumber>{p.part_number}</PartNumber><ETag>\"{escape(p.etag)}\"</ETag></Part>"
            for p in sorted_parts
        )
        body = f"<CompleteMultipartUpload>{parts_xml}</CompleteMultipartUpload>".encode("utf-8")

        response = await self.request(
            "POST",
            key,
            query={"uploadId": upload_id},
            headers={"Content-Type": "application/xml", "Content-Length": str(len(body))},
            body=body,
        )
        self._raise_for_status(response, "complete multipart upload")

        etag = None
        location = None
        if response.content:
            root = self._parse_xml(response, "complete multipart upload")
            etag = _strip_etag(_find_text(root, "ETag")) or None
            location = _find_text(root, "Location")
        logger.info(f"Completed multipart upload {upload_id} for {key} ({len(sorted_parts)} parts)")
        return CompleteMultipartResult(key=key, etag=etag, location=location)

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        response = await self.request("DELETE", key, query={"uploadId": upload_id})
        self._raise_for_status(response, "abort multipart upload", allowed=(404,))
        logger.info(f"Aborted multipart upload {upload_id} for {key}")

    async def list_parts(
        self, key: str, upload_id: str, part_number_marker: Optional[int] = None
    ) -> ListPartsResult:
        query = {"uploadId": upload_id}
        if part_number_marker is not None:
            query["part-number-marker"] = str(part_number_marker)
        response = await self.request("GET", key, query=query)
        self._raise_for_status(response, "list parts")

        root = self._parse_xml(response, "list parts")
        parts = []
        for element in _find_all(root, "Part"):
            size = _find_text(element, "Size")
            parts.append(PartInfo(
                part_number=int(_find_text(element, "PartNumber") or 0),
                etag=_strip_etag(_find_text(element, "ETag")),
                size=int(size) if size else None,
            ))
        next_marker = _find_text(root, "NextPartNumberMarker")
        return ListPartsResult(
            parts=parts,
            is_truncated=(_find_text(root, "IsTruncated") or "").lower() == "true",
            next_part_number_marker=int(next_marker) if next_marker else None,
        )

    # =========================================================================
    # Single objects
    # =========================================================================

    async def put_object(self, key: str, data: Data, options: Optional[CloudUploadOptions] = None) -> Optional[str]:
        headers = options.to_headers(self.header_prefix) if options else {}
        headers["Content-Length"] = str(len(data))
        response = await self.request("PUT", key, headers=headers, body=data)
        self._raise_for_status(response, "put object")
        return _strip_etag(response.headers.get("ETag")) or None

    async def delete_object(self, key: str) -> None:
        response = await self.request("DELETE", key)
        self._raise_for_status(response, "delete object", allowed=(404,))

    async def object_exists(self, key: str) -> bool:
        response = await self.request("HEAD", key)
        if response.status_code == 404:
            return False
        self._raise_for_status(response, "head object")
        return True

    def get_presigned_url(
        self, key: str, expires_in: int = 3600, method: str = "GET", content_type: Optional[str] = None
    ) -> str:
        return self.signer.presign(method, self.build_url(key), expires_in=expires_in, content_type=content_type)
