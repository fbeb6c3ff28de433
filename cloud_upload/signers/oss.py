# signers/oss.py
import base64
from datetime import datetime
from email.utils import format_datetime
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import SplitResult, parse_qsl, unquote, urlsplit, urlunsplit

from cloud_upload.models.storage_models import Credentials
from cloud_upload.signers.base import Body, RequestSigner, as_utc, get_header, hmac_sha1, set_header, uri_encode

# Query parameters that take part in the canonicalized resource
SUB_RESOURCES = frozenset({
    "acl",
    "uploadId",
    "partNumber",
    "uploads",
    "response-content-type",
    "response-content-disposition",
    "security-token",
})


class OSSSigner(RequestSigner):
    """Aliyun OSS header signature (HMAC-SHA1, ``Authorization: OSS ak:signature``)"""

    name = "oss"

    def __init__(self, credentials: Credentials, bucket: str):
        super().__init__(credentials)
        self.bucket = bucket

    def canonicalized_resource(self, parts: SplitResult, query: Optional[List[Tuple[str, str]]] = None) -> str:
        resource = f"/{self.bucket}{unquote(parts.path) or '/'}"
        if query is None:
            query = parse_qsl(parts.query, keep_blank_values=True)
        sub_resources = sorted(f"{k}={v}" if v else k for k, v in query if k in SUB_RESOURCES)
        if sub_resources:
            resource += "?" + "&".join(sub_resources)
        return resource

    @staticmethod
    def canonicalized_headers(headers: Mapping[str, str]) -> str:
        oss_headers = sorted(
            (name.lower(), str(value).strip())
            for name, value in headers.items()
            if name.lower().startswith("x-oss-")
        )
        return "".join(f"{name}:{value}\n" for name, value in oss_headers)

    def string_to_sign(self, method: str, headers: Mapping[str, str], date: str, resource: str) -> str:
        return "\n".join([
            method.upper(),
            get_header(headers, "Content-MD5") or "",
            get_header(headers, "Content-Type") or "",
            date,
            self.canonicalized_headers(headers) + resource,
        ])

    def _signature(self, string_to_sign: str) -> str:
        digest = hmac_sha1(self.credentials.secret_access_key.encode("utf-8"), string_to_sign)
        return base64.b64encode(digest).decode("ascii")

    def sign(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Body = b"",
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, str]:
        parts = urlsplit(url)
        signed = dict(headers or {})
        date = format_datetime(as_utc(timestamp), usegmt=True)
        set_header(signed, "Date", date)
        if self.credentials.session_token:
            set_header(signed, "x-oss-security-token", self.credentials.session_token)

        signature = self._signature(
            self.string_to_sign(method, signed, date, self.canonicalized_resource(parts))
        )
        signed["Authorization"] = f"OSS {self.credentials.access_key_id}:{signature}"
        return signed

    def presign(
        self,
        method: str,
        url: str,
        expires_in: int = 3600,
        timestamp: Optional[datetime] = None,
        content_type: Optional[str] = None,
    ) -> str:
        parts = urlsplit(url)
        expires = str(int(as_utc(timestamp).timestamp()) + expires_in)

        query: List[Tuple[str, str]] = parse_qsl(parts.query, keep_blank_values=True)
        if self.credentials.session_token:
            query.append(("security-token", self.credentials.session_token))

        string_to_sign = "\n".join([
            method.upper(),
            "",
            content_type or "",
            expires,
            self.canonicalized_resource(parts, query),
        ])
        query += [
            ("OSSAccessKeyId", self.credentials.access_key_id),
            ("Expires", expires),
            ("Signature", self._signature(string_to_sign)),
        ]
        query_string = "&".join(f"{uri_encode(k)}={uri_encode(v)}" for k, v in query)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query_string, ""))
