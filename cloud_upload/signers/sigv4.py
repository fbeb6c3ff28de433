# signers/sigv4.py
"""AWS Signature Version 4.

Used by the S3 adapter and by the OSS and COS adapters when they talk to an
S3-compatible endpoint.
"""
import hashlib
import hmac
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import SplitResult, parse_qsl, unquote, urlsplit, urlunsplit

from cloud_upload.models.storage_models import Credentials
from cloud_upload.signers.base import (
    Body,
    RequestSigner,
    as_utc,
    hmac_sha256,
    set_header,
    sha256_hex,
    uri_encode,
)

ALGORITHM = "AWS4-HMAC-SHA256"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"


def format_amz_date(timestamp: datetime) -> str:
    return timestamp.strftime("%Y%m%dT%H%M%SZ")


def derive_signing_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    k_date = hmac_sha256(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, "aws4_request")


def canonical_uri(path: str) -> str:
    if not path:
        return "/"
    return "/".join(uri_encode(unquote(segment)) for segment in path.split("/"))


def canonical_query_string(query: str) -> str:
    pairs = parse_qsl(query, keep_blank_values=True)
    encoded = sorted((uri_encode(k), uri_encode(v)) for k, v in pairs)
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_headers(headers: Mapping[str, str]) -> Tuple[str, str]:
    """Return (canonical header block, signed header list)"""
    normalized = {name.strip().lower(): " ".join(str(value).split()) for name, value in headers.items()}
    names = sorted(normalized)
    block = "".join(f"{name}:{normalized[name]}\n" for name in names)
    return block, ";".join(names)


class SigV4Signer(RequestSigner):
    name = "sigv4"

    def __init__(self, credentials: Credentials, service: str = "s3"):
        super().__init__(credentials)
        self.service = service

    def credential_scope(self, date_stamp: str) -> str:
        return f"{date_stamp}/{self.credentials.region}/{self.service}/aws4_request"

    def _signature(self, date_stamp: str, string_to_sign: str) -> str:
        key = derive_signing_key(
            self.credentials.secret_access_key, date_stamp, self.credentials.region, self.service
        )
        return hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    def _string_to_sign(self, amz_date: str, canonical_request: str) -> str:
        return "\n".join([
            ALGORITHM,
            amz_date,
            self.credential_scope(amz_date[:8]),
            sha256_hex(canonical_request.encode("utf-8")),
        ])

    def canonical_request(
        self, method: str, parts: SplitResult, headers: Mapping[str, str], payload_hash: str
    ) -> Tuple[str, str]:
        header_block, signed_headers = canonical_headers(headers)
        request = "\n".join([
            method.upper(),
            canonical_uri(parts.path),
            canonical_query_string(parts.query),
            header_block,
            signed_headers,
            payload_hash,
        ])
        return request, signed_headers

    def sign(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Body = b"",
        timestamp: Optional[datetime] = None,
        payload_hash: Optional[str] = None,
    ) -> Dict[str, str]:
        """Sign with an Authorization header.

        ``payload_hash`` replaces the body hash when the body is not at hand,
        e.g. ``UNSIGNED-PAYLOAD`` or a precomputed SHA-256 hex digest.
        """
        ts = as_utc(timestamp)
        amz_date = format_amz_date(ts)
        parts = urlsplit(url)

        signed = dict(headers or {})
        for name in [k for k in signed if k.lower() == "authorization"]:
            del signed[name]
        if payload_hash is None:
            payload_hash = sha256_hex(body or b"")

        set_header(signed, "host", parts.netloc)
        set_header(signed, "x-amz-date", amz_date)
        set_header(signed, "x-amz-content-sha256", payload_hash)
        if self.credentials.session_token:
            set_header(signed, "x-amz-security-token", self.credentials.session_token)

        canonical, signed_headers = self.canonical_request(method, parts, signed, payload_hash)
        signature = self._signature(amz_date[:8], self._string_to_sign(amz_date, canonical))

        signed["Authorization"] = (
            f"{ALGORITHM} Credential={self.credentials.access_key_id}/{self.credential_scope(amz_date[:8])}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return signed

    def presign(
        self,
        method: str,
        url: str,
        expires_in: int = 3600,
        timestamp: Optional[datetime] = None,
        content_type: Optional[str] = None,
    ) -> str:
        # Only host is signed, so content_type does not take part in the signature
        ts = as_utc(timestamp)
        amz_date = format_amz_date(ts)
        parts = urlsplit(url)

        query: List[Tuple[str, str]] = parse_qsl(parts.query, keep_blank_values=True)
        query += [
            ("X-Amz-Algorithm", ALGORITHM),
            ("X-Amz-Credential", f"{self.credentials.access_key_id}/{self.credential_scope(amz_date[:8])}"),
            ("X-Amz-Date", amz_date),
            ("X-Amz-Expires", str(expires_in)),
            ("X-Amz-SignedHeaders", "host"),
        ]
        if self.credentials.session_token:
            query.append(("X-Amz-Security-Token", self.credentials.session_token))
        query_string = "&".join(f"{uri_encode(k)}={uri_encode(v)}" for k, v in query)

        canonical = "\n".join([
            method.upper(),
            canonical_uri(parts.path),
            canonical_query_string(query_string),
            f"host:{parts.netloc}\n",
            "host",
            UNSIGNED_PAYLOAD,
        ])
        signature = self._signature(amz_date[:8], self._string_to_sign(amz_date, canonical))

        return urlunsplit((
            parts.scheme,
            parts.netloc,
            parts.path,
            f"{query_string}&X-Amz-Signature={signature}",
            "",
        ))
