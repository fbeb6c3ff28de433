# signers/cos.py
import hashlib
import hmac
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlsplit, urlunsplit

from cloud_upload.models.storage_models import Credentials
from cloud_upload.signers.base import Body, RequestSigner, as_utc, get_header, set_header, sha1_hex, uri_encode

# Headers COS signs besides the x-cos-* family
SIGNED_HEADERS = frozenset({"host", "content-type", "content-length"})

DEFAULT_SIGN_EXPIRY = 600  # seconds


def _encoded_pairs(items: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    return sorted((uri_encode(k).lower(), uri_encode(str(v))) for k, v in items)


class COSSigner(RequestSigner):
    """Tencent COS signature.

    A time-scoped key ``SignKey = HMAC-SHA1(SecretKey, "start;end")`` signs
    ``sha1\\n<KeyTime>\\n<sha1(HttpString)>\\n``; the result is rendered as a
    ``q-sign-algorithm=sha1&q-ak=...&q-signature=...`` string that works
    either as the Authorization header or as presigned URL parameters.
    """

    name = "cos"

    def __init__(self, credentials: Credentials, sign_expiry: int = DEFAULT_SIGN_EXPIRY):
        super().__init__(credentials)
        self.sign_expiry = sign_expiry

    def authorization(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        timestamp: Optional[datetime] = None,
        expires_in: Optional[int] = None,
    ) -> List[Tuple[str, str]]:
        """Return the ordered q-* pairs of the authorization string"""
        parts = urlsplit(url)
        start = int(as_utc(timestamp).timestamp())
        key_time = f"{start};{start + (expires_in or self.sign_expiry)}"

        header_list = _encoded_pairs([
            (name, value)
            for name, value in headers.items()
            if name.lower() in SIGNED_HEADERS or name.lower().startswith("x-cos-")
        ])
        param_list = _encoded_pairs(parse_qsl(parts.query, keep_blank_values=True))

        http_string = "\n".join([
            method.lower(),
            unquote(parts.path) or "/",
            "&".join(f"{k}={v}" for k, v in param_list),
            "&".join(f"{k}={v}" for k, v in header_list),
            "",
        ])
        string_to_sign = "\n".join(["sha1", key_time, sha1_hex(http_string.encode("utf-8")), ""])

        sign_key = hmac.new(
            self.credentials.secret_access_key.encode("utf-8"), key_time.encode("utf-8"), hashlib.sha1
        ).hexdigest()
        signature = hmac.new(
            sign_key.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1
        ).hexdigest()

        return [
            ("q-sign-algorithm", "sha1"),
            ("q-ak", self.credentials.access_key_id),
            ("q-sign-time", key_time),
            ("q-key-time", key_time),
            ("q-header-list", ";".join(k for k, _ in header_list)),
            ("q-url-param-list", ";".join(k for k, _ in param_list)),
            ("q-signature", signature),
        ]

    def sign(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Body = b"",
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, str]:
        signed = dict(headers or {})
        if get_header(signed, "host") is None:
            signed["Host"] = urlsplit(url).netloc
        if self.credentials.session_token:
            set_header(signed, "x-cos-security-token", self.credentials.session_token)

        pairs = self.authorization(method, url, signed, timestamp)
        signed["Authorization"] = "&".join(f"{k}={v}" for k, v in pairs)
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
        headers = {"Host": parts.netloc}
        if content_type:
            headers["Content-Type"] = content_type

        pairs = self.authorization(method, url, headers, timestamp, expires_in)
        if self.credentials.session_token:
            pairs.append(("x-cos-security-token", self.credentials.session_token))
        extra = "&".join(f"{uri_encode(k)}={uri_encode(v)}" for k, v in pairs)
        query = f"{parts.query}&{extra}" if parts.query else extra
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))
