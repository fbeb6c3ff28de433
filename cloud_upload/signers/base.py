# signers/base.py
import hashlib
import hmac
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Union
from urllib.parse import quote

from cloud_upload.exceptions import ConfigurationError
from cloud_upload.models.storage_models import Credentials

Body = Union[bytes, bytearray, memoryview]


def uri_encode(value: str) -> str:
    """RFC 3986 percent-encoding; only A-Z a-z 0-9 - _ . ~ stay literal (so ! ' ( ) * are escaped)"""
    return quote(value, safe="")


def sha256_hex(data: Body) -> str:
    return hashlib.sha256(data).hexdigest()


def sha1_hex(data: Body) -> str:
    return hashlib.sha1(data).hexdigest()


def hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def hmac_sha1(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha1).digest()


def as_utc(timestamp: Optional[datetime] = None) -> datetime:
    """Signing time; naive datetimes are taken to be UTC"""
    if timestamp is None:
        return datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def set_header(headers: Dict[str, str], name: str, value: str) -> None:
    """Set a header, dropping any existing spelling of the same name"""
    lowered = name.lower()
    for key in [k for k in headers if k.lower() == lowered]:
        del headers[key]
    headers[name] = value


class RequestSigner(ABC):
    """Turns an HTTP request into an authenticated one for a single provider.

    Implementations are pure: given the same credentials, method, URL,
    headers, body and timestamp they return identical output. ``sign``
    never mutates the headers it is given; it returns a new dict with the
    authentication headers attached.
    """

    name = "base"

    def __init__(self, credentials: Credentials):
        if not credentials.access_key_id or not credentials.secret_access_key:
            raise ConfigurationError(f"{self.name} signer requires an access key id and a secret key")
        self.credentials = credentials

    @abstractmethod
    def sign(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Body = b"",
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, str]:
        """Return a copy of headers with the provider's authorization attached"""

    @abstractmethod
    def presign(
        self,
        method: str,
        url: str,
        expires_in: int = 3600,
        timestamp: Optional[datetime] = None,
        content_type: Optional[str] = None,
    ) -> str:
        """Return url with query-string authentication valid for expires_in seconds"""
