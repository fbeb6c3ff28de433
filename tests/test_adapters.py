"""Tests for the storage adapters against a mocked HTTP transport."""

import xml.etree.ElementTree as ET

import httpx
import pytest

from cloud_upload.adapters import (
    COSStorageAdapter,
    OSSStorageAdapter,
    S3StorageAdapter,
    create_storage_adapter,
)
from cloud_upload.config import Settings
from cloud_upload.exceptions import ConfigurationError, StorageRequestError
from cloud_upload.models.storage_models import CloudUploadOptions, COSConfig, OSSConfig, PartInfo, S3Config

S3_NS = "http://s3.amazonaws.com/doc/2006-03-01/"

INITIATE_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<InitiateMultipartUploadResult xmlns="{S3_NS}">
  <Bucket>examplebucket</Bucket>
  <Key>videos/clip.mp4</Key>
  <UploadId>upload-123</UploadId>
</InitiateMultipartUploadResult>"""

COMPLETE_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<CompleteMultipartUploadResult xmlns="{S3_NS}">
  <Location>https://examplebucket.s3.us-east-1.amazonaws.com/videos/clip.mp4</Location>
  <Bucket>examplebucket</Bucket>
  <Key>videos/clip.mp4</Key>
  <ETag>"3858f62230ac3c915f300c664312c11f-2"</ETag>
</CompleteMultipartUploadResult>"""

LIST_PARTS_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<ListPartsResult xmlns="{S3_NS}">
  <UploadId>upload-123</UploadId>
  <NextPartNumberMarker>2</NextPartNumberMarker>
  <IsTruncated>true</IsTruncated>
  <Part><PartNumber>1</PartNumber><ETag>"etag-1"</ETag><Size>5242880</Size></Part>
  <Part><PartNumber>2</PartNumber><ETag>"etag-2"</ETag><Size>1024</Size></Part>
</ListPartsResult>"""

ERROR_XML = """<?xml version="1.0" encoding="UTF-8"?>
<Error><Code>InternalError</Code><Message>We encountered an internal error.</Message></Error>"""


class Recorder:
    """MockTransport handler that records requests and replays canned responses"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.responses.pop(0)


def s3_adapter(recorder, **overrides):
    config = S3Config(
        bucket="examplebucket",
        region="us-east-1",
        access_key_id="test-ak",
        secret_access_key="test-secret",
        **overrides,
    )
    return S3StorageAdapter(config, client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)))


class TestS3StorageAdapter:
    async def test_initiate_multipart_upload(self):
        recorder = Recorder(httpx.Response(200, text=INITIATE_XML))
        adapter = s3_adapter(recorder)

        options = CloudUploadOptions(content_type="video/mp4", metadata={"owner": "me"}, acl="private")
        result = await adapter.initiate_multipart_upload("videos/clip.mp4", options)

        assert result.upload_id == "upload-123"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.host == "examplebucket.s3.us-east-1.amazonaws.com"
        assert request.url.path == "/videos/clip.mp4"
        assert "uploads" in request.url.params
        assert request.headers["Authorization"].startswith("AWS4-HMAC-SHA256 Credential=test-ak/")
        assert request.headers["Content-Type"] == "video/mp4"
        assert request.headers["x-amz-meta-owner"] == "me"
        assert request.headers["x-amz-acl"] == "private"

    async def test_upload_part(self):
        recorder = Recorder(httpx.Response(200, headers={"ETag": '"abc123"'}))
        adapter = s3_adapter(recorder)

        part = await adapter.upload_part("videos/clip.mp4", "upload-123", 2, b"hello")

        assert part == PartInfo(part_number=2, etag="abc123", size=5)
        request = recorder.requests[0]
        assert request.method == "PUT"
        assert request.url.params["partNumber"] == "2"
        assert request.url.params["uploadId"] == "upload-123"
        assert request.content == b"hello"

    async def test_complete_sends_sorted_parts(self):
        recorder = Recorder(httpx.Response(200, text=COMPLETE_XML))
        adapter = s3_adapter(recorder)

        result = await adapter.complete_multipart_upload(
            "videos/clip.mp4",
            "upload-123",
            [PartInfo(part_number=2, etag="b"), PartInfo(part_number=1, etag="a")],
        )

        assert result.etag == "3858f62230ac3c915f300c664312c11f-2"
        assert result.location.endswith("/videos/clip.mp4")
        body = ET.fromstring(recorder.requests[0].content)
        assert [p.findtext("PartNumber") for p in body.findall("Part")] == ["1", "2"]
        assert [p.findtext("ETag") for p in body.findall("Part")] == ['"a"', '"b"']

    async def test_complete_with_error_document(self):
        recorder = Recorder(httpx.Response(200, text=ERROR_XML))
        adapter = s3_adapter(recorder)

        with pytest.raises(StorageRequestError):
            await adapter.complete_multipart_upload("k", "upload-123", [PartInfo(part_number=1, etag="a")])

    async def test_error_status_raises(self):
        recorder = Recorder(httpx.Response(403, text="AccessDenied"))
        adapter = s3_adapter(recorder)

        with pytest.raises(StorageRequestError) as exc_info:
            await adapter.upload_part("k", "upload-123", 1, b"data")

        assert exc_info.value.status_code == 403
        assert exc_info.value.operation == "upload part 1"
        assert "AccessDenied" in str(exc_info.value)

    async def test_abort_tolerates_missing_upload(self):
        recorder = Recorder(httpx.Response(404, text="NoSuchUpload"))
        adapter = s3_adapter(recorder)

        await adapter.abort_multipart_upload("k", "upload-123")

        assert recorder.requests[0].method == "DELETE"
        assert recorder.requests[0].content == b""

    async def test_list_parts(self):
        recorder = Recorder(httpx.Response(200, text=LIST_PARTS_XML))
        adapter = s3_adapter(recorder)

        result = await adapter.list_parts("k", "upload-123")

        assert [(p.part_number, p.etag, p.size) for p in result.parts] == [
            (1, "etag-1", 5242880),
            (2, "etag-2", 1024),
        ]
        assert result.is_truncated
        assert result.next_part_number_marker == 2

    async def test_object_exists(self):
        recorder = Recorder(httpx.Response(200), httpx.Response(404))
        adapter = s3_adapter(recorder)

        assert await adapter.object_exists("a")
        assert not await adapter.object_exists("b")

    async def test_custom_endpoint_is_path_style(self):
        recorder = Recorder(httpx.Response(200, headers={"ETag": '"e"'}))
        adapter = s3_adapter(recorder, endpoint="http://localhost:9000")

        await adapter.put_object("dir/file name.txt", b"x")

        url = recorder.requests[0].url
        assert url.host == "localhost"
        assert url.raw_path == b"/examplebucket/dir/file%20name.txt"

    def test_presigned_url(self):
        adapter = s3_adapter(Recorder())

        url = adapter.get_presigned_url("videos/clip.mp4", expires_in=600)

        assert url.startswith("https://examplebucket.s3.us-east-1.amazonaws.com/videos/clip.mp4?")
        assert "X-Amz-Expires=600" in url
        assert "X-Amz-Signature=" in url


class TestOSSStorageAdapter:
    def make(self, recorder, **overrides):
        config = OSSConfig(
            bucket="examplebucket",
            region="oss-cn-hangzhou",
            access_key_id="test-ak",
            access_key_secret="test-secret",
            **overrides,
        )
        return OSSStorageAdapter(config, client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)))

    async def test_native_signing(self):
        recorder = Recorder(httpx.Response(200, text=INITIATE_XML))
        adapter = self.make(recorder)

        options = CloudUploadOptions(acl="public-read", metadata={"owner": "me"})
        await adapter.initiate_multipart_upload("file.bin", options)

        request = recorder.requests[0]
        assert request.url.host == "examplebucket.oss-cn-hangzhou.aliyuncs.com"
        assert request.headers["Authorization"].startswith("OSS test-ak:")
        assert request.headers["x-oss-object-acl"] == "public-read"
        assert request.headers["x-oss-meta-owner"] == "me"

    def test_internal_endpoint(self):
        adapter = self.make(Recorder(), internal=True)

        assert adapter.endpoint == "https://examplebucket.oss-cn-hangzhou-internal.aliyuncs.com"

    async def test_s3_compatible(self):
        recorder = Recorder(httpx.Response(200, headers={"ETag": '"e"'}))
        adapter = self.make(recorder, use_s3_compatible=True)

        await adapter.upload_part("file.bin", "upload-123", 1, b"data")

        assert recorder.requests[0].headers["Authorization"].startswith("AWS4-HMAC-SHA256")


class TestCOSStorageAdapter:
    def make(self, recorder, **overrides):
        config = COSConfig(
            bucket="examplebucket-1250000000",
            region="ap-guangzhou",
            secret_id="test-ak",
            secret_key="test-secret",
            **overrides,
        )
        return COSStorageAdapter(config, client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)))

    async def test_native_signing(self):
        recorder = Recorder(httpx.Response(200, headers={"ETag": '"e"'}))
        adapter = self.make(recorder)

        await adapter.upload_part("file.bin", "upload-123", 1, b"data")

        request = recorder.requests[0]
        assert request.url.host == "examplebucket-1250000000.cos.ap-guangzhou.myqcloud.com"
        assert request.headers["Authorization"].startswith("q-sign-algorithm=sha1&q-ak=test-ak&")

    def test_accelerate_endpoint(self):
        adapter = self.make(Recorder(), accelerate=True)

        assert adapter.endpoint == "https://examplebucket-1250000000.cos.accelerate.myqcloud.com"


class TestCreateStorageAdapter:
    def settings(self, **overrides):
        values = dict(bucket_name="examplebucket", access_key="ak", secret_key="sk", region="us-east-1")
        values.update(overrides)
        return Settings(**values)

    @pytest.mark.parametrize("provider, adapter_class", [
        ("s3", S3StorageAdapter),
        ("oss", OSSStorageAdapter),
        ("cos", COSStorageAdapter),
    ])
    async def test_selects_provider(self, provider, adapter_class):
        adapter = create_storage_adapter(self.settings(storage_provider=provider))

        assert isinstance(adapter, adapter_class)
        await adapter.aclose()

    def test_missing_bucket(self):
        with pytest.raises(ConfigurationError):
            create_storage_adapter(self.settings(bucket_name=""))

    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError):
            create_storage_adapter(self.settings(secret_key=None))
