"""Tests for the upload HTTP endpoints."""

import asyncio
import hashlib
import re

import httpx
import pytest

from cloud_upload.config import Settings
from cloud_upload.main import create_app, generate_key
from cloud_upload.services.resumable_service import ResumableUploader
from cloud_upload.services.state_store import MemoryStateStore, RedisStateStore


@pytest.fixture
def settings():
    return Settings(max_file_size=1024 * 1024, max_part_size=64, upload_path_prefix="uploads")


@pytest.fixture
async def client(storage, settings):
    app = create_app(storage=storage, settings=settings)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


async def init_upload(client, **overrides):
    body = {"filename": "clip.mp4", "fileSize": 11, "chunks": 2, "mimeType": "video/mp4"}
    body.update(overrides)
    response = await client.post("/upload/init", json=body)
    assert response.status_code == 200
    return response.json()


async def send_chunk(client, session, index, data):
    return await client.post(
        "/upload/chunk",
        data={"index": str(index), "uploadId": session["uploadId"], "key": session["key"]},
        files={"file": ("blob", data, "application/octet-stream")},
    )


def test_generate_key():
    assert re.fullmatch(r"uploads/videos/[0-9a-f-]{36}\.mp4", generate_key("clip.mp4", "uploads", "videos"))
    assert re.fullmatch(r"[0-9a-f-]{36}", generate_key("README", ""))
    assert re.fullmatch(r"docs/[0-9a-f-]{36}\.gz", generate_key("a.tar.gz", "", "/docs/"))


class TestInit:
    async def test_init(self, client, storage):
        session = await init_upload(client, path="videos")

        assert session["uploadId"] == "upload-1"
        assert re.fullmatch(r"uploads/videos/[0-9a-f-]{36}\.mp4", session["key"])
        assert "urls" not in session
        assert storage.calls == [("initiate", session["key"])]

    async def test_rejects_large_files(self, client, storage):
        response = await client.post(
            "/upload/init", json={"filename": "big.bin", "fileSize": 2 * 1024 * 1024, "chunks": 1}
        )

        assert response.status_code == 400
        assert storage.calls == []

    async def test_rejects_missing_fields(self, client):
        response = await client.post("/upload/init", json={"filename": "a.bin"})

        assert response.status_code == 422


class TestChunk:
    async def test_index_becomes_part_number(self, client, storage):
        session = await init_upload(client)

        response = await send_chunk(client, session, 0, b"hello")

        assert response.status_code == 200
        assert response.json() == {"index": 0, "etag": hashlib.md5(b"hello").hexdigest()}
        assert ("upload_part", 1) in storage.calls

    async def test_rejects_negative_index(self, client, storage):
        session = await init_upload(client)

        response = await send_chunk(client, session, -1, b"hello")

        assert response.status_code == 400
        assert storage.count("upload_part") == 0

    async def test_rejects_oversized_chunk(self, client, storage):
        session = await init_upload(client)

        response = await send_chunk(client, session, 0, b"x" * 65)

        assert response.status_code == 400
        assert storage.count("upload_part") == 0

    async def test_storage_error_is_500(self, client, storage):
        session = await init_upload(client)
        storage.fail_parts = {1: -1}

        response = await send_chunk(client, session, 0, b"hello")

        assert response.status_code == 500
        assert "InternalError" in response.json()["detail"]


class TestCompleteAbortStatus:
    async def test_complete(self, client, storage):
        session = await init_upload(client)
        first = (await send_chunk(client, session, 0, b"hello")).json()
        second = (await send_chunk(client, session, 1, b" world")).json()

        response = await client.post("/upload/complete", json={
            "uploadId": session["uploadId"],
            "key": session["key"],
            "chunks": [second, first],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["fileId"] == session["key"]
        assert body["url"].startswith("https://fake.example.com/")
        assert storage.objects[session["key"]] == b"hello world"

    async def test_complete_without_chunks(self, client):
        session = await init_upload(client)

        response = await client.post(
            "/upload/complete", json={"uploadId": session["uploadId"], "key": session["key"], "chunks": []}
        )

        assert response.status_code == 400

    async def test_abort(self, client, storage):
        session = await init_upload(client)

        response = await client.post("/upload/abort", json={"uploadId": session["uploadId"], "key": session["key"]})

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert storage.count("abort") == 1

    async def test_status(self, client):
        session = await init_upload(client)
        await send_chunk(client, session, 1, b" world")
        await send_chunk(client, session, 0, b"hello")

        response = await client.get("/upload/status", params={"uploadId": session["uploadId"], "key": session["key"]})

        assert response.status_code == 200
        body = response.json()
        assert body["uploadId"] == session["uploadId"]
        assert [p["partNumber"] for p in body["parts"]] == [1, 2]
        assert body["parts"][0]["size"] == 5


class ClosingStateStore(MemoryStateStore):
    def __init__(self):
        super().__init__()
        self.cleanups = 0
        self.closed = False

    async def cleanup(self, max_age):
        self.cleanups += 1
        return await super().cleanup(max_age)

    async def aclose(self):
        self.closed = True


class TestLifespan:
    async def test_builds_uploader_and_runs_cleanup(self, storage, monkeypatch):
        store = ClosingStateStore()
        monkeypatch.setattr(RedisStateStore, "from_settings", classmethod(lambda cls, settings: store))
        settings = Settings(part_size=8 * 1024 * 1024, concurrency=2, state_expiry_days=3)
        app = create_app(storage=storage, settings=settings)

        async with app.router.lifespan_context(app):
            uploader = app.state.uploader
            assert isinstance(uploader, ResumableUploader)
            assert uploader.state_store is store
            assert uploader.storage is storage
            assert uploader.engine.part_size == 8 * 1024 * 1024
            assert uploader.engine.concurrency == 2
            for _ in range(20):
                if store.cleanups:
                    break
                await asyncio.sleep(0.01)
            assert store.cleanups == 1

        assert store.closed
        assert app.state.uploader is None

    async def test_supplied_uploader_is_kept(self, storage, monkeypatch):
        def fail(cls, settings):
            raise AssertionError("no Redis store expected")

        monkeypatch.setattr(RedisStateStore, "from_settings", classmethod(fail))
        uploader = ResumableUploader(storage)
        app = create_app(storage=storage, settings=Settings(), uploader=uploader)

        async with app.router.lifespan_context(app):
            assert app.state.uploader is uploader

        assert app.state.uploader is uploader
