"""Tests for the Google Drive remote store against a mocked Drive API."""
import asyncio
import json
import re
from unittest.mock import AsyncMock

import httpx
import pytest

from production_uploader.errors import AuthRequired, RemoteStoreError
from production_uploader.models import RemoteResult, SourceFile, UploadConfig
from production_uploader.services.auth import TokenAuthenticator
from production_uploader.services.drive_store import GoogleDriveRemoteStore

SESSION = "https://upload.test/session/1"


class FakeDrive:
    """Just enough of Drive v3 for folder lookup, resumable upload and delete."""

    def __init__(self, existing_folders=None):
        self.requests = []
        self.folders = dict(existing_folders or {})  # name -> id
        self.files = {}
        self.created = 0
        self.put_ranges = []
        self.fail_puts = 0
        self.start_status = 200
        self.delete_status = None
        self.hold = None
        self.file_errors = []  # statuses or httpx error types, consumed per file call

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "upload.test":
            if request.method == "DELETE":
                return httpx.Response(499)
            return await self._put(request)

        if path == "/upload/drive/v3/files":
            if self.start_status != 200:
                return httpx.Response(self.start_status, json={"error": "nope"})
            return httpx.Response(200, headers={"Location": SESSION})

        if path == "/drive/v3/files" and request.method == "GET":
            name = re.search(r"name='((?:[^'\\]|\\.)*)'", request.url.params["q"]).group(1)
            found = self.folders.get(name)
            return httpx.Response(200, json={"files": [{"id": found, "name": name}] if found else []})

        if path == "/drive/v3/files" and request.method == "POST":
            body = json.loads(request.content)
            self.created += 1
            folder_id = f"folder-{self.created}"
            self.folders[body["name"]] = folder_id
            return httpx.Response(200, json={"id": folder_id})

        file_id = path.rsplit("/", 1)[1]
        if self.file_errors:
            error = self.file_errors.pop(0)
            if isinstance(error, int):
                return httpx.Response(error, text="try again")
            raise error(f"{request.method} {file_id} interrupted", request=request)
        if request.method == "DELETE":
            if self.delete_status:
                return httpx.Response(self.delete_status, text="backend error")
            if self.files.pop(file_id, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        if request.method == "GET":
            if file_id not in self.files:
                return httpx.Response(404)
            return httpx.Response(200, json={"id": file_id, "trashed": self.files[file_id]})
        return httpx.Response(400)

    async def _put(self, request):
        if self.hold is not None:
            await self.hold.wait()
        if self.fail_puts:
            self.fail_puts -= 1
            return httpx.Response(503)
        content_range = request.headers["Content-Range"]
        self.put_ranges.append(content_range)
        start, end, total = map(int, re.match(r"bytes (\d+)-(\d+)/(\d+)", content_range).groups())
        assert len(request.content) == end - start + 1
        if end + 1 < total:
            return httpx.Response(308, headers={"Range": f"bytes=0-{end}"})
        self.files["file-1"] = False
        return httpx.Response(200, json={
            "id": "file-1",
            "name": "x",
            "webViewLink": "https://drive.google.com/file/d/file-1/view",
            "size": str(total),
        })


@pytest.fixture
def drive():
    return FakeDrive({"Production Files": "pf"})


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "take1.mov"
    path.write_bytes(b"0123456789")
    return SourceFile.from_path(path)


def _store(drive, token="tok", **config):
    client = httpx.AsyncClient(transport=httpx.MockTransport(drive))
    store = GoogleDriveRemoteStore(
        TokenAuthenticator(token),
        UploadConfig(chunk_size=config.pop("chunk_size", 4), max_retries=config.pop("max_retries", 2)),
        client=client,
        sleep=AsyncMock(),
    )
    return store, client


class TestFolders:
    @pytest.mark.asyncio
    async def test_creates_missing_folders_under_existing_parent(self, drive):
        store, client = _store(drive)
        async with client:
            folder_id = await store.get_or_create_folder(["Production Files", "ABC-1000", "Raw Footage"])

        posts = [json.loads(r.content) for r in drive.requests if r.method == "POST"]
        assert folder_id == "folder-2"
        assert posts == [
            {"name": "ABC-1000", "mimeType": "application/vnd.google-apps.folder", "parents": ["pf"]},
            {"name": "Raw Footage", "mimeType": "application/vnd.google-apps.folder", "parents": ["folder-1"]},
        ]
        assert all(r.headers["Authorization"] == "Bearer tok" for r in drive.requests)

    @pytest.mark.asyncio
    async def test_walked_prefixes_are_cached(self, drive):
        store, client = _store(drive)
        async with client:
            await store.get_or_create_folder(["Production Files", "ABC-1000", "Raw Footage"])
            before = len(drive.requests)
            again = await store.get_or_create_folder(["Production Files", "ABC-1000", "Raw Footage"])
            assert len(drive.requests) == before
            await store.get_or_create_folder(["Production Files", "ABC-1000", "Final Videos"])

        assert again == "folder-2"
        assert len(drive.requests) == before + 2

    @pytest.mark.asyncio
    async def test_top_level_lookup_queries_root(self, drive):
        store, client = _store(drive)
        async with client:
            assert await store.get_or_create_folder(["Production Files"]) == "pf"

        query = drive.requests[0].url.params["q"]
        assert "'root' in parents" in query
        assert "trashed=false" in query


class TestUpload:
    @pytest.mark.asyncio
    async def test_chunked_upload_reports_progress(self, drive, source):
        store, client = _store(drive)
        progress = []
        async with client:
            result = await store.upload(
                source, "folder-9", lambda sent, total: progress.append((sent, total)),
                display_name="ABC-1000_raw_01.mov", task_id="t1",
            )

        start = drive.requests[0]
        assert start.url.params["uploadType"] == "resumable"
        assert start.headers["X-Upload-Content-Length"] == "10"
        assert json.loads(start.content)["name"] == "ABC-1000_raw_01.mov"
        assert json.loads(start.content)["parents"] == ["folder-9"]
        assert drive.put_ranges == ["bytes 0-3/10", "bytes 4-7/10", "bytes 8-9/10"]
        assert progress == [(0, 10), (4, 10), (8, 10), (10, 10)]
        assert result == RemoteResult("file-1", "https://drive.google.com/file/d/file-1/view", 10)

    @pytest.mark.asyncio
    async def test_chunk_is_retried_with_backoff(self, drive, source):
        drive.fail_puts = 1
        store, client = _store(drive)
        async with client:
            result = await store.upload(source, "folder-9")

        assert result.remote_id == "file-1"
        store._sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, drive, source):
        drive.fail_puts = 10
        store, client = _store(drive, max_retries=2)
        async with client:
            with pytest.raises(RemoteStoreError) as excinfo:
                await store.upload(source, "folder-9")

        assert excinfo.value.status_code == 503
        assert store._sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_rejected_token_requires_sign_in(self, drive, source):
        drive.start_status = 401
        store, client = _store(drive)
        async with client:
            with pytest.raises(AuthRequired):
                await store.upload(source, "folder-9")

    @pytest.mark.asyncio
    async def test_missing_token_requires_sign_in(self, drive, source):
        store, client = _store(drive, token=None)
        async with client:
            with pytest.raises(AuthRequired):
                await store.upload(source, "folder-9")
        assert drive.requests == []


class TestAbort:
    @pytest.mark.asyncio
    async def test_abort_cancels_session(self, drive, source, until):
        drive.hold = asyncio.Event()
        store, client = _store(drive)
        async with client:
            upload = asyncio.create_task(store.upload(source, "folder-9", task_id="t1"))
            await until(lambda: any(r.method == "PUT" for r in drive.requests))

            upload.cancel()
            await store.abort("t1")
            with pytest.raises(asyncio.CancelledError):
                await upload

        deletes = [str(r.url) for r in drive.requests if r.method == "DELETE"]
        assert deletes == [SESSION]

    @pytest.mark.asyncio
    async def test_cancelled_upload_cleans_up_its_session(self, drive, source, until):
        drive.hold = asyncio.Event()
        store, client = _store(drive)
        async with client:
            upload = asyncio.create_task(store.upload(source, "folder-9", task_id="t1"))
            await until(lambda: any(r.method == "PUT" for r in drive.requests))

            upload.cancel()
            with pytest.raises(asyncio.CancelledError):
                await upload
            await until(lambda: any(r.method == "DELETE" for r in drive.requests))

        deletes = [str(r.url) for r in drive.requests if r.method == "DELETE"]
        assert deletes == [SESSION]

    @pytest.mark.asyncio
    async def test_abort_unknown_task_is_noop(self, drive):
        store, client = _store(drive)
        async with client:
            await store.abort("nobody")
        assert drive.requests == []


class TestDeleteAndExists:
    @pytest.mark.asyncio
    async def test_delete_existing_and_missing(self, drive):
        drive.files["file-1"] = False
        store, client = _store(drive)
        async with client:
            await store.delete("file-1")
            await store.delete("file-1")

        assert "file-1" not in drive.files

    @pytest.mark.asyncio
    async def test_delete_failure_raises(self, drive):
        drive.delete_status = 500
        store, client = _store(drive)
        async with client:
            with pytest.raises(RemoteStoreError, match="backend error"):
                await store.delete("file-1")
        assert store._sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_delete_retries_transient_errors(self, drive):
        drive.files["file-1"] = False
        drive.file_errors = [503, 429]
        store, client = _store(drive)
        async with client:
            await store.delete("file-1")

        assert [r.method for r in drive.requests] == ["DELETE", "DELETE", "DELETE"]
        assert "file-1" not in drive.files
        assert [c.args for c in store._sleep.await_args_list] == [(1,), (2,)]

    @pytest.mark.asyncio
    async def test_delete_transport_error_becomes_store_error(self, drive):
        drive.file_errors = [httpx.ConnectError] * 3
        store, client = _store(drive, max_retries=2)
        async with client:
            with pytest.raises(RemoteStoreError, match="ConnectError"):
                await store.delete("file-1")

    @pytest.mark.asyncio
    async def test_exists_retries_transient_errors(self, drive):
        drive.files["live"] = False
        drive.file_errors = [httpx.ReadTimeout, 502]
        store, client = _store(drive)
        async with client:
            assert await store.exists("live") is True

        assert len(drive.requests) == 3

    @pytest.mark.asyncio
    async def test_exists(self, drive):
        drive.files["live"] = False
        drive.files["binned"] = True
        store, client = _store(drive)
        async with client:
            assert await store.exists("live") is True
            assert await store.exists("binned") is False
            assert await store.exists("gone") is False

    @pytest.mark.asyncio
    async def test_requires_client(self):
        store = GoogleDriveRemoteStore(TokenAuthenticator("tok"))
        with pytest.raises(RuntimeError, match="not initialized"):
            await store.exists("x")
