"""Tests for the Google Drive REST backend against a mocked transport.

WHY: The Drive client builds query strings, multipart bodies and auth
headers by hand. These tests pin the wire format without network access.

HOW: httpx.MockTransport routes every request to a small handler that
records it and answers like the Drive API would.
"""

from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest

from line_drive_bridge.config import DriveCredentials
from line_drive_bridge.storage.base import FOLDER_MIME_TYPE, StorageAPIError
from line_drive_bridge.storage.drive import GoogleDriveStorage, escape_query_value

CREDS = DriveCredentials(
    client_id="cid",
    client_secret="csecret",
    refresh_token="rtoken",
    root_folder_id="ROOT",
)


class FakeDrive:
    """Minimal Drive API responder that records requests."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.token_calls = 0
        self.list_result: list = []
        self.fail_status = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url.startswith("https://oauth2.googleapis.com/token"):
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": "at-{}".format(self.token_calls), "expires_in": 3600})

        if self.fail_status:
            return httpx.Response(self.fail_status, text="quota exceeded")

        path = request.url.path
        if request.method == "GET" and path == "/drive/v3/files":
            return httpx.Response(200, json={"files": self.list_result})
        if request.method == "POST" and path == "/drive/v3/files":
            body = json.loads(request.content)
            return httpx.Response(200, json={"id": "new-folder", "name": body["name"], "parents": body["parents"]})
        if request.method == "POST" and path == "/upload/drive/v3/files":
            return httpx.Response(200, json={"id": "new-file", "name": "x.txt", "parents": ["P"], "size": "5"})
        if request.method == "PATCH" and path.startswith("/upload/drive/v3/files/"):
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "name": "x.txt", "parents": ["P"]})
        if request.method == "GET" and path.startswith("/drive/v3/files/"):
            if request.url.params.get("alt") == "media":
                return httpx.Response(200, content="内容".encode("utf-8"))
            return httpx.Response(200, json={"id": "ROOT", "name": "LINE_Messages"})
        return httpx.Response(404, text="no route")

    def api_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if "oauth2" not in str(r.url)]


def _run(fake: FakeDrive, coro_factory):
    async def run():
        async with GoogleDriveStorage(CREDS, transport=httpx.MockTransport(fake)) as drive:
            return await coro_factory(drive)

    return asyncio.run(run())


class TestQueries:
    def test_escape(self):
        assert escape_query_value("it's a\\b") == "it\\'s a\\\\b"

    def test_find_containers_query(self):
        fake = FakeDrive()
        fake.list_result = [
            {"id": "old", "name": "group_G1", "parents": ["ROOT"]},
            {"id": "newer", "name": "group_G1", "parents": ["ROOT"]},
        ]
        found = _run(fake, lambda d: d.find_containers("ROOT", "group_G1"))

        assert [c.id for c in found] == ["old", "newer"]
        assert found[0].parent_id == "ROOT"
        params = fake.api_requests()[0].url.params
        q = params["q"]
        assert "name = 'group_G1'" in q
        assert "'ROOT' in parents" in q
        assert "trashed = false" in q
        assert "mimeType = '{}'".format(FOLDER_MIME_TYPE) in q
        assert params["orderBy"] == "createdTime"

    def test_find_files_excludes_folders(self):
        fake = FakeDrive()
        fake.list_result = [{"id": "f1", "name": "messages_2024-01-02.txt", "size": "12"}]
        found = _run(fake, lambda d: d.find_files("P", "messages_2024-01-02.txt"))
        assert found[0].size == 12
        assert "mimeType != '{}'".format(FOLDER_MIME_TYPE) in fake.api_requests()[0].url.params["q"]

    def test_names_with_quotes_are_escaped(self):
        fake = FakeDrive()
        _run(fake, lambda d: d.find_files("P", "Bob's notes.txt"))
        assert "name = 'Bob\\'s notes.txt'" in fake.api_requests()[0].url.params["q"]


class TestWrites:
    def test_create_container(self):
        fake = FakeDrive()
        ref = _run(fake, lambda d: d.create_container("ROOT", "2024-01-02"))
        assert ref.id == "new-folder"
        body = json.loads(fake.api_requests()[0].content)
        assert body == {"name": "2024-01-02", "mimeType": FOLDER_MIME_TYPE, "parents": ["ROOT"]}

    def test_create_file_is_multipart(self):
        fake = FakeDrive()
        _run(fake, lambda d: d.create_file("P", "x.txt", b"hello", "text/plain; charset=utf-8"))
        request = fake.api_requests()[0]
        assert request.url.params["uploadType"] == "multipart"
        assert request.headers["content-type"].startswith("multipart/related; boundary=")
        assert b'"name": "x.txt"' in request.content
        assert b"\r\n\r\nhello\r\n--" in request.content

    def test_update_content_is_media_upload(self):
        fake = FakeDrive()
        ref = _run(fake, lambda d: d.update_content("F1", b"new", "text/plain; charset=utf-8"))
        request = fake.api_requests()[0]
        assert request.method == "PATCH"
        assert request.url.params["uploadType"] == "media"
        assert request.content == b"new"
        assert ref.id == "F1"

    def test_get_content_returns_bytes(self):
        fake = FakeDrive()
        data = _run(fake, lambda d: d.get_content("F1"))
        assert data.decode("utf-8") == "内容"


class TestAuthAndErrors:
    def test_token_is_cached(self):
        fake = FakeDrive()

        async def two_calls(drive):
            await drive.find_files("P", "a")
            await drive.find_files("P", "b")

        _run(fake, two_calls)
        assert fake.token_calls == 1
        for request in fake.api_requests():
            assert request.headers["authorization"] == "Bearer at-1"

    def test_refresh_grant_sent(self):
        fake = FakeDrive()
        _run(fake, lambda d: d.get_container("ROOT"))
        token_request = fake.requests[0]
        assert b"grant_type=refresh_token" in token_request.content
        assert b"refresh_token=rtoken" in token_request.content

    def test_error_status_raises(self):
        fake = FakeDrive()
        fake.fail_status = 403
        with pytest.raises(StorageAPIError) as info:
            _run(fake, lambda d: d.get_content("F1"))
        assert info.value.status_code == 403
        assert "quota" in info.value.message

    def test_transport_error_raises_storage_error(self):
        def broken(request):
            if "oauth2" in str(request.url):
                return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
            raise httpx.ConnectError("connection refused", request=request)

        async def run():
            async with GoogleDriveStorage(CREDS, transport=httpx.MockTransport(broken)) as drive:
                await drive.get_content("F1")

        with pytest.raises(StorageAPIError) as info:
            asyncio.run(run())
        assert info.value.status_code == 0

    def test_token_transport_error_raises_storage_error(self):
        def unreachable(request):
            raise httpx.ConnectError("name resolution failed", request=request)

        async def run():
            async with GoogleDriveStorage(CREDS, transport=httpx.MockTransport(unreachable)) as drive:
                await drive.get_container("ROOT")

        with pytest.raises(StorageAPIError) as info:
            asyncio.run(run())
        assert info.value.status_code == 0
        assert "ConnectError" in info.value.message

    def test_requires_context_manager(self):
        drive = GoogleDriveStorage(CREDS)
        with pytest.raises(RuntimeError, match="async context manager"):
            asyncio.run(drive.get_content("F1"))
