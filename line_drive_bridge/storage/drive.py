"""Async Google Drive v3 storage backend.

WHY: Messages are archived in a Drive folder tree. The bridge needs a
handful of Drive operations (find/create folders and files, download and
replace file content) without pulling in a synchronous SDK that would
block the event loop.

HOW: Wraps httpx.AsyncClient. An OAuth2 access token is minted from the
refresh token on first use and cached until shortly before it expires.
Searches use the Drive ``q`` language with exact-name, parent, mimeType
and ``trashed = false`` clauses, ordered by createdTime so the oldest
duplicate is always first. New files are created with a single
multipart/related upload so metadata and content land atomically.

RULES:
- Use as: async with GoogleDriveStorage(credentials) as drive: ...
- Every request carries a bounded timeout (HTTP_TIMEOUT_S)
- Single attempt per call; no retries or backoff
- Any non-2xx response raises StorageAPIError(status, body)
- Names inside ``q`` are escaped (backslash and single quote)
"""

from __future__ import annotations

import json
import logging
import time
import uuid

import httpx

from line_drive_bridge.config import (
    GOOGLE_DRIVE_API_URL,
    GOOGLE_DRIVE_UPLOAD_URL,
    GOOGLE_TOKEN_URL,
    HTTP_TIMEOUT_S,
    DriveCredentials,
    load_drive_credentials,
)
from line_drive_bridge.core.models import ContainerRef, FileRef
from line_drive_bridge.storage.base import FOLDER_MIME_TYPE, StorageAPIError, StorageBackend

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TOKEN_EXPIRY_MARGIN_S = 60.0
_FILE_FIELDS = "id,name,parents,mimeType,size,webViewLink"
_LIST_FIELDS = "files({})".format(_FILE_FIELDS)


def escape_query_value(value: str) -> str:
    """Escape a string for use inside single quotes in a Drive ``q`` query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _build_query(parent_id: str, name: str, folders: bool) -> str:
    clauses = [
        "name = '{}'".format(escape_query_value(name)),
        "'{}' in parents".format(escape_query_value(parent_id)),
        "trashed = false",
    ]
    if folders:
        clauses.append("mimeType = '{}'".format(FOLDER_MIME_TYPE))
    else:
        clauses.append("mimeType != '{}'".format(FOLDER_MIME_TYPE))
    return " and ".join(clauses)


def _first_parent(data: dict) -> str | None:
    parents = data.get("parents") or []
    return parents[0] if parents else None


def _to_container(data: dict) -> ContainerRef:
    return ContainerRef(id=data["id"], name=data.get("name", ""), parent_id=_first_parent(data))


def _to_file(data: dict) -> FileRef:
    size = data.get("size")
    return FileRef(
        id=data["id"],
        name=data.get("name", ""),
        parent_id=_first_parent(data),
        mime_type=data.get("mimeType"),
        size=int(size) if size is not None else None,
        web_view_link=data.get("webViewLink"),
    )


def _multipart_related(metadata: dict, content: bytes, mime_type: str) -> tuple[bytes, str]:
    """Encode a Drive multipart upload body (metadata part + media part)."""
    boundary = "line-drive-bridge-{}".format(uuid.uuid4().hex)
    head = (
        "--{b}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        "{meta}\r\n"
        "--{b}\r\n"
        "Content-Type: {mime}\r\n\r\n"
    ).format(b=boundary, meta=json.dumps(metadata), mime=mime_type)
    tail = "\r\n--{}--\r\n".format(boundary)
    body = head.encode("utf-8") + content + tail.encode("utf-8")
    return body, "multipart/related; boundary={}".format(boundary)


class GoogleDriveStorage(StorageBackend):
    """StorageBackend backed by the Google Drive v3 REST API.

    RULES:
    - credentials default to load_drive_credentials() from .env
    - ``transport`` is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        credentials: DriveCredentials | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials or load_drive_credentials()
        self._timeout_s = timeout_s or HTTP_TIMEOUT_S
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @property
    def root_folder_id(self) -> str:
        return self._credentials.root_folder_id

    async def __aenter__(self) -> GoogleDriveStorage:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout_s),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "GoogleDriveStorage must be used as an async context manager: "
                "async with GoogleDriveStorage() as drive: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def _token(self) -> str:
        """Return a valid access token, refreshing it when close to expiry."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        client = self._ensure_client()
        try:
            resp = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self._credentials.client_id,
                    "client_secret": self._credentials.client_secret,
                    "refresh_token": self._credentials.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as exc:
            raise StorageAPIError(0, "{}: {}".format(type(exc).__name__, exc)) from exc
        if resp.status_code != 200:
            raise StorageAPIError(resp.status_code, resp.text)

        data = resp.json()
        self._access_token = data["access_token"]
        expires_in = float(data.get("expires_in", 3600))
        self._token_expires_at = time.monotonic() + max(expires_in - _TOKEN_EXPIRY_MARGIN_S, 0.0)
        logger.debug("Refreshed Drive access token (expires in %.0fs)", expires_in)
        return self._access_token

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:  # noqa: ANN003
        client = self._ensure_client()
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = "Bearer {}".format(await self._token())
        try:
            resp = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise StorageAPIError(0, "{}: {}".format(type(exc).__name__, exc)) from exc
        if resp.status_code not in (200, 201):
            raise StorageAPIError(resp.status_code, resp.text)
        return resp

    async def _list(self, parent_id: str, name: str, folders: bool) -> list[dict]:
        resp = await self._request(
            "GET",
            "{}/files".format(GOOGLE_DRIVE_API_URL),
            params={
                "q": _build_query(parent_id, name, folders),
                "fields": _LIST_FIELDS,
                "orderBy": "createdTime",
                "spaces": "drive",
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            },
        )
        return resp.json().get("files", [])

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def get_container(self, container_id: str) -> ContainerRef:
        resp = await self._request(
            "GET",
            "{}/files/{}".format(GOOGLE_DRIVE_API_URL, container_id),
            params={"fields": _FILE_FIELDS, "supportsAllDrives": "true"},
        )
        return _to_container(resp.json())

    async def find_containers(self, parent_id: str, name: str) -> list[ContainerRef]:
        return [_to_container(item) for item in await self._list(parent_id, name, folders=True)]

    async def create_container(self, parent_id: str, name: str) -> ContainerRef:
        resp = await self._request(
            "POST",
            "{}/files".format(GOOGLE_DRIVE_API_URL),
            params={"fields": _FILE_FIELDS, "supportsAllDrives": "true"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
        )
        container = _to_container(resp.json())
        logger.info("Created Drive folder %s (%s) under %s", name, container.id, parent_id)
        return container

    async def find_files(self, parent_id: str, name: str) -> list[FileRef]:
        return [_to_file(item) for item in await self._list(parent_id, name, folders=False)]

    async def create_file(self, parent_id: str, name: str, content: bytes, mime_type: str) -> FileRef:
        body, content_type = _multipart_related(
            {"name": name, "parents": [parent_id]}, content, mime_type
        )
        resp = await self._request(
            "POST",
            "{}/files".format(GOOGLE_DRIVE_UPLOAD_URL),
            params={"uploadType": "multipart", "fields": _FILE_FIELDS, "supportsAllDrives": "true"},
            content=body,
            headers={"Content-Type": content_type},
        )
        ref = _to_file(resp.json())
        logger.info("Created Drive file %s (%s, %d bytes)", name, ref.id, len(content))
        return ref

    async def get_content(self, file_id: str) -> bytes:
        resp = await self._request(
            "GET",
            "{}/files/{}".format(GOOGLE_DRIVE_API_URL, file_id),
            params={"alt": "media", "supportsAllDrives": "true"},
        )
        return resp.content

    async def update_content(self, file_id: str, content: bytes, mime_type: str) -> FileRef:
        resp = await self._request(
            "PATCH",
            "{}/files/{}".format(GOOGLE_DRIVE_UPLOAD_URL, file_id),
            params={"uploadType": "media", "fields": _FILE_FIELDS, "supportsAllDrives": "true"},
            content=content,
            headers={"Content-Type": mime_type},
        )
        return _to_file(resp.json())
