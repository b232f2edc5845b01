"""Async client for the LINE Messaging API.

WHY: Binary messages (images, video, audio, files) arrive in the webhook
only as ids; their bytes must be downloaded separately. The voice path
also needs to reply to the sender, and the bridge can optionally record
display names instead of raw user ids.

HOW: Wraps httpx.AsyncClient with Bearer token auth. Content downloads go
to the data API host (api-data.line.me) with their own, shorter timeout.
Replies and profile lookups go to the main API host.

RULES:
- Use as: async with LineClient() as line: ...
- channel_access_token defaults to load_channel_access_token() from .env
- Content downloads time out after CONTENT_DOWNLOAD_TIMEOUT_S (30s)
- Any non-2xx response raises LineAPIError; no retries
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from line_drive_bridge.config import (
    CONTENT_DOWNLOAD_TIMEOUT_S,
    HTTP_TIMEOUT_S,
    LINE_API_BASE_URL,
    LINE_DATA_API_BASE_URL,
    load_channel_access_token,
)
from line_drive_bridge.core.models import SourceInfo, SourceKind

logger = logging.getLogger(__name__)

MAX_REPLY_MESSAGES = 5


class LineAPIError(Exception):
    """Raised when the LINE API returns an error response.

    RULES:
    - Always include status_code and message
    - status_code is 0 when no response arrived (timeout, connection error)
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"LINE API error {status_code}: {message}")


@dataclass(frozen=True)
class MessageContent:
    """Downloaded message content and its declared type."""

    data: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


def text_message(text: str) -> dict:
    """Build a LINE text message object."""
    return {"type": "text", "text": text}


class LineClient:
    """Async client for content download, replies, and profile lookup.

    RULES:
    - ``transport`` is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        channel_access_token: str | None = None,
        api_base_url: str | None = None,
        data_api_base_url: str | None = None,
        content_timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = channel_access_token or load_channel_access_token()
        self._api_base_url = (api_base_url or LINE_API_BASE_URL).rstrip("/")
        self._data_api_base_url = (data_api_base_url or LINE_DATA_API_BASE_URL).rstrip("/")
        self._content_timeout_s = content_timeout_s or CONTENT_DOWNLOAD_TIMEOUT_S
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> LineClient:
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"Bearer {self._token}"},
            timeout=httpx.Timeout(HTTP_TIMEOUT_S),
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
                "LineClient must be used as an async context manager: "
                "async with LineClient() as line: ..."
            )
        return self._client

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:  # noqa: ANN003
        client = self._ensure_client()
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise LineAPIError(0, "{}: {}".format(type(exc).__name__, exc)) from exc
        if resp.status_code != 200:
            raise LineAPIError(resp.status_code, resp.text)
        return resp

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def get_message_content(self, message_id: str) -> MessageContent:
        """Download the binary content of an image, video, audio or file message."""
        resp = await self._send(
            "GET",
            "{}/v2/bot/message/{}/content".format(self._data_api_base_url, message_id),
            timeout=httpx.Timeout(self._content_timeout_s),
        )
        content = MessageContent(data=resp.content, content_type=resp.headers.get("content-type"))
        logger.debug(
            "Downloaded content for message %s (%d bytes, %s)",
            message_id, content.size, content.content_type,
        )
        return content

    # ------------------------------------------------------------------
    # Reply
    # ------------------------------------------------------------------

    async def reply_message(self, reply_token: str, messages: list[dict]) -> None:
        """Reply to an event using its reply token.

        RULES:
        - At most MAX_REPLY_MESSAGES messages per reply (LINE limit)
        - Reply tokens are single-use and expire quickly
        """
        if not messages:
            raise ValueError("reply_message needs at least one message")
        if len(messages) > MAX_REPLY_MESSAGES:
            raise ValueError(
                "LINE accepts at most {} messages per reply, got {}".format(
                    MAX_REPLY_MESSAGES, len(messages)
                )
            )
        await self._send(
            "POST",
            "{}/v2/bot/message/reply".format(self._api_base_url),
            json={"replyToken": reply_token, "messages": messages},
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_display_name(self, info: SourceInfo) -> str:
        """Look up the sender's display name.

        HOW: Uses the group-member or room-member endpoint when the message
        came from a group or room (works for users who are not friends of
        the bot), and the plain profile endpoint otherwise.
        """
        if not info.user_id:
            raise ValueError("Cannot look up a display name without a user id")

        if info.kind is SourceKind.GROUP:
            path = "/v2/bot/group/{}/member/{}".format(info.group_id, info.user_id)
        elif info.kind is SourceKind.ROOM:
            path = "/v2/bot/room/{}/member/{}".format(info.room_id, info.user_id)
        else:
            path = "/v2/bot/profile/{}".format(info.user_id)

        resp = await self._send("GET", self._api_base_url + path)
        return resp.json().get("displayName") or info.user_id
