"""Async HTTP client for the Soniox non-realtime speech-to-text API.

WHY: Voice messages are transcribed by an external speech API. The job
workflow (upload, create, poll, fetch, delete) is asynchronous on the
service side, so the client has to drive it step by step without blocking
the webhook's event loop.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. The SonioxClient is an
async context manager: enter it to get an authenticated client, exit to
close the connection pool. Each API step is a separate method:
upload_bytes → create_transcription → poll_until_complete → fetch_transcript → cleanup.
transcribe() runs the whole sequence for one in-memory audio clip.

RULES:
- Always use the async context manager (async with SonioxClient(...) as client:)
- Default model is SONIOX_MODEL (stt-async-v4)
- Polling uses exponential backoff: 1s initial, 1.5x factor, 10s max, bounded timeout
- transcribe() always attempts cleanup, even when the job failed
- Cleanup failures are logged, never raised
"""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from line_drive_bridge.config import (
    SONIOX_BASE_URL,
    SONIOX_MODEL,
    TRANSCRIPTION_LANGUAGE,
    load_api_key,
)
from line_drive_bridge.transcription.models import TranscriptionStatus, TranscriptResponse

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_POLL_INITIAL_INTERVAL_S = 1.0
_POLL_BACKOFF_FACTOR = 1.5
_POLL_MAX_INTERVAL_S = 10.0
_POLL_TIMEOUT_S = 5 * 60  # voice messages are short


class SonioxAPIError(Exception):
    """Raised when the Soniox API returns an error response.

    RULES:
    - Always include status_code and message
    - message is the response body text or a summary
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Soniox API error {status_code}: {message}")


class TranscriptionError(Exception):
    """Raised when a transcription job enters the "error" status."""


class TranscriptionTimeoutError(TimeoutError):
    """Raised when polling exceeds the timeout.

    RULES:
    - Message includes the transcription ID and elapsed time
    """


class SonioxClient:
    """Async client for the Soniox non-realtime transcription API.

    RULES:
    - Use as: async with SonioxClient() as client: ...
    - api_key defaults to load_api_key() from .env
    - ``transport`` is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        poll_timeout_s: float | None = None,
        poll_interval_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or load_api_key()
        self._base_url = (base_url or SONIOX_BASE_URL).rstrip("/")
        self._model = model or SONIOX_MODEL
        self._poll_timeout_s = poll_timeout_s or _POLL_TIMEOUT_S
        self._poll_interval_s = poll_interval_s if poll_interval_s is not None else _POLL_INITIAL_INTERVAL_S
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SonioxClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=httpx.Timeout(120.0, connect=30.0),
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
                "SonioxClient must be used as an async context manager: "
                "async with SonioxClient() as client: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Step 1: Upload audio
    # ------------------------------------------------------------------

    async def upload_bytes(self, data: bytes, filename: str) -> str:
        """Upload an in-memory audio clip and return the file_id.

        RULES:
        - Sent as multipart/form-data under the "file" field
        - Raises SonioxAPIError on non-2xx responses
        """
        client = self._ensure_client()
        resp = await client.post("/files", files={"file": (filename, data)})
        if resp.status_code not in (200, 201):
            raise SonioxAPIError(resp.status_code, resp.text)
        return resp.json()["id"]

    # ------------------------------------------------------------------
    # Step 2: Create transcription
    # ------------------------------------------------------------------

    async def create_transcription(
        self,
        file_id: str,
        language_hints: list[str] | None = None,
    ) -> str:
        """Create a transcription job for an uploaded file and return its ID."""
        client = self._ensure_client()
        body: dict = {"model": self._model, "file_id": file_id}
        if language_hints:
            body["language_hints"] = language_hints

        resp = await client.post("/transcriptions", json=body)
        if resp.status_code not in (200, 201):
            raise SonioxAPIError(resp.status_code, resp.text)
        return resp.json()["id"]

    # ------------------------------------------------------------------
    # Step 3: Poll until complete
    # ------------------------------------------------------------------

    async def poll_until_complete(self, transcription_id: str) -> TranscriptionStatus:
        """Poll a transcription job until it completes or fails.

        HOW: Exponential backoff polling, starting at the initial interval
        and growing by 1.5x per poll up to the cap.

        RULES:
        - Returns TranscriptionStatus when status is "completed"
        - Raises TranscriptionError when status is "error"
        - Raises TranscriptionTimeoutError once the poll timeout has passed
        """
        client = self._ensure_client()
        interval = self._poll_interval_s
        start_time = time.monotonic()

        while True:
            elapsed = time.monotonic() - start_time
            if elapsed > self._poll_timeout_s:
                raise TranscriptionTimeoutError(
                    f"Transcription {transcription_id} timed out after "
                    f"{elapsed:.0f}s (limit: {self._poll_timeout_s:.0f}s)"
                )

            resp = await client.get(f"/transcriptions/{transcription_id}")
            if resp.status_code != 200:
                raise SonioxAPIError(resp.status_code, resp.text)

            status = TranscriptionStatus.from_dict(resp.json())
            logger.debug("Transcription %s is %s", transcription_id, status.status)

            if status.status == "completed":
                return status
            if status.status == "error":
                raise TranscriptionError(f"Transcription failed: {status.error_message}")

            await asyncio.sleep(interval)
            interval = min(interval * _POLL_BACKOFF_FACTOR, _POLL_MAX_INTERVAL_S)

    # ------------------------------------------------------------------
    # Step 4: Fetch transcript
    # ------------------------------------------------------------------

    async def fetch_transcript(self, transcription_id: str) -> str:
        """Fetch the completed transcript's plain text."""
        client = self._ensure_client()
        resp = await client.get(f"/transcriptions/{transcription_id}/transcript")
        if resp.status_code != 200:
            raise SonioxAPIError(resp.status_code, resp.text)
        return TranscriptResponse.from_dict(resp.json()).text

    # ------------------------------------------------------------------
    # Step 5: Cleanup
    # ------------------------------------------------------------------

    async def cleanup(self, transcription_id: str | None, file_id: str | None) -> None:
        """Delete the transcription and the uploaded file (best effort)."""
        client = self._ensure_client()
        targets = []
        if transcription_id:
            targets.append(f"/transcriptions/{transcription_id}")
        if file_id:
            targets.append(f"/files/{file_id}")

        for path in targets:
            try:
                await client.delete(path)
            except httpx.HTTPError as exc:
                logger.warning("Soniox cleanup of %s failed: %s", path, exc)

    # ------------------------------------------------------------------
    # Whole workflow
    # ------------------------------------------------------------------

    async def transcribe(self, audio: bytes, filename: str, language: str | None = None) -> str:
        """Upload, transcribe, fetch and clean up one audio clip.

        Returns:
            The raw transcript text.
        """
        file_id = None
        transcription_id = None
        try:
            file_id = await self.upload_bytes(audio, filename)
            transcription_id = await self.create_transcription(
                file_id, language_hints=[language or TRANSCRIPTION_LANGUAGE]
            )
            await self.poll_until_complete(transcription_id)
            return await self.fetch_transcript(transcription_id)
        finally:
            if file_id or transcription_id:
                await self.cleanup(transcription_id, file_id)
