"""Short summaries of long voice transcripts.

WHY: A two-minute voice message becomes a wall of text in the chat. For
long transcripts the reply adds a few bullet points on top, so readers
can skim before reading the full text.

HOW: SummaryClient posts the cleaned transcript to an OpenAI-compatible
chat completions endpoint through httpx and returns the model's answer.
It follows the same async-context-manager lifecycle as SonioxClient.

RULES:
- summarize() never raises for API or transport failures; it returns None
- Only transcripts of at least threshold_chars characters are sent
- The summary is optional decoration; a missing one never blocks the reply
"""

from __future__ import annotations

import logging

import httpx

from line_drive_bridge.config import (
    HTTP_TIMEOUT_S,
    SUMMARY_API_BASE_URL,
    SUMMARY_MAX_TOKENS,
    SUMMARY_MODEL,
    SUMMARY_THRESHOLD_CHARS,
    load_summary_api_key,
)

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = "以下のテキストを簡潔に要約してください。重要なポイントを箇条書きで3つ以内にまとめてください。"


class SummaryClient:
    """Async client for a chat-completions summary endpoint.

    RULES:
    - Use as: async with SummaryClient() as summarizer: ...
    - api_key defaults to load_summary_api_key(), which raises ValueError when unset
    - ``transport`` is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        threshold_chars: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or load_summary_api_key()
        self._base_url = (base_url or SUMMARY_API_BASE_URL).rstrip("/")
        self._model = model or SUMMARY_MODEL
        self.threshold_chars = SUMMARY_THRESHOLD_CHARS if threshold_chars is None else threshold_chars
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SummaryClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=httpx.Timeout(HTTP_TIMEOUT_S),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "SummaryClient must be used as an async context manager: "
                "async with SummaryClient() as summarizer: ..."
            )
        return self._client

    def wants_summary(self, text: str) -> bool:
        return len(text) >= self.threshold_chars

    async def summarize(self, text: str) -> str | None:
        """Return a bullet-point summary of ``text``, or None.

        None means the text was below the threshold or the request failed.
        """
        if not text or not self.wants_summary(text):
            return None

        client = self._ensure_client()
        body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SUMMARY_PROMPT},
                {"role": "user", "content": text},
            ],
            "max_tokens": SUMMARY_MAX_TOKENS,
            "temperature": 0.3,
        }
        try:
            resp = await client.post("/chat/completions", json=body)
        except httpx.HTTPError as exc:
            logger.warning("Summary request failed: %s: %s", type(exc).__name__, exc)
            return None
        if resp.status_code != 200:
            logger.warning("Summary API error %d: %s", resp.status_code, resp.text[:200])
            return None

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.warning("Unexpected summary response: %s", exc)
            return None
        summary = (content or "").strip()
        return summary or None
