"""Voice webhook event handling.

WHY: The voice channel is a separate LINE bot. Its users send audio
messages and expect the transcript back as a reply. Unlike the archive
webhook, every problem is reported to the user, because the reply is
the whole product.

HOW: Events are processed one at a time in arrival order. Text messages
only ever trigger the help reply. Audio messages are downloaded,
checked for size and type, sent through SonioxClient.transcribe(),
cleaned, optionally summarised, and replied to.

RULES:
- Only message events with a reply token are handled
- A non-empty allow-list restricts the feature to the listed user ids
- Reply failures are logged; they never fail the batch
- No speech client configured → "no_api_key" error reply
- Transcripts of SUMMARY_THRESHOLD_CHARS or more get a summary when a
  summarizer is configured; a failed summary only drops that section
"""

from __future__ import annotations

import logging

import httpx

from line_drive_bridge.config import MAX_AUDIO_BYTES, VOICE_ENABLED_USER_IDS
from line_drive_bridge.core.models import EventOutcome, MessageKind, WebhookEvent
from line_drive_bridge.line.client import LineAPIError, LineClient
from line_drive_bridge.transcription.client import (
    SonioxAPIError,
    SonioxClient,
    TranscriptionError,
    TranscriptionTimeoutError,
)
from line_drive_bridge.transcription.messages import (
    clean_transcription,
    format_error_message,
    format_help_message,
    format_transcription_message,
    is_help_request,
)
from line_drive_bridge.transcription.models import TranscriptionResult
from line_drive_bridge.transcription.summary import SummaryClient

logger = logging.getLogger(__name__)

_TRANSCRIPTION_ERRORS = (
    SonioxAPIError,
    TranscriptionError,
    TranscriptionTimeoutError,
    httpx.HTTPError,
)


class VoiceTranscriber:
    """Transcribes LINE audio messages and replies with the text."""

    def __init__(
        self,
        line: LineClient,
        speech: SonioxClient | None,
        enabled_user_ids: list[str] | None = None,
        language: str | None = None,
        summarizer: SummaryClient | None = None,
    ) -> None:
        self._line = line
        self._speech = speech
        self._summarizer = summarizer
        self._enabled = set(VOICE_ENABLED_USER_IDS if enabled_user_ids is None else enabled_user_ids)
        self._language = language

    def is_enabled_for(self, user_id: str | None) -> bool:
        return not self._enabled or user_id in self._enabled

    async def handle_events(self, events: list[WebhookEvent]) -> list[EventOutcome]:
        outcomes = []
        for index, event in enumerate(events):
            try:
                outcome = await self._handle_one(index, event)
            except Exception as exc:
                logger.exception("Voice event %d failed", index)
                outcome = EventOutcome(index=index, event_type=event.type, success=False, error=str(exc))
            outcomes.append(outcome)
        return outcomes

    async def _handle_one(self, index: int, event: WebhookEvent) -> EventOutcome:
        if event.type != "message" or event.message is None or not event.reply_token:
            return EventOutcome(index=index, event_type=event.type, success=True, skipped=True)

        user_id = event.source.get("userId")
        if not self.is_enabled_for(user_id):
            logger.info("Voice transcription not enabled for %s", user_id)
            await self._reply(event.reply_token, format_error_message("user_not_enabled"))
            return EventOutcome(index=index, event_type=event.type, success=False, error="user_not_enabled")

        kind = event.message.kind
        if kind is MessageKind.TEXT:
            if is_help_request(event.message.text):
                await self._reply(event.reply_token, format_help_message())
                return EventOutcome(index=index, event_type=event.type, success=True)
            return EventOutcome(index=index, event_type=event.type, success=True, skipped=True)

        if kind is not MessageKind.AUDIO:
            return EventOutcome(index=index, event_type=event.type, success=True, skipped=True)

        error_code = await self._transcribe_and_reply(event)
        return EventOutcome(
            index=index,
            event_type=event.type,
            success=error_code is None,
            error=error_code,
        )

    async def _transcribe_and_reply(self, event: WebhookEvent) -> str | None:
        """Run one audio message through the speech API; return an error code or None."""
        message = event.message
        if self._speech is None:
            await self._reply(event.reply_token, format_error_message("no_api_key"))
            return "no_api_key"

        logger.info("Transcribing audio message %s", message.id)
        try:
            content = await self._line.get_message_content(message.id)
        except LineAPIError as exc:
            logger.error("Download of audio %s failed: %s", message.id, exc)
            await self._reply(event.reply_token, format_error_message("download_failed"))
            return "download_failed"

        if content.size > MAX_AUDIO_BYTES:
            await self._reply(event.reply_token, format_error_message("audio_too_large"))
            return "audio_too_large"
        if content.content_type and not content.content_type.lower().startswith("audio/"):
            await self._reply(event.reply_token, format_error_message("unsupported_format"))
            return "unsupported_format"

        try:
            raw = await self._speech.transcribe(
                content.data, "{}.m4a".format(message.id), language=self._language
            )
        except _TRANSCRIPTION_ERRORS as exc:
            logger.error("Transcription of %s failed: %s", message.id, exc)
            await self._reply(event.reply_token, format_error_message("transcription_failed"))
            return "transcription_failed"

        cleaned = clean_transcription(raw)
        summary = await self._summarize(cleaned)
        result = TranscriptionResult(text=cleaned, raw_text=raw, summary=summary)
        logger.info(
            "Transcribed %s: %d chars raw, %d chars cleaned",
            message.id, len(result.raw_text), len(result.text),
        )
        await self._reply(event.reply_token, format_transcription_message(result))
        return None

    async def _summarize(self, text: str) -> str | None:
        if self._summarizer is None or not self._summarizer.wants_summary(text):
            return None
        logger.info("Summarising %d-char transcript", len(text))
        return await self._summarizer.summarize(text)

    async def _reply(self, reply_token: str, message: dict) -> None:
        try:
            await self._line.reply_message(reply_token, [message])
        except LineAPIError as exc:
            logger.error("Reply failed: %s", exc)
