"""Per-event dispatch from LINE webhook events to storage.

WHY: One webhook request can carry many events from many conversations.
Each event must be filed independently: a failed download in one group
must not stop a text message in another from being logged, and the
webhook must still answer 200 whatever happens.

HOW: handle_events() runs one coroutine per event with asyncio.gather.
Each coroutine classifies the source, resolves the partition path, and
either appends a text entry to the daily log or stores an attachment
beside it and logs a pointer entry. Every event yields an EventOutcome;
exceptions are caught at the event boundary only.

RULES:
- message/text → append "[ts] sender\\ntext\\n\\n" to messages_<date>.txt
- message/image|video|audio|file → upload, then append "[<type>] <name>"
- Other message types and non-message events are skipped (success)
- join/leave are logged and reported as success
- Ordering is only guaranteed per daily log, by arrival at its lock
- Attachment names carry the message id; a redelivered message is not uploaded again
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

import httpx

from line_drive_bridge.config import (
    PARTITION_STRATEGY,
    RESOLVE_DISPLAY_NAMES,
    SHORT_PARTITION_IDS,
)
from line_drive_bridge.core.append import AppendEngine
from line_drive_bridge.core.formatter import (
    attachment_name,
    guess_mime_type,
    partition_date,
    render,
    render_header,
)
from line_drive_bridge.core.locks import KeyedLock
from line_drive_bridge.core.models import (
    BINARY_KINDS,
    ContainerRef,
    EventOutcome,
    FileRef,
    MessageKind,
    SourceInfo,
    WebhookEvent,
)
from line_drive_bridge.core.resolver import PathResolver
from line_drive_bridge.core.source import UNKNOWN_USER, classify, get_partitioner, partition_key
from line_drive_bridge.line.client import LineAPIError, LineClient
from line_drive_bridge.storage.base import StorageBackend

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageBridge:
    """Files webhook events into a StorageBackend.

    RULES:
    - storage and line must already be open (entered) when events arrive
    - line may be None; attachments then fail and display names are not resolved
    - One MessageBridge per process, so its locks cover every request
    """

    def __init__(
        self,
        storage: StorageBackend,
        root_id: str,
        line: LineClient | None = None,
        partition_strategy: str | None = None,
        short_ids: bool | None = None,
        resolve_display_names: bool | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage = storage
        self._root = ContainerRef(id=root_id, name="")
        self._line = line
        self._partitioner = get_partitioner(partition_strategy or PARTITION_STRATEGY)
        self._short_ids = SHORT_PARTITION_IDS if short_ids is None else short_ids
        self._resolve_names = (
            RESOLVE_DISPLAY_NAMES if resolve_display_names is None else resolve_display_names
        )
        self._clock = clock
        self._file_locks = KeyedLock()
        self.resolver = PathResolver(storage)
        self.appender = AppendEngine(storage, locks=self._file_locks)

    # ------------------------------------------------------------------
    # Batch entry point
    # ------------------------------------------------------------------

    async def handle_events(self, events: list[WebhookEvent]) -> list[EventOutcome]:
        """Process a webhook batch concurrently and return one outcome per event."""
        if not events:
            return []

        outcomes = await asyncio.gather(
            *(self._handle_one(index, event) for index, event in enumerate(events))
        )
        failed = sum(1 for o in outcomes if not o.success)
        skipped = sum(1 for o in outcomes if o.skipped)
        logger.info(
            "Processed %d event(s): %d succeeded, %d failed, %d skipped",
            len(outcomes), len(outcomes) - failed, failed, skipped,
        )
        return list(outcomes)

    async def _handle_one(self, index: int, event: WebhookEvent) -> EventOutcome:
        try:
            return await self._dispatch(index, event)
        except Exception as exc:
            logger.exception("Event %d (%s) failed", index, event.type)
            return EventOutcome(index=index, event_type=event.type, success=False, error=str(exc))

    async def _dispatch(self, index: int, event: WebhookEvent) -> EventOutcome:
        if event.type in ("join", "leave"):
            info = classify(event.source)
            logger.info("Bot %s %s", "joined" if event.type == "join" else "left", partition_key(info))
            return EventOutcome(index=index, event_type=event.type, success=True)

        if event.type != "message" or event.message is None:
            logger.debug("Skipping event %d of type %s", index, event.type)
            return EventOutcome(index=index, event_type=event.type, success=True, skipped=True)

        kind = event.message.kind
        if kind is MessageKind.TEXT:
            ref = await self.store_text(event)
        elif kind in BINARY_KINDS:
            ref = await self.store_attachment(event)
        else:
            logger.info("Skipping unsupported message type %s", event.message.type)
            return EventOutcome(index=index, event_type=event.type, success=True, skipped=True)

        return EventOutcome(
            index=index,
            event_type=event.type,
            success=True,
            file_id=ref.id,
            file_name=ref.name,
        )

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------

    async def store_text(self, event: WebhookEvent) -> FileRef:
        """Append a text message to its daily log."""
        info = classify(event.source)
        sender = await self._sender_name(info)
        return await self._append_log(event, info, sender, event.message.text or "")

    async def store_attachment(self, event: WebhookEvent) -> FileRef:
        """Download a binary message, store it in the date container, and log it.

        Returns:
            FileRef of the stored attachment (not of the daily log).
        """
        if self._line is None:
            raise RuntimeError("No LINE client configured; cannot download message content")

        message = event.message
        info = classify(event.source)
        content = await self._line.get_message_content(message.id)

        name = attachment_name(message, event.timestamp, content.content_type)
        mime_type = guess_mime_type(message, content.content_type)
        leaf = await self._leaf_container(event, info)

        async with self._file_locks.hold((leaf.id, name)):
            existing = await self._storage.find_files(leaf.id, name)
            if existing:
                logger.info("Attachment %s already stored as %s", name, existing[0].id)
                ref = existing[0]
            else:
                ref = await self._storage.create_file(leaf.id, name, content.data, mime_type)
                logger.info("Stored %s attachment %s (%d bytes)", message.type, name, content.size)

        sender = await self._sender_name(info)
        await self._append_log(event, info, sender, "[{}] {}".format(message.type, name))
        return ref

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _leaf_container(self, event: WebhookEvent, info: SourceInfo) -> ContainerRef:
        segments = self._partitioner(info, partition_date(event.timestamp), self._short_ids)
        return await self.resolver.ensure_path(self._root, segments)

    async def _append_log(self, event: WebhookEvent, info: SourceInfo, sender: str, body: str) -> FileRef:
        key = partition_key(info, self._short_ids)
        rendered = render(event.timestamp, sender, body, key)
        segments = self._partitioner(info, rendered.date, self._short_ids)
        leaf = await self.resolver.ensure_path(self._root, segments)
        header = render_header(info, key, self._clock())
        return await self.appender.append_entry(leaf, rendered.file_name, rendered.entry_text, header=header)

    async def _sender_name(self, info: SourceInfo) -> str:
        fallback = info.user_id or UNKNOWN_USER
        if not self._resolve_names or self._line is None or not info.user_id:
            return fallback
        try:
            return await self._line.get_display_name(info)
        except (LineAPIError, httpx.HTTPError) as exc:
            logger.warning("Display name lookup failed for %s: %s", info.user_id, exc)
            return fallback
