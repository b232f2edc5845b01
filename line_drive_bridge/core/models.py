"""Dataclasses for inbound webhook events and the storage hierarchy.

WHY: The LINE webhook delivers loosely-typed JSON, and the Drive API
returns loosely-typed JSON. The bridge logic in between needs explicit,
immutable values it can reason about: who sent a message, where it lands,
and which remote objects represent it.

HOW: Inbound types (WebhookEvent, Message) are parsed once per request via
from_dict factories. Storage types (ContainerRef, FileRef) are produced by
the storage backends. Entry is the unit appended to a daily log.

RULES:
- All dataclasses are frozen; nothing here is mutated after parsing
- from_dict never raises on missing optional fields
- timestamp is epoch milliseconds, exactly as LINE sends it
- Unknown message types are preserved as raw strings (kind property)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class SourceKind(str, enum.Enum):
    """Origin of a message: one-to-one chat, group, or multi-person room."""

    INDIVIDUAL = "individual"
    GROUP = "group"
    ROOM = "room"


class MessageKind(str, enum.Enum):
    """Message types the bridge knows how to store."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


BINARY_KINDS = frozenset({MessageKind.IMAGE, MessageKind.VIDEO, MessageKind.AUDIO, MessageKind.FILE})


@dataclass(frozen=True)
class SourceInfo:
    """Classified origin of an event.

    RULES:
    - kind GROUP → group_id set, room_id None
    - kind ROOM → room_id set, group_id None
    - kind INDIVIDUAL → both None
    - user_id may be None (LINE omits it for some group events)
    """

    kind: SourceKind
    user_id: str | None = None
    group_id: str | None = None
    room_id: str | None = None


@dataclass(frozen=True)
class Message:
    """The ``message`` object of a LINE message event."""

    id: str
    type: str
    text: str | None = None
    file_name: str | None = None
    file_size: int | None = None

    @property
    def kind(self) -> MessageKind | None:
        """The known MessageKind, or None for types the bridge skips."""
        try:
            return MessageKind(self.type)
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        return cls(
            id=str(data.get("id", "")),
            type=str(data.get("type", "")),
            text=data.get("text"),
            file_name=data.get("fileName"),
            file_size=data.get("fileSize"),
        )


@dataclass(frozen=True)
class WebhookEvent:
    """One entry of the webhook body's ``events`` array.

    WHY: Events carry the source descriptor, the timestamp used for date
    partitioning, and (for message events) the message payload.

    HOW: from_dict keeps the raw source dict; classification into a
    SourceInfo happens in core.source so it has a single home.
    """

    type: str
    timestamp: int
    source: dict[str, Any] = field(default_factory=dict)
    message: Message | None = None
    reply_token: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> WebhookEvent:
        raw_message = data.get("message")
        return cls(
            type=str(data.get("type", "")),
            timestamp=int(data.get("timestamp", 0)),
            source=dict(data.get("source") or {}),
            message=Message.from_dict(raw_message) if isinstance(raw_message, dict) else None,
            reply_token=data.get("replyToken"),
        )


@dataclass(frozen=True)
class ContainerRef:
    """A folder in the remote hierarchy."""

    id: str
    name: str
    parent_id: str | None = None


@dataclass(frozen=True)
class FileRef:
    """A stored file, as returned by the storage backend."""

    id: str
    name: str
    parent_id: str | None = None
    mime_type: str | None = None
    size: int | None = None
    web_view_link: str | None = None


@dataclass(frozen=True)
class Entry:
    """One daily-log entry: when, who, what.

    RULES:
    - timestamp is timezone-aware and already in the target zone
    - body is stored verbatim (multi-line text is kept as-is)
    """

    timestamp: datetime
    sender: str
    body: str


@dataclass
class EventOutcome:
    """Result of processing one webhook event.

    WHY: The webhook always answers 200, so per-event success or failure is
    only visible through these records and the log lines derived from them.
    """

    index: int
    event_type: str
    success: bool
    file_id: str | None = None
    file_name: str | None = None
    error: str | None = None
    skipped: bool = False
