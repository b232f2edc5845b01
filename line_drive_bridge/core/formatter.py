"""Timestamps, log entry rendering, and file naming.

WHY: Every stored artifact is named and dated in one fixed target zone
(UTC+9 by default) regardless of where the server runs. A log line and an
attachment name must come out byte-identical for the same event, so the
rendering rules live in one module.

HOW: Epoch-millisecond timestamps are converted to aware datetimes in the
target zone. Entries render as ``[YYYY-MM-DD HH:MM:SS] sender\\nbody\\n\\n``.
Attachment names combine a filesystem-safe timestamp, the LINE message id
and the original file name, or an inferred name when LINE supplies none.

RULES:
- The partition date is the calendar date of T + offset, not of T in UTC
- Daily logs are named messages_<YYYY-MM-DD>.txt
- Extension inference: image→.jpg, video→.mp4, audio→.m4a, else→.bin
- Original file names are reduced to their final path component
- Every attachment name contains the message id, so distinct messages never share a name
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath, PureWindowsPath

from line_drive_bridge.config import TARGET_UTC_OFFSET_HOURS
from line_drive_bridge.core.models import Entry, Message, MessageKind, SourceInfo, SourceKind

TARGET_TZ = timezone(timedelta(hours=TARGET_UTC_OFFSET_HOURS))

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"
FILENAME_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_DEFAULT_MIME_TYPES: dict[MessageKind, str] = {
    MessageKind.IMAGE: "image/jpeg",
    MessageKind.VIDEO: "video/mp4",
    MessageKind.AUDIO: "audio/mp4",
}

_EXTENSIONS_BY_FAMILY: dict[str, str] = {
    "image": ".jpg",
    "video": ".mp4",
    "audio": ".m4a",
}


@dataclass(frozen=True)
class RenderedMessage:
    """Where and how a text event is written."""

    partition_key: str
    date: str
    file_name: str
    entry_text: str


def to_target_time(epoch_ms: int) -> datetime:
    """Convert LINE's epoch milliseconds to an aware datetime in the target zone."""
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).astimezone(TARGET_TZ)


def partition_date(epoch_ms: int) -> str:
    """Return the YYYY-MM-DD partition date for an event timestamp.

    Example: 2024-01-01T15:30:00Z → "2024-01-02" with the +9h offset.
    """
    return to_target_time(epoch_ms).strftime(DATE_FORMAT)


def format_timestamp(moment: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DD HH:MM:SS`` in the target zone."""
    return moment.astimezone(TARGET_TZ).strftime(TIMESTAMP_FORMAT)


def daily_log_name(date_str: str) -> str:
    return "messages_{}.txt".format(date_str)


def render_entry(entry: Entry) -> str:
    """Render one log entry: ``[<timestamp>] <sender>\\n<body>\\n\\n``."""
    return "[{}] {}\n{}\n\n".format(format_timestamp(entry.timestamp), entry.sender, entry.body)


def describe_source(info: SourceInfo) -> str:
    if info.kind is SourceKind.GROUP:
        return "group {}".format(info.group_id)
    if info.kind is SourceKind.ROOM:
        return "room {}".format(info.room_id)
    return "individual chat {}".format(info.user_id or "unknown")


def render_header(info: SourceInfo, partition_key: str, created_at: datetime) -> str:
    """Render the block written once at the top of a new daily log.

    WHY: A log file opened on its own (downloaded, shared) should still say
    which conversation it belongs to and when it was started.
    """
    return (
        "=== LINE message log ===\n"
        "Source: {}\n"
        "Partition: {}\n"
        "Created: {} (UTC{:+03d}:00)\n"
        "\n"
    ).format(describe_source(info), partition_key, format_timestamp(created_at), TARGET_UTC_OFFSET_HOURS)


def render(event_timestamp_ms: int, sender: str, body: str, partition_key: str) -> RenderedMessage:
    """Compute the daily log location and entry text for a text event."""
    date_str = partition_date(event_timestamp_ms)
    entry = Entry(timestamp=to_target_time(event_timestamp_ms), sender=sender, body=body)
    return RenderedMessage(
        partition_key=partition_key,
        date=date_str,
        file_name=daily_log_name(date_str),
        entry_text=render_entry(entry),
    )


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


def _base_name(file_name: str) -> str:
    """Strip any directory part, POSIX or Windows style."""
    return PureWindowsPath(PurePosixPath(file_name).name).name


def extension_for_content_type(content_type: str | None, kind: MessageKind | None = None) -> str:
    """Infer a file extension from a declared content type.

    RULES:
    - image/* → .jpg, video/* → .mp4, audio/* → .m4a, anything else → .bin
    - Without a content type, the message kind's default MIME type is used
    """
    if not content_type and kind is not None:
        content_type = _DEFAULT_MIME_TYPES.get(kind)
    if not content_type:
        return ".bin"
    family = content_type.split(";", 1)[0].strip().lower().split("/", 1)[0]
    return _EXTENSIONS_BY_FAMILY.get(family, ".bin")


def guess_mime_type(message: Message, content_type: str | None = None) -> str:
    """Pick the MIME type to store an attachment with.

    HOW: Declared content type first, then the kind's default, then a
    guess from the original file name, then application/octet-stream.
    A declared application/octet-stream is treated as undeclared.
    """
    declared = content_type.split(";", 1)[0].strip().lower() if content_type else ""
    if declared and declared != "application/octet-stream":
        return declared
    kind = message.kind
    if kind in _DEFAULT_MIME_TYPES:
        return _DEFAULT_MIME_TYPES[kind]
    if message.file_name:
        guessed, _ = mimetypes.guess_type(message.file_name)
        if guessed:
            return guessed
    return "application/octet-stream"


def attachment_name(message: Message, epoch_ms: int, content_type: str | None = None) -> str:
    """Build the stored name for a binary attachment.

    Examples:
        fileName "report.pdf", id 42   → "2024-01-02_00-30-00_42_report.pdf"
        image, no name, image/jpeg     → "2024-01-02_00-30-00_image_<id>.jpg"
    """
    stamp = to_target_time(epoch_ms).strftime(FILENAME_TIMESTAMP_FORMAT)
    if message.file_name:
        original = _base_name(message.file_name)
        if original:
            return "{}_{}_{}".format(stamp, message.id, original)
    ext = extension_for_content_type(content_type, message.kind)
    return "{}_{}_{}{}".format(stamp, message.type or "file", message.id, ext)
