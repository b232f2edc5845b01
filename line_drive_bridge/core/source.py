"""Source classification, partition keys, and partitioning strategies.

WHY: Every stored object is filed under a folder derived from where the
message came from (a group, a room, or a one-to-one chat). The mapping
must be deterministic so the same conversation always lands in the same
folder, and it must be pluggable so deployments can archive per user,
per group, per group and day, or into one flat folder.

HOW: classify() turns the raw ``source`` dict into a SourceInfo.
partition_key() derives the folder name. PARTITIONERS maps strategy
names to functions returning the path segments below the storage root.

RULES:
- Precedence: groupId → GROUP, else roomId → ROOM, else INDIVIDUAL
- classify() never fails; a missing user id becomes "unknown" in keys
- Keys use the full platform id unless short ids are requested
- Short ids are <first 8 chars>-<first 8 hex of sha256(id)>
- The daily log file always lives in the leaf container
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from typing import Any

from line_drive_bridge.core.models import SourceInfo, SourceKind

UNKNOWN_USER = "unknown"


def classify(source: dict[str, Any] | None) -> SourceInfo:
    """Classify a raw LINE source descriptor.

    Args:
        source: The event's ``source`` object, possibly empty or None.

    Returns:
        SourceInfo with exactly the ids relevant to its kind.
    """
    source = source or {}
    user_id = source.get("userId") or None
    group_id = source.get("groupId") or None
    room_id = source.get("roomId") or None

    if group_id:
        return SourceInfo(kind=SourceKind.GROUP, user_id=user_id, group_id=group_id)
    if room_id:
        return SourceInfo(kind=SourceKind.ROOM, user_id=user_id, room_id=room_id)
    return SourceInfo(kind=SourceKind.INDIVIDUAL, user_id=user_id)


def _shorten(identifier: str) -> str:
    digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:8]
    return "{}-{}".format(identifier[:8], digest)


def _format_key(prefix: str, identifier: str | None, short_ids: bool) -> str:
    if not identifier:
        return "{}_{}".format(prefix, UNKNOWN_USER)
    return "{}_{}".format(prefix, _shorten(identifier) if short_ids else identifier)


def partition_key(info: SourceInfo, short_ids: bool = False) -> str:
    """Derive the folder name for a source.

    Examples:
        group C1234... → "group_C1234..."
        room R5678...  → "room_R5678..."
        user U9abc...  → "user_U9abc..."
        no user id     → "user_unknown"
    """
    if info.kind is SourceKind.GROUP:
        return _format_key("group", info.group_id, short_ids)
    if info.kind is SourceKind.ROOM:
        return _format_key("room", info.room_id, short_ids)
    return _format_key("user", info.user_id, short_ids)


def user_key(info: SourceInfo, short_ids: bool = False) -> str:
    """Folder name for the sending user, ignoring group/room membership."""
    return _format_key("user", info.user_id, short_ids)


# ---------------------------------------------------------------------------
# Partitioning strategies
# ---------------------------------------------------------------------------

Partitioner = Callable[[SourceInfo, str, bool], list[str]]


def by_group_and_date(info: SourceInfo, date_str: str, short_ids: bool = False) -> list[str]:
    return [partition_key(info, short_ids), date_str]


def by_group(info: SourceInfo, date_str: str, short_ids: bool = False) -> list[str]:
    return [partition_key(info, short_ids)]


def by_user(info: SourceInfo, date_str: str, short_ids: bool = False) -> list[str]:
    return [user_key(info, short_ids)]


def global_partition(info: SourceInfo, date_str: str, short_ids: bool = False) -> list[str]:
    return []


PARTITIONERS: dict[str, Partitioner] = {
    "group_date": by_group_and_date,
    "group": by_group,
    "user": by_user,
    "global": global_partition,
}


def get_partitioner(name: str) -> Partitioner:
    """Look up a partitioning strategy by name.

    RULES:
    - Raises ValueError listing the available names for unknown strategies
    """
    try:
        return PARTITIONERS[name]
    except KeyError:
        raise ValueError(
            "Unknown partition strategy '{}'. Available: {}".format(
                name, ", ".join(sorted(PARTITIONERS))
            )
        ) from None
