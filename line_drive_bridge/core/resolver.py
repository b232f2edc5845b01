"""Idempotent find-or-create of container paths.

WHY: Every event lands in ``root / <partition> / <date>``. The same event
may arrive twice (platform redelivery) and many events for one partition
may arrive at once; neither may leave duplicate folders behind.

HOW: Each segment is resolved by asking the backend for children with the
exact name, taking the oldest match, and creating the segment only when
there is none. The find-then-create pair for one (parent, name) runs under
a KeyedLock, so concurrent callers inside this process share one result.

RULES:
- Name matching is exact and case-sensitive, within the immediate parent
- Trashed containers never match
- When duplicates already exist, the oldest (first returned) is canonical
- Any storage failure surfaces as ContainerResolutionError
- Cross-process races are not prevented; only this process is serialised
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from line_drive_bridge.core.locks import KeyedLock
from line_drive_bridge.core.models import ContainerRef
from line_drive_bridge.storage.base import StorageAPIError, StorageBackend

logger = logging.getLogger(__name__)


class ContainerResolutionError(Exception):
    """Raised when a path segment cannot be found or created."""

    def __init__(self, parent_id: str, name: str, message: str) -> None:
        self.parent_id = parent_id
        self.name = name
        self.message = message
        super().__init__(f"Cannot resolve '{name}' under {parent_id}: {message}")


@dataclass(frozen=True)
class DatedPath:
    """The partition container and the date container beneath it."""

    group: ContainerRef
    date: ContainerRef


class PathResolver:
    """Resolves container paths below a root, creating missing segments."""

    def __init__(self, storage: StorageBackend, locks: KeyedLock | None = None) -> None:
        self._storage = storage
        self._locks = locks or KeyedLock()

    async def ensure_child(self, parent: ContainerRef, name: str) -> ContainerRef:
        """Return the child container ``name`` of ``parent``, creating it if absent."""
        async with self._locks.hold((parent.id, name)):
            try:
                matches = await self._storage.find_containers(parent.id, name)
                if matches:
                    if len(matches) > 1:
                        logger.warning(
                            "Found %d containers named %s under %s; using oldest %s",
                            len(matches), name, parent.id, matches[0].id,
                        )
                    return matches[0]
                created = await self._storage.create_container(parent.id, name)
            except (StorageAPIError, httpx.HTTPError) as exc:
                raise ContainerResolutionError(parent.id, name, str(exc)) from exc

        logger.info("Created container %s (%s) under %s", name, created.id, parent.id)
        return created

    async def ensure_path(self, root: ContainerRef, segments: list[str]) -> ContainerRef:
        """Walk ``segments`` below ``root``, returning the leaf container.

        An empty segment list returns ``root`` itself.
        """
        current = root
        for segment in segments:
            if not segment:
                raise ContainerResolutionError(current.id, segment, "empty path segment")
            current = await self.ensure_child(current, segment)
        return current

    async def ensure_dated_path(self, root: ContainerRef, partition_key: str, date_str: str) -> DatedPath:
        """Ensure ``root / partition_key / date_str`` and return both containers."""
        group = await self.ensure_child(root, partition_key)
        date = await self.ensure_child(group, date_str)
        return DatedPath(group=group, date=date)
