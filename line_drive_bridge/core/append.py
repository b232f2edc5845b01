"""Append entries to a named text file inside a container.

WHY: The storage API can only replace a file's whole content, so appending
is read-modify-write. Two appends racing on the same file would otherwise
both read the old content and one entry would be lost. A read failure
treated as "empty file" would wipe the log, so it must abort instead.

HOW: The file is looked up by exact name in the container. If it exists,
its content is downloaded, the new entry concatenated, and the result
uploaded in one update. If not, it is created with the optional header
followed by the entry. The whole sequence for one (container, file name)
runs under a KeyedLock.

RULES:
- Existing bytes are preserved exactly; only the new entry is added
- A failed download raises AppendReadError and nothing is written
- Any other storage failure raises AppendError
- The oldest matching file is canonical when duplicates exist
- Content is UTF-8 text (text/plain; charset=utf-8)
"""

from __future__ import annotations

import logging

import httpx

from line_drive_bridge.core.formatter import render_entry
from line_drive_bridge.core.locks import KeyedLock
from line_drive_bridge.core.models import ContainerRef, Entry, FileRef
from line_drive_bridge.storage.base import TEXT_MIME_TYPE, StorageAPIError, StorageBackend

logger = logging.getLogger(__name__)


class AppendError(Exception):
    """Raised when a log file cannot be created or updated."""

    def __init__(self, file_name: str, message: str) -> None:
        self.file_name = file_name
        self.message = message
        super().__init__(f"Cannot append to '{file_name}': {message}")


class AppendReadError(AppendError):
    """Raised when the existing content of a log file cannot be read."""


class AppendEngine:
    """Serialised read-modify-write appends over a StorageBackend."""

    def __init__(self, storage: StorageBackend, locks: KeyedLock | None = None) -> None:
        self._storage = storage
        self._locks = locks or KeyedLock()

    async def append_entry(
        self,
        container: ContainerRef,
        logical_file_name: str,
        entry: Entry | str,
        header: str | None = None,
    ) -> FileRef:
        """Append ``entry`` to ``logical_file_name`` in ``container``.

        Args:
            container: Container holding the log.
            logical_file_name: Exact file name, e.g. ``messages_2024-01-02.txt``.
            entry: An Entry to render, or already-rendered text.
            header: Written before the first entry when the file is created.

        Returns:
            FileRef of the updated or created file.
        """
        text = render_entry(entry) if isinstance(entry, Entry) else entry

        async with self._locks.hold((container.id, logical_file_name)):
            try:
                matches = await self._storage.find_files(container.id, logical_file_name)
            except (StorageAPIError, httpx.HTTPError) as exc:
                raise AppendError(logical_file_name, str(exc)) from exc

            if not matches:
                content = ((header or "") + text).encode("utf-8")
                try:
                    ref = await self._storage.create_file(
                        container.id, logical_file_name, content, TEXT_MIME_TYPE
                    )
                except (StorageAPIError, httpx.HTTPError) as exc:
                    raise AppendError(logical_file_name, str(exc)) from exc
                logger.info("Created %s (%s) in %s", logical_file_name, ref.id, container.id)
                return ref

            target = matches[0]
            try:
                existing = await self._storage.get_content(target.id)
            except (StorageAPIError, httpx.HTTPError) as exc:
                raise AppendReadError(logical_file_name, str(exc)) from exc

            try:
                ref = await self._storage.update_content(
                    target.id, existing + text.encode("utf-8"), TEXT_MIME_TYPE
                )
            except (StorageAPIError, httpx.HTTPError) as exc:
                raise AppendError(logical_file_name, str(exc)) from exc

        logger.debug("Appended %d chars to %s (%s)", len(text), logical_file_name, target.id)
        return ref
