"""In-memory storage backend.

WHY: The resolver, append engine, and bridge need a backend whose state
can be inspected exactly, both in tests and in ``replay --dry-run`` where
nothing may be written to Drive.

HOW: Containers and files live in insertion-ordered dicts keyed by id.
Ids are sequential ("c1", "f1", ...) so runs are deterministic. Finds scan
the immediate children of a parent, skipping trashed objects.

RULES:
- Insertion order doubles as creation order (oldest-first finds)
- trash() marks an object as trashed without removing it
- fail_next() makes the next call of the named method raise StorageAPIError
- Every call is recorded in ``calls`` as (method, args) for assertions
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from line_drive_bridge.core.models import ContainerRef, FileRef
from line_drive_bridge.storage.base import StorageAPIError, StorageBackend


@dataclass
class _StoredFile:
    ref: FileRef
    content: bytes
    trashed: bool = False


@dataclass
class _StoredContainer:
    ref: ContainerRef
    trashed: bool = False


class InMemoryStorage(StorageBackend):
    """Dict-backed StorageBackend with deterministic ids."""

    def __init__(
        self,
        root_id: str = "root",
        root_name: str = "LINE_Messages",
        latency_s: float = 0.0,
    ) -> None:
        self.root_id = root_id
        self.latency_s = latency_s
        self.containers: dict[str, _StoredContainer] = {}
        self.files: dict[str, _StoredFile] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: dict[str, StorageAPIError] = {}
        self._counter = 0
        self.containers[root_id] = _StoredContainer(
            ContainerRef(id=root_id, name=root_name, parent_id=None)
        )

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail_next(self, method: str, status_code: int = 500, message: str = "injected failure") -> None:
        self._failures[method] = StorageAPIError(status_code, message)

    def trash(self, object_id: str) -> None:
        if object_id in self.files:
            self.files[object_id].trashed = True
        else:
            self.containers[object_id].trashed = True

    def read_text(self, file_id: str) -> str:
        return self.files[file_id].content.decode("utf-8")

    def children(self, parent_id: str) -> list[str]:
        """Names of all non-trashed children (containers then files)."""
        names = [c.ref.name for c in self.containers.values() if c.ref.parent_id == parent_id and not c.trashed]
        names += [f.ref.name for f in self.files.values() if f.ref.parent_id == parent_id and not f.trashed]
        return names

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        else:
            # Yield so concurrent callers interleave the way real I/O would
            await asyncio.sleep(0)
        failure = self._failures.pop(method, None)
        if failure is not None:
            raise failure

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return "{}{}".format(prefix, self._counter)

    def _require_container(self, container_id: str) -> None:
        stored = self.containers.get(container_id)
        if stored is None or stored.trashed:
            raise StorageAPIError(404, "Container not found: {}".format(container_id))

    def _require_file(self, file_id: str) -> _StoredFile:
        stored = self.files.get(file_id)
        if stored is None or stored.trashed:
            raise StorageAPIError(404, "File not found: {}".format(file_id))
        return stored

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def get_container(self, container_id: str) -> ContainerRef:
        await self._enter("get_container", container_id)
        self._require_container(container_id)
        return self.containers[container_id].ref

    async def find_containers(self, parent_id: str, name: str) -> list[ContainerRef]:
        await self._enter("find_containers", parent_id, name)
        return [
            c.ref
            for c in self.containers.values()
            if c.ref.parent_id == parent_id and c.ref.name == name and not c.trashed
        ]

    async def create_container(self, parent_id: str, name: str) -> ContainerRef:
        await self._enter("create_container", parent_id, name)
        self._require_container(parent_id)
        ref = ContainerRef(id=self._next_id("c"), name=name, parent_id=parent_id)
        self.containers[ref.id] = _StoredContainer(ref)
        return ref

    async def find_files(self, parent_id: str, name: str) -> list[FileRef]:
        await self._enter("find_files", parent_id, name)
        return [
            f.ref
            for f in self.files.values()
            if f.ref.parent_id == parent_id and f.ref.name == name and not f.trashed
        ]

    async def create_file(self, parent_id: str, name: str, content: bytes, mime_type: str) -> FileRef:
        await self._enter("create_file", parent_id, name)
        self._require_container(parent_id)
        ref = FileRef(
            id=self._next_id("f"),
            name=name,
            parent_id=parent_id,
            mime_type=mime_type,
            size=len(content),
        )
        self.files[ref.id] = _StoredFile(ref, bytes(content))
        return ref

    async def get_content(self, file_id: str) -> bytes:
        await self._enter("get_content", file_id)
        return self._require_file(file_id).content

    async def update_content(self, file_id: str, content: bytes, mime_type: str) -> FileRef:
        await self._enter("update_content", file_id)
        stored = self._require_file(file_id)
        stored.content = bytes(content)
        stored.ref = FileRef(
            id=stored.ref.id,
            name=stored.ref.name,
            parent_id=stored.ref.parent_id,
            mime_type=mime_type,
            size=len(content),
        )
        return stored.ref
