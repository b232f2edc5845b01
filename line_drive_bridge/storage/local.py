"""Local-directory storage backend.

WHY: Some deployments archive to a disk on the same machine instead of
Google Drive, for example an offline box or a first run before Drive
credentials exist. The layout stays the same, so switching backends only
changes where the tree lives.

HOW: Containers are directories and files are regular files below
base_dir. Ids are POSIX paths relative to base_dir, with "." for the root.
Blocking filesystem calls run in a worker thread via asyncio.to_thread so
the event loop keeps serving webhooks.

RULES:
- Names must be a single path component (no separators, no "." or "..")
- A directory cannot hold two entries with one name, so finds return 0 or 1 match
- create_file() refuses to overwrite an existing file (409)
- create_file() and update_content() write a temp file, then os.replace it
- Missing paths raise StorageAPIError(404)
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import tempfile
from pathlib import Path, PurePosixPath

from line_drive_bridge.core.models import ContainerRef, FileRef
from line_drive_bridge.storage.base import StorageAPIError, StorageBackend

logger = logging.getLogger(__name__)

ROOT_ID = "."


def _check_name(name: str) -> None:
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise StorageAPIError(400, "Invalid name: {!r}".format(name))


def _write_atomic(path: Path, content: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(content)
        os.replace(tmp, str(path))
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class LocalFileStorage(StorageBackend):
    """StorageBackend over a directory tree on the local filesystem."""

    def __init__(self, base_dir: str | os.PathLike, root_name: str | None = None) -> None:
        self.base_dir = Path(base_dir)
        self.root_id = ROOT_ID
        self._root_name = root_name or self.base_dir.name

    async def __aenter__(self) -> LocalFileStorage:
        await asyncio.to_thread(self.base_dir.mkdir, parents=True, exist_ok=True)
        logger.info("Archiving to local directory %s", self.base_dir.resolve())
        return self

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------

    def path_for(self, object_id: str) -> Path:
        """Absolute path of a container or file id."""
        if object_id == ROOT_ID:
            return self.base_dir
        parts = PurePosixPath(object_id).parts
        if not parts or any(p in ("..", "") for p in parts) or PurePosixPath(object_id).is_absolute():
            raise StorageAPIError(400, "Invalid id: {!r}".format(object_id))
        return self.base_dir.joinpath(*parts)

    @staticmethod
    def _child_id(parent_id: str, name: str) -> str:
        return name if parent_id == ROOT_ID else "{}/{}".format(parent_id, name)

    def _container_ref(self, object_id: str) -> ContainerRef:
        if object_id == ROOT_ID:
            return ContainerRef(id=ROOT_ID, name=self._root_name, parent_id=None)
        pure = PurePosixPath(object_id)
        parent = str(pure.parent)
        return ContainerRef(id=object_id, name=pure.name, parent_id=ROOT_ID if parent == "." else parent)

    def _file_ref(self, object_id: str, size: int, mime_type: str | None = None) -> FileRef:
        pure = PurePosixPath(object_id)
        parent = str(pure.parent)
        if mime_type is None:
            mime_type, _ = mimetypes.guess_type(pure.name)
        return FileRef(
            id=object_id,
            name=pure.name,
            parent_id=ROOT_ID if parent == "." else parent,
            mime_type=mime_type,
            size=size,
        )

    def _require_dir(self, container_id: str) -> Path:
        path = self.path_for(container_id)
        if not path.is_dir():
            raise StorageAPIError(404, "Container not found: {}".format(container_id))
        return path

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def get_container(self, container_id: str) -> ContainerRef:
        await asyncio.to_thread(self._require_dir, container_id)
        return self._container_ref(container_id)

    async def find_containers(self, parent_id: str, name: str) -> list[ContainerRef]:
        _check_name(name)
        child_id = self._child_id(parent_id, name)
        is_dir = await asyncio.to_thread(self.path_for(child_id).is_dir)
        return [self._container_ref(child_id)] if is_dir else []

    async def create_container(self, parent_id: str, name: str) -> ContainerRef:
        _check_name(name)

        def mkdir() -> None:
            parent = self._require_dir(parent_id)
            try:
                (parent / name).mkdir()
            except FileExistsError as exc:
                raise StorageAPIError(409, "Already exists: {}".format(name)) from exc
            except OSError as exc:
                raise StorageAPIError(500, str(exc)) from exc

        await asyncio.to_thread(mkdir)
        return self._container_ref(self._child_id(parent_id, name))

    async def find_files(self, parent_id: str, name: str) -> list[FileRef]:
        _check_name(name)
        child_id = self._child_id(parent_id, name)

        def stat() -> int | None:
            path = self.path_for(child_id)
            return path.stat().st_size if path.is_file() else None

        size = await asyncio.to_thread(stat)
        return [] if size is None else [self._file_ref(child_id, size)]

    async def create_file(self, parent_id: str, name: str, content: bytes, mime_type: str) -> FileRef:
        _check_name(name)
        child_id = self._child_id(parent_id, name)

        def write() -> None:
            self._require_dir(parent_id)
            path = self.path_for(child_id)
            if path.exists():
                raise StorageAPIError(409, "Already exists: {}".format(child_id))
            try:
                _write_atomic(path, content)
            except OSError as exc:
                raise StorageAPIError(500, str(exc)) from exc

        await asyncio.to_thread(write)
        return self._file_ref(child_id, len(content), mime_type)

    async def get_content(self, file_id: str) -> bytes:
        path = self.path_for(file_id)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise StorageAPIError(404, "File not found: {}".format(file_id)) from exc
        except OSError as exc:
            raise StorageAPIError(500, str(exc)) from exc

    async def update_content(self, file_id: str, content: bytes, mime_type: str) -> FileRef:
        path = self.path_for(file_id)

        def write() -> None:
            if not path.is_file():
                raise StorageAPIError(404, "File not found: {}".format(file_id))
            try:
                _write_atomic(path, content)
            except OSError as exc:
                raise StorageAPIError(500, str(exc)) from exc

        await asyncio.to_thread(write)
        return self._file_ref(file_id, len(content), mime_type)
