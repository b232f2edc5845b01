"""Abstract storage backend and its error type.

WHY: The path resolver and append engine only need a handful of
find/create/read/update calls. Hiding the backend behind this interface
lets the same core run against Google Drive in production, against a
local directory, and against an in-memory store in tests and dry runs.

HOW: StorageBackend is an ABC with one async method per remote operation.
Backends return ContainerRef/FileRef values and raise StorageAPIError for
any remote failure.

RULES:
- find_* match the exact, case-sensitive name within the immediate parent
- find_* exclude trashed objects and return matches oldest-first
- create_file() writes the full content atomically with the metadata
- update_content() replaces the whole content (no partial append)
- get_content() returns raw bytes; callers decode

To add a new backend:
1. Subclass StorageBackend in a new module under storage/
2. Implement every abstract method
3. Export it from storage/__init__.py
4. Add a STORAGE_BACKEND value for it in server/app.py _open_bridge()
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from line_drive_bridge.core.models import ContainerRef, FileRef

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
TEXT_MIME_TYPE = "text/plain; charset=utf-8"


class StorageAPIError(Exception):
    """Raised when the storage backend rejects or fails a request.

    RULES:
    - Always include status_code and message
    - status_code is 0 when the failure happened before a response arrived
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Storage API error {status_code}: {message}")


class StorageBackend(ABC):
    """Minimal object/file store surface used by the bridge."""

    async def __aenter__(self) -> StorageBackend:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        return None

    @abstractmethod
    async def get_container(self, container_id: str) -> ContainerRef:
        """Fetch a container's metadata (used for the root and connection checks)."""

    @abstractmethod
    async def find_containers(self, parent_id: str, name: str) -> list[ContainerRef]:
        """Return non-trashed child containers named exactly ``name``, oldest first."""

    @abstractmethod
    async def create_container(self, parent_id: str, name: str) -> ContainerRef:
        """Create a child container and return it."""

    @abstractmethod
    async def find_files(self, parent_id: str, name: str) -> list[FileRef]:
        """Return non-trashed child files named exactly ``name``, oldest first."""

    @abstractmethod
    async def create_file(
        self,
        parent_id: str,
        name: str,
        content: bytes,
        mime_type: str,
    ) -> FileRef:
        """Create a file with its full content in one request."""

    @abstractmethod
    async def get_content(self, file_id: str) -> bytes:
        """Download a file's full content."""

    @abstractmethod
    async def update_content(self, file_id: str, content: bytes, mime_type: str) -> FileRef:
        """Replace a file's full content."""
