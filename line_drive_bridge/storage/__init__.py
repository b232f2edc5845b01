"""Storage backends: Google Drive, a local directory, and in-memory for tests and dry runs."""

from line_drive_bridge.storage.base import (
    FOLDER_MIME_TYPE,
    TEXT_MIME_TYPE,
    StorageAPIError,
    StorageBackend,
)
from line_drive_bridge.storage.drive import GoogleDriveStorage
from line_drive_bridge.storage.local import LocalFileStorage
from line_drive_bridge.storage.memory import InMemoryStorage

__all__ = [
    "FOLDER_MIME_TYPE",
    "TEXT_MIME_TYPE",
    "GoogleDriveStorage",
    "InMemoryStorage",
    "LocalFileStorage",
    "StorageAPIError",
    "StorageBackend",
]
