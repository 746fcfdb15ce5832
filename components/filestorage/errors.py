
from __future__ import annotations

from typing import Optional


class FileStorageError(RuntimeError):
    """Base class for file storage errors."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UploadFailed(FileStorageError):
    """The store answered a write with a non-success status."""


class ProtocolError(FileStorageError):
    """A required field (UploadId, ETag) is missing from a store response."""


class FetchFailed(FileStorageError):
    """Non-success status on a read or list call (404 excluded)."""


class StreamFailed(FileStorageError):
    """Relaying bytes failed after the stream was handed to the caller."""


class RemoveFailed(FileStorageError):
    pass
