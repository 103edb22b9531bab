from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for errors raised by the offline sync subsystem."""


# PUBLIC_INTERFACE
class ValidationError(SyncError, ValueError):
    """
    The caller supplied an invalid item payload (for example neither url nor notes).

    Surfaced immediately; nothing is stored or queued.
    """


# PUBLIC_INTERFACE
class NotFoundError(SyncError, LookupError):
    """A mutation targeted an id that is absent from the local store."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


# PUBLIC_INTERFACE
class StorageError(SyncError):
    """
    The local durable store failed (disk, quota, corrupt file).

    Fatal to the operation in progress. Intent cannot be recorded, so nothing is queued.
    """


# PUBLIC_INTERFACE
class RemoteError(SyncError):
    """
    Any failed remote call: timeout, transport failure, non-success status, bad body.

    Mutations never surface it; they degrade to queue-and-return-optimistic.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
