"""
SendNotes offline sync.

Keeps a weekly note/link collection usable while disconnected: every change
lands in a local durable store first, changes that could not be confirmed are
queued, and the queue is replayed against the remote item store when
connectivity returns.
"""

from .client import SyncClient
from .connectivity import ConnectivityMonitor
from .errors import NotFoundError, RemoteError, StorageError, SyncError, ValidationError
from .models import Item, ItemStatus
from .sync import FullSyncResult, SyncEngine, SyncSummary

__all__ = [
    "ConnectivityMonitor",
    "FullSyncResult",
    "Item",
    "ItemStatus",
    "NotFoundError",
    "RemoteError",
    "StorageError",
    "SyncClient",
    "SyncEngine",
    "SyncError",
    "SyncSummary",
    "ValidationError",
]
