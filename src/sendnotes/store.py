from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from threading import RLock
from typing import Dict, List, Optional, Sequence

from .models import Item, QueuedOperation
from .schemas import ItemStatus
from .settings import Settings, get_settings
from .utils import utcnow


def _newest_first(items: List[Item], order: Dict[str, int]) -> List[Item]:
    """created_at descending; equal timestamps keep insertion order."""
    by_insertion = sorted(items, key=lambda it: order[it.id])
    return sorted(by_insertion, key=lambda it: it.created_at, reverse=True)


# PUBLIC_INTERFACE
class LocalStore(ABC):
    """
    Abstract contract for the local durable store: item records keyed by id
    plus a separately ordered queue of pending operations.

    Every method is a coroutine. `get` returns None for a missing id; that is
    a valid outcome, not an error. Storage failures raise StorageError.
    """

    @abstractmethod
    async def put(self, item: Item) -> None:
        """Insert or overwrite an item by id."""

    @abstractmethod
    async def get(self, item_id: str) -> Optional[Item]:
        """Return the item with this id, or None."""

    @abstractmethod
    async def list_by_status(self, status: ItemStatus) -> List[Item]:
        """
        Snapshot of all items with `status`, newest `created_at` first.
        Equal timestamps are returned in insertion order.
        """

    @abstractmethod
    async def delete(self, item_id: str) -> None:
        """Remove an item. Deleting a missing id is not an error."""

    @abstractmethod
    async def reconcile(self, temp_id: str, item: Item) -> Item:
        """
        Atomically replace the record `temp_id` with `item` marked synced.

        Queued operations that still name `temp_id` are retargeted to
        `item.id` in the same step. Returns the stored record.
        """

    @abstractmethod
    async def replace_all(self, items: Sequence[Item], pending: Sequence[Item] = ()) -> None:
        """
        Atomically drop every item and store `items` marked synced, plus
        `pending` records exactly as given (records with queued work).
        """

    @abstractmethod
    async def transition_week(
        self, week_of: str, from_status: ItemStatus, to_status: ItemStatus
    ) -> List[Item]:
        """
        Atomically move every item of `week_of` in `from_status` to `to_status`,
        marking them unsynced. Returns the updated records.
        """

    @abstractmethod
    async def enqueue(self, operation: QueuedOperation) -> int:
        """Append an operation durably and return its assigned queue id."""

    @abstractmethod
    async def list_queue(self) -> List[QueuedOperation]:
        """All pending operations in ascending queue id order."""

    @abstractmethod
    async def get_queued(self, queue_id: int) -> Optional[QueuedOperation]:
        """Return the pending operation with this queue id, or None."""

    @abstractmethod
    async def replace_queued(self, queue_id: int, operation: QueuedOperation) -> bool:
        """
        Swap the operation stored under `queue_id`, keeping its place in the
        queue. Returns False when that queue id is no longer pending.
        """

    @abstractmethod
    async def dequeue(self, queue_id: int) -> None:
        """Remove one operation. Removing a missing queue id is not an error."""

    async def close(self) -> None:
        """Release resources held by the store."""


class InMemoryLocalStore(LocalStore):
    """
    Thread-safe in-memory store suitable for testing and ephemeral sessions.
    Nothing survives the process.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, Item] = {}
        self._order: Dict[str, int] = {}
        self._queue: Dict[int, QueuedOperation] = {}
        self._counter = itertools.count(1)
        self._next_queue_id = 1

    def _store(self, item: Item) -> None:
        if item.id not in self._order:
            self._order[item.id] = next(self._counter)
        self._items[item.id] = item.model_copy(deep=True)

    def _discard(self, item_id: str) -> None:
        self._items.pop(item_id, None)
        self._order.pop(item_id, None)

    async def put(self, item: Item) -> None:
        with self._lock:
            self._store(item)

    async def get(self, item_id: str) -> Optional[Item]:
        with self._lock:
            item = self._items.get(item_id)
            return None if item is None else item.model_copy(deep=True)

    async def list_by_status(self, status: ItemStatus) -> List[Item]:
        with self._lock:
            matching = [it.model_copy(deep=True) for it in self._items.values() if it.status == status]
            return _newest_first(matching, dict(self._order))

    async def delete(self, item_id: str) -> None:
        with self._lock:
            self._discard(item_id)

    async def reconcile(self, temp_id: str, item: Item) -> Item:
        synced = item.model_copy(update={"synced": True})
        with self._lock:
            if temp_id != item.id:
                self._discard(temp_id)
                for queue_id, op in list(self._queue.items()):
                    if op.target_id == temp_id and op.type != "create":
                        self._queue[queue_id] = op.model_copy(update={"item_id": item.id})
            self._store(synced)
        return synced

    async def replace_all(self, items: Sequence[Item], pending: Sequence[Item] = ()) -> None:
        with self._lock:
            self._items = {}
            self._order = {}
            for item in items:
                self._store(item.model_copy(update={"synced": True}))
            for item in pending:
                self._store(item)

    async def transition_week(
        self, week_of: str, from_status: ItemStatus, to_status: ItemStatus
    ) -> List[Item]:
        now = utcnow()
        changed: List[Item] = []
        with self._lock:
            for item in list(self._items.values()):
                if item.week_of == week_of and item.status == from_status:
                    updated = item.model_copy(update={"status": to_status, "synced": False, "updated_at": now})
                    self._store(updated)
                    changed.append(updated)
        return changed

    async def enqueue(self, operation: QueuedOperation) -> int:
        with self._lock:
            queue_id = self._next_queue_id
            self._next_queue_id += 1
            self._queue[queue_id] = operation.model_copy(update={"queue_id": queue_id})
            return queue_id

    async def list_queue(self) -> List[QueuedOperation]:
        with self._lock:
            return [self._queue[k] for k in sorted(self._queue)]

    async def get_queued(self, queue_id: int) -> Optional[QueuedOperation]:
        with self._lock:
            return self._queue.get(queue_id)

    async def replace_queued(self, queue_id: int, operation: QueuedOperation) -> bool:
        with self._lock:
            if queue_id not in self._queue:
                return False
            self._queue[queue_id] = operation.model_copy(update={"queue_id": queue_id})
            return True

    async def dequeue(self, queue_id: int) -> None:
        with self._lock:
            self._queue.pop(queue_id, None)


# PUBLIC_INTERFACE
def get_local_store(settings: Optional[Settings] = None) -> LocalStore:
    """
    Factory to return the configured local store based on settings.
    - sqlite: SQLiteLocalStore (durable, default)
    - memory: InMemoryLocalStore
    """
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        return InMemoryLocalStore()
    from .db import SQLiteLocalStore

    return SQLiteLocalStore(settings.store_path)
