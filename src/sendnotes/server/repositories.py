from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from threading import RLock
from typing import Dict, List, Optional

from ..schemas import ItemCreate, ItemOut, ItemStatus, ItemUpdate, StatusTransition
from ..utils import week_key


# PUBLIC_INTERFACE
class ItemRepository(ABC):
    """Abstract repository contract for the service's item storage."""

    @abstractmethod
    def list(self, status: Optional[ItemStatus] = None, week_of: Optional[str] = None) -> List[ItemOut]:
        """Return items matching the filters, newest created_at first."""

    @abstractmethod
    def create(self, data: ItemCreate) -> ItemOut:
        """Create and return a new item with a permanent id."""

    @abstractmethod
    def get(self, item_id: str) -> Optional[ItemOut]:
        """Return an item by id, or None if not found."""

    @abstractmethod
    def update(self, item_id: str, data: ItemUpdate) -> Optional[ItemOut]:
        """Update provided fields. Return the updated item or None if not found."""

    @abstractmethod
    def soft_delete(self, item_id: str) -> bool:
        """Mark an item deleted. Return False if not found."""

    @abstractmethod
    def transition(self, change: StatusTransition) -> int:
        """Move every item of the week in from_status to to_status. Return how many moved."""


class InMemoryItemRepository(ItemRepository):
    """
    Thread-safe in-memory repository suitable for testing and local development.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, ItemOut] = {}

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def list(self, status: Optional[ItemStatus] = None, week_of: Optional[str] = None) -> List[ItemOut]:
        with self._lock:
            items = [
                it
                for it in self._items.values()
                if (status is None or it.status == status) and (week_of is None or it.week_of == week_of)
            ]
            return sorted(items, key=lambda it: it.created_at, reverse=True)

    def create(self, data: ItemCreate) -> ItemOut:
        now = self._now()
        item = ItemOut(
            id=str(uuid.uuid4()),
            url=data.url,
            title=data.title,
            notes=data.notes,
            category=data.category,
            status=data.status,
            week_of=data.week_of or week_key(now),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._items[item.id] = item
        return item

    def get(self, item_id: str) -> Optional[ItemOut]:
        with self._lock:
            return self._items.get(item_id)

    def update(self, item_id: str, data: ItemUpdate) -> Optional[ItemOut]:
        with self._lock:
            existing = self._items.get(item_id)
            if existing is None:
                return None
            # Update only provided fields
            updated = existing.model_copy(update={**data.model_dump(exclude_unset=True), "updated_at": self._now()})
            self._items[item_id] = updated
            return updated

    def soft_delete(self, item_id: str) -> bool:
        return self.update(item_id, ItemUpdate(status=ItemStatus.DELETED)) is not None

    def transition(self, change: StatusTransition) -> int:
        now = self._now()
        with self._lock:
            targets = [
                it for it in self._items.values() if it.week_of == change.week_of and it.status == change.from_status
            ]
            for it in targets:
                self._items[it.id] = it.model_copy(update={"status": change.to_status, "updated_at": now})
            return len(targets)


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> ItemRepository:
    """Return the process-wide repository used by the item routes."""
    return InMemoryItemRepository()
