import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Set

import pytest

from sendnotes.connectivity import ConnectivityMonitor
from sendnotes.db import SQLiteLocalStore
from sendnotes.errors import RemoteError
from sendnotes.gateway import RemoteGateway
from sendnotes.models import Item
from sendnotes.schemas import ItemCreate, ItemStatus
from sendnotes.store import InMemoryLocalStore
from sendnotes.sync import SyncEngine
from sendnotes.utils import week_key

# Wednesday; its week key is 2024-06-03.
FIXED_NOW = datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc)
CURRENT_WEEK = "2024-06-03"


class FakeClock:
    """Settable clock handed to the engine so week keys are deterministic."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway(RemoteGateway):
    """
    In-process remote store that records every call.

    - fail_on: call names ("create", "update", ...) that raise RemoteError
    - failing: when True every call raises RemoteError
    - hold: when set to an Event, each call waits on it after being recorded
    """

    def __init__(self) -> None:
        self.items: Dict[str, Item] = {}
        self.calls: List[tuple] = []
        self.fail_on: Set[str] = set()
        self.failing = False
        self.hold: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    def calls_named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    @property
    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        self.entered.set()
        if self.hold is not None:
            await self.hold.wait()
        if self.failing or name in self.fail_on:
            raise RemoteError(f"{name} unavailable", status_code=503)

    def seed(self, **fields: Any) -> Item:
        now = datetime.now(timezone.utc)
        values = {"week_of": CURRENT_WEEK, "created_at": now, "updated_at": now, **fields}
        item = Item(id=str(uuid.uuid4()), synced=True, **values)
        self.items[item.id] = item
        return item

    async def list(self, status: ItemStatus, week_of: Optional[str] = None) -> List[Item]:
        await self._call("list", status, week_of)
        matching = [
            it for it in self.items.values() if it.status == status and (week_of is None or it.week_of == week_of)
        ]
        return sorted(matching, key=lambda it: it.created_at, reverse=True)

    async def create(self, data: ItemCreate) -> Item:
        await self._call("create", data)
        now = datetime.now(timezone.utc)
        item = Item(
            id=str(uuid.uuid4()),
            url=data.url,
            title=data.title,
            notes=data.notes,
            category=data.category,
            status=data.status,
            week_of=data.week_of or week_key(now),
            created_at=now,
            updated_at=now,
            synced=True,
        )
        self.items[item.id] = item
        return item

    async def update(self, item_id: str, changes: Mapping[str, Any]) -> Item:
        await self._call("update", item_id, dict(changes))
        existing = self.items.get(item_id)
        if existing is None:
            raise RemoteError(f"{item_id} not found", status_code=404)
        updated = Item.model_validate(
            {**existing.model_dump(), **changes, "updated_at": datetime.now(timezone.utc)}
        )
        self.items[item_id] = updated
        return updated

    async def soft_delete(self, item_id: str) -> None:
        await self._call("soft_delete", item_id)
        existing = self.items.get(item_id)
        if existing is None:
            raise RemoteError(f"{item_id} not found", status_code=404)
        self.items[item_id] = existing.model_copy(update={"status": ItemStatus.DELETED})

    async def bulk_transition_status(self, from_status: ItemStatus, week_of: str, to_status: ItemStatus) -> int:
        await self._call("bulk_transition_status", from_status, week_of, to_status)
        moved = 0
        for item_id, item in list(self.items.items()):
            if item.week_of == week_of and item.status == from_status:
                self.items[item_id] = item.model_copy(update={"status": to_status})
                moved += 1
        return moved


def make_item(item_id: str, created_at: datetime = FIXED_NOW, **fields: Any) -> Item:
    values: Dict[str, Any] = {"url": f"https://example.com/{item_id}", "week_of": CURRENT_WEEK, **fields}
    return Item(id=item_id, created_at=created_at, updated_at=created_at, **values)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryLocalStore()
    return SQLiteLocalStore(str(tmp_path / "local.db"))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def monitor():
    return ConnectivityMonitor(initially_online=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(store, gateway, monitor, clock):
    engine = SyncEngine(store, gateway, monitor, clock=clock)
    monitor.add_listener(engine.request_drain)
    return engine
