import asyncio
from datetime import timedelta

import pytest

from conftest import CURRENT_WEEK, FIXED_NOW, make_item
from sendnotes.db import SQLiteLocalStore
from sendnotes.errors import StorageError
from sendnotes.models import ArchiveOperation, CreateOperation, DeleteOperation, UpdateOperation
from sendnotes.schemas import ItemCreate, ItemStatus
from sendnotes.settings import Settings
from sendnotes.store import InMemoryLocalStore, get_local_store


def _settings(backend: str, path: str) -> Settings:
    return Settings(
        store_backend=backend,
        store_path=path,
        remote_url="http://localhost:8000",
        remote_timeout=10.0,
        probe_interval=15.0,
        cors_allow_origins=["*"],
    )


class TestItems:
    @pytest.mark.asyncio
    async def test_put_get_and_missing(self, store):
        await store.put(make_item("a", title="First"))
        fetched = await store.get("a")
        assert fetched is not None
        assert fetched.title == "First"
        assert fetched.created_at == FIXED_NOW
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_put_overwrites_by_id(self, store):
        await store.put(make_item("a", title="Old"))
        await store.put(make_item("a", title="New", synced=True))
        fetched = await store.get("a")
        assert fetched.title == "New"
        assert fetched.synced is True
        assert len(await store.list_by_status(ItemStatus.ACTIVE)) == 1

    @pytest.mark.asyncio
    async def test_list_by_status_newest_first_ties_in_insertion_order(self, store):
        older = FIXED_NOW - timedelta(hours=1)
        await store.put(make_item("tie-1"))
        await store.put(make_item("old", created_at=older))
        await store.put(make_item("tie-2"))
        await store.put(make_item("gone", status=ItemStatus.DELETED))

        listed = await store.list_by_status(ItemStatus.ACTIVE)
        assert [it.id for it in listed] == ["tie-1", "tie-2", "old"]

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store):
        await store.put(make_item("a"))
        await store.delete("a")
        await store.delete("a")
        await store.delete("never-existed")
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_replace_all_keeps_pending_records_as_given(self, store):
        await store.put(make_item("stale"))
        await store.put(make_item("temp_1_local", title="Offline"))

        await store.replace_all(
            [make_item("remote-1"), make_item("remote-2")],
            [make_item("temp_1_local", title="Offline")],
        )

        assert await store.get("stale") is None
        assert (await store.get("remote-1")).synced is True
        pending = await store.get("temp_1_local")
        assert pending.synced is False
        assert pending.title == "Offline"

    @pytest.mark.asyncio
    async def test_transition_week_only_touches_matching_items(self, store):
        await store.put(make_item("this-week", synced=True))
        await store.put(make_item("other-week", week_of="2024-05-27", synced=True))
        await store.put(make_item("deleted", status=ItemStatus.DELETED))

        moved = await store.transition_week(CURRENT_WEEK, ItemStatus.ACTIVE, ItemStatus.ARCHIVED)

        assert [it.id for it in moved] == ["this-week"]
        archived = await store.get("this-week")
        assert archived.status == ItemStatus.ARCHIVED
        assert archived.synced is False
        assert (await store.get("other-week")).status == ItemStatus.ACTIVE
        assert (await store.get("deleted")).status == ItemStatus.DELETED


class TestReconcile:
    @pytest.mark.asyncio
    async def test_replaces_temp_record_and_marks_synced(self, store):
        await store.put(make_item("temp_1_abc"))
        stored = await store.reconcile("temp_1_abc", make_item("perm-1"))

        assert stored.id == "perm-1"
        assert stored.synced is True
        assert await store.get("temp_1_abc") is None
        assert (await store.get("perm-1")).synced is True

    @pytest.mark.asyncio
    async def test_retargets_queued_operations(self, store):
        await store.put(make_item("temp_1_abc"))
        create_id = await store.enqueue(
            CreateOperation(temp_id="temp_1_abc", data=ItemCreate(url="https://a", week_of=CURRENT_WEEK))
        )
        await store.enqueue(UpdateOperation(item_id="temp_1_abc", changes={"title": "x"}))
        await store.enqueue(DeleteOperation(item_id="temp_1_abc"))
        await store.enqueue(DeleteOperation(item_id="unrelated"))

        await store.reconcile("temp_1_abc", make_item("perm-1"))

        queue = await store.list_queue()
        assert queue[0].queue_id == create_id
        assert queue[0].target_id == "temp_1_abc"
        assert [op.target_id for op in queue[1:]] == ["perm-1", "perm-1", "unrelated"]

    @pytest.mark.asyncio
    async def test_concurrent_readers_never_see_both_or_neither(self, store):
        async def reader(temp_id: str, perm_id: str) -> None:
            ids = {it.id for it in await store.list_by_status(ItemStatus.ACTIVE)}
            assert len(ids & {temp_id, perm_id}) == 1

        for i in range(10):
            temp_id, perm_id = f"temp_{i}_x", f"perm-{i}"
            await store.put(make_item(temp_id))
            await asyncio.gather(
                store.reconcile(temp_id, make_item(perm_id)),
                *(reader(temp_id, perm_id) for _ in range(5)),
            )


class TestQueue:
    @pytest.mark.asyncio
    async def test_enqueue_assigns_ascending_ids(self, store):
        first = await store.enqueue(DeleteOperation(item_id="a"))
        second = await store.enqueue(ArchiveOperation(week_of=CURRENT_WEEK))
        third = await store.enqueue(UpdateOperation(item_id="b", changes={"title": "t"}))
        assert first < second < third

        queue = await store.list_queue()
        assert [op.queue_id for op in queue] == [first, second, third]
        assert isinstance(queue[1], ArchiveOperation)
        assert queue[1].week_of == CURRENT_WEEK
        assert queue[2].changes == {"title": "t"}

    @pytest.mark.asyncio
    async def test_dequeue_is_idempotent(self, store):
        queue_id = await store.enqueue(DeleteOperation(item_id="a"))
        await store.dequeue(queue_id)
        await store.dequeue(queue_id)
        await store.dequeue(9999)
        assert await store.list_queue() == []

    @pytest.mark.asyncio
    async def test_replace_queued_keeps_position(self, store):
        first = await store.enqueue(
            CreateOperation(temp_id="temp_1_a", data=ItemCreate(url="https://a", week_of=CURRENT_WEEK))
        )
        second = await store.enqueue(DeleteOperation(item_id="b"))

        replaced = await store.replace_queued(
            first, CreateOperation(temp_id="temp_1_a", data=ItemCreate(url="https://a2", week_of=CURRENT_WEEK))
        )

        assert replaced is True
        queue = await store.list_queue()
        assert [op.queue_id for op in queue] == [first, second]
        assert queue[0].data.url == "https://a2"
        assert (await store.get_queued(first)).data.url == "https://a2"

    @pytest.mark.asyncio
    async def test_replace_queued_missing_returns_false(self, store):
        assert await store.replace_queued(42, DeleteOperation(item_id="a")) is False
        assert await store.get_queued(42) is None
        assert await store.list_queue() == []


class TestSQLiteDurability:
    @pytest.mark.asyncio
    async def test_items_and_queue_survive_reopen(self, tmp_path):
        path = str(tmp_path / "nested" / "local.db")
        first = SQLiteLocalStore(path)
        await first.put(make_item("temp_1_a", title="Kept"))
        queue_id = await first.enqueue(
            CreateOperation(temp_id="temp_1_a", data=ItemCreate(url="https://a", week_of=CURRENT_WEEK))
        )
        await first.close()

        reopened = SQLiteLocalStore(path)
        item = await reopened.get("temp_1_a")
        assert item is not None
        assert item.title == "Kept"
        queue = await reopened.list_queue()
        assert len(queue) == 1
        assert queue[0].queue_id == queue_id
        assert queue[0].data.week_of == CURRENT_WEEK

    @pytest.mark.asyncio
    async def test_queue_ids_never_reused_after_dequeue(self, tmp_path):
        store = SQLiteLocalStore(str(tmp_path / "local.db"))
        first = await store.enqueue(DeleteOperation(item_id="a"))
        await store.dequeue(first)
        second = await store.enqueue(DeleteOperation(item_id="b"))
        assert second > first

    def test_unopenable_path_raises_storage_error(self, tmp_path):
        # A directory is not a database file.
        with pytest.raises(StorageError):
            SQLiteLocalStore(str(tmp_path))

    def test_directory_under_a_file_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(StorageError):
            SQLiteLocalStore(str(blocker / "local.db"))


class TestFactory:
    def test_memory_backend(self, tmp_path):
        store = get_local_store(_settings("memory", str(tmp_path / "unused.db")))
        assert isinstance(store, InMemoryLocalStore)

    def test_sqlite_backend(self, tmp_path):
        path = tmp_path / "local.db"
        store = get_local_store(_settings("sqlite", str(path)))
        assert isinstance(store, SQLiteLocalStore)
        assert path.exists()
