from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from .connectivity import ConnectivityMonitor
from .errors import NotFoundError, RemoteError, ValidationError
from .gateway import RemoteGateway
from .models import (
    ArchiveOperation,
    CreateOperation,
    DeleteOperation,
    Item,
    QueuedOperation,
    UpdateOperation,
)
from .schemas import ItemCreate, ItemStatus, ItemUpdate
from .store import LocalStore
from .utils import generate_temp_id, is_temp_id, utcnow, week_key

logger = logging.getLogger(__name__)

_CONTENT_FIELDS = ("url", "title", "notes", "category", "status")


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class SyncSummary:
    """Aggregate outcome of replaying the queue."""

    synced: int = 0
    failed: int = 0

    def __add__(self, other: "SyncSummary") -> "SyncSummary":
        return SyncSummary(self.synced + other.synced, self.failed + other.failed)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class FullSyncResult:
    """Outcome of a full sync: queue replay counts plus whether the refresh landed."""

    synced: int
    failed: int
    refreshed: bool


def _content(item: Item) -> Dict[str, Any]:
    return {f: getattr(item, f) for f in _CONTENT_FIELDS}


# PUBLIC_INTERFACE
class SyncEngine:
    """
    Optimistic local writes with deferred remote confirmation.

    Each mutation follows the same four steps:
    1. apply the change to the local store immediately;
    2. skip the remote call when offline, when the target still has a
       temporary id, or when earlier work is queued or being replayed;
    3. otherwise call the gateway and reconcile the confirmed record;
    4. on a skipped or failed call, queue the operation and return the
       optimistic record.

    Remote failures never reach the caller of a mutation. ValidationError,
    NotFoundError and StorageError do.

    Queue replay (`sync_queue`) runs one operation at a time in queue order,
    stops at the first failure and never runs two drains at once.

    Mutations run one at a time. A replay releases the engine while its
    remote call is in flight and takes it back to settle the answer, so a
    mutation never observes a half-applied confirmation.
    """

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteGateway,
        monitor: ConnectivityMonitor,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._monitor = monitor
        self._clock = clock
        self._lock = asyncio.Lock()
        self._drain_task: Optional[asyncio.Task] = None
        self._drain_requested = False
        self._refreshing = False

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    async def _remote_allowed(self) -> bool:
        """Direct remote calls only run when online and nothing older is waiting."""
        if not self._monitor.is_online() or self.is_draining or self._refreshing:
            return False
        return not await self._store.list_queue()

    # -- reads -------------------------------------------------------------

    async def list_items(self, status: ItemStatus = ItemStatus.ACTIVE) -> List[Item]:
        """
        Local records with `status`, newest first. Never touches the network;
        call `full_sync` first to pull the service's current week when online.
        """
        return await self._store.list_by_status(status)

    async def pending_operations(self) -> List[QueuedOperation]:
        return await self._store.list_queue()

    # -- mutations ---------------------------------------------------------

    # PUBLIC_INTERFACE
    async def create_item(self, data: Union[ItemCreate, Mapping[str, Any]]) -> Item:
        """
        Create an item. Returns the confirmed record when the service answered,
        otherwise the optimistic record carrying a temporary id.

        Raises:
            ValidationError: neither url nor notes given, or a malformed field.
        """
        try:
            payload = data if isinstance(data, ItemCreate) else ItemCreate.model_validate(dict(data))
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e

        async with self._lock:
            now = self._clock()
            if payload.week_of is None:
                payload = payload.model_copy(update={"week_of": week_key(now)})
            temp_id = generate_temp_id()
            local = Item(id=temp_id, created_at=now, updated_at=now, synced=False, **payload.model_dump())
            await self._store.put(local)

            if await self._remote_allowed():
                try:
                    remote = await self._gateway.create(payload)
                except RemoteError as e:
                    logger.warning("remote_create_failed", extra={"item_id": temp_id, "error": str(e)})
                else:
                    return await self._store.reconcile(temp_id, remote)

            await self._store.enqueue(CreateOperation(temp_id=temp_id, data=payload, timestamp=now))
            return local

    # PUBLIC_INTERFACE
    async def update_item(self, item_id: str, changes: Union[ItemUpdate, Mapping[str, Any]]) -> Item:
        """
        Merge `changes` into an item.

        An item still waiting for its create is only updated locally and its
        queued create is rewritten with the merged fields, so the queue never
        holds an update for a temporary id.

        Raises:
            ValidationError: malformed fields, or the result has neither url nor notes.
            NotFoundError: no local record with this id.
        """
        try:
            update = changes if isinstance(changes, ItemUpdate) else ItemUpdate.model_validate(dict(changes))
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e

        async with self._lock:
            existing = await self._store.get(item_id)
            if existing is None:
                raise NotFoundError(item_id)

            now = self._clock()
            merged = existing.model_copy(
                update={**update.model_dump(exclude_unset=True), "updated_at": now, "synced": False}
            )
            if merged.url is None and merged.notes is None:
                raise ValidationError("url or notes required")
            await self._store.put(merged)

            if existing.is_temporary:
                await self._fold_into_create(merged)
                return merged

            fields = update.model_dump(exclude_unset=True, mode="json")
            if await self._remote_allowed():
                try:
                    remote = await self._gateway.update(item_id, fields)
                except RemoteError as e:
                    logger.warning("remote_update_failed", extra={"item_id": item_id, "error": str(e)})
                else:
                    return await self._store.reconcile(item_id, remote)

            await self._store.enqueue(UpdateOperation(item_id=item_id, changes=fields, timestamp=now))
            return merged

    async def _fold_into_create(self, item: Item) -> None:
        pending = next(
            (op for op in await self._store.list_queue() if isinstance(op, CreateOperation) and op.temp_id == item.id),
            None,
        )
        week_of = pending.data.week_of if pending is not None else item.week_of
        data = ItemCreate(**_content(item), week_of=week_of)
        if pending is not None and pending.queue_id is not None:
            if await self._store.replace_queued(pending.queue_id, pending.model_copy(update={"data": data})):
                logger.debug("update_folded_into_create", extra={"item_id": item.id, "queue_id": pending.queue_id})
                return
        await self._store.enqueue(CreateOperation(temp_id=item.id, data=data, timestamp=self._clock()))

    # PUBLIC_INTERFACE
    async def delete_item(self, item_id: str) -> None:
        """
        Soft-delete an item locally, then remotely.

        An item that never reached the service is dropped outright together
        with its queued create; nothing is queued for it.

        Raises:
            NotFoundError: no local record with this id.
        """
        async with self._lock:
            existing = await self._store.get(item_id)
            if existing is None:
                raise NotFoundError(item_id)

            now = self._clock()
            await self._store.put(
                existing.model_copy(update={"status": ItemStatus.DELETED, "synced": False, "updated_at": now})
            )

            if existing.is_temporary:
                for op in await self._store.list_queue():
                    if op.target_id == item_id and op.queue_id is not None:
                        await self._store.dequeue(op.queue_id)
                await self._store.delete(item_id)
                return

            if await self._remote_allowed():
                try:
                    await self._gateway.soft_delete(item_id)
                except RemoteError as e:
                    logger.warning("remote_delete_failed", extra={"item_id": item_id, "error": str(e)})
                else:
                    await self._store.delete(item_id)
                    return

            await self._store.enqueue(DeleteOperation(item_id=item_id, timestamp=now))

    # PUBLIC_INTERFACE
    async def archive_week(self, week_of: Optional[str] = None) -> List[Item]:
        """
        Archive every active item of a week (the current one by default).

        The week key is captured here and replayed unchanged, even if the
        replay happens after a week boundary. Returns the archived records.
        """
        async with self._lock:
            now = self._clock()
            week = week_of or week_key(now)
            archived = await self._store.transition_week(week, ItemStatus.ACTIVE, ItemStatus.ARCHIVED)

            if await self._remote_allowed():
                try:
                    await self._gateway.bulk_transition_status(ItemStatus.ACTIVE, week, ItemStatus.ARCHIVED)
                except RemoteError as e:
                    logger.warning("remote_archive_failed", extra={"week_of": week, "error": str(e)})
                else:
                    return await self._mark_week_synced(week)

            await self._store.enqueue(ArchiveOperation(week_of=week, timestamp=now))
            return archived

    async def _mark_week_synced(self, week_of: str) -> List[Item]:
        pending = {op.target_id for op in await self._store.list_queue()}
        confirmed: List[Item] = []
        for item in await self._store.list_by_status(ItemStatus.ARCHIVED):
            if item.week_of != week_of:
                continue
            if item.is_temporary or item.id in pending:
                confirmed.append(item)
                continue
            item = item.model_copy(update={"synced": True})
            await self._store.put(item)
            confirmed.append(item)
        return confirmed

    # -- queue replay ------------------------------------------------------

    # PUBLIC_INTERFACE
    def request_drain(self) -> asyncio.Task:
        """
        Start replaying the queue, or join the replay already running.

        A request that arrives during a drain schedules at most one follow-up
        pass, which runs only if the current pass finished without a failure.
        Must be called from a running event loop.
        """
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_requested = True
            return self._drain_task
        self._drain_requested = False
        self._drain_task = asyncio.create_task(self._drain_passes())
        self._drain_task.add_done_callback(self._log_drain_outcome)
        return self._drain_task

    # PUBLIC_INTERFACE
    async def sync_queue(self) -> SyncSummary:
        """Replay queued operations and return the {synced, failed} counts."""
        return await self.request_drain()

    def _log_drain_outcome(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("drain_aborted", extra={"error": str(error)})

    async def _drain_passes(self) -> SyncSummary:
        total = SyncSummary()
        while True:
            self._drain_requested = False
            summary = await self._drain_once()
            total = total + summary
            if summary.failed or not self._drain_requested:
                return total

    async def _drain_once(self) -> SyncSummary:
        if not self._monitor.is_online():
            logger.info("drain_skipped_offline")
            return SyncSummary()

        synced = 0
        id_map: Dict[str, str] = {}
        while self._monitor.is_online():
            # Re-read the head each time so changes folded in meanwhile are replayed.
            queue = await self._store.list_queue()
            if not queue:
                break
            op = queue[0]
            if op.queue_id is None:
                raise ValueError(f"Queued operation has no queue id: {op!r}")
            try:
                replayed = await self._replay(op, op.queue_id, id_map)
            except RemoteError as e:
                logger.warning(
                    "drain_stopped",
                    extra={"queue_id": op.queue_id, "op_type": op.type, "error": str(e), "synced": synced},
                )
                return SyncSummary(synced=synced, failed=1)
            if not replayed:
                return SyncSummary(synced=synced, failed=1)
            synced += 1

        logger.info("drain_finished", extra={"synced": synced})
        return SyncSummary(synced=synced)

    async def _replay(self, op: QueuedOperation, queue_id: int, id_map: Dict[str, str]) -> bool:
        if isinstance(op, CreateOperation):
            return await self._replay_create(op, queue_id, id_map)
        if isinstance(op, UpdateOperation):
            return await self._replay_update(op, queue_id, id_map)
        if isinstance(op, DeleteOperation):
            return await self._replay_delete(op, queue_id, id_map)
        if isinstance(op, ArchiveOperation):
            return await self._replay_archive(op, queue_id)
        raise TypeError(f"Unknown queued operation: {op!r}")

    async def _resolve(
        self, op: Union[UpdateOperation, DeleteOperation], queue_id: int, id_map: Dict[str, str]
    ) -> Optional[str]:
        """
        Return the permanent id an update/delete should hit.

        A target that is still temporary is looked up among the creates
        resolved earlier in this pass, and the queued operation is rewritten
        to the permanent id before it is replayed.
        """
        if not is_temp_id(op.item_id):
            return op.item_id
        resolved = id_map.get(op.item_id)
        if resolved is None:
            logger.warning("unresolved_temporary_target", extra={"queue_id": queue_id, "item_id": op.item_id})
            return None
        await self._store.replace_queued(queue_id, op.model_copy(update={"item_id": resolved}))
        return resolved

    async def _replay_create(self, op: CreateOperation, queue_id: int, id_map: Dict[str, str]) -> bool:
        remote = await self._gateway.create(op.data)
        id_map[op.temp_id] = remote.id

        async with self._lock:
            current = await self._store.get_queued(queue_id)
            local = await self._store.get(op.temp_id)
            if current is None or local is None:
                # Deleted locally while the create was in flight.
                await self._store.delete(op.temp_id)
                await self._store.dequeue(queue_id)
                await self._store.enqueue(DeleteOperation(item_id=remote.id, timestamp=self._clock()))
                return True

            await self._store.reconcile(op.temp_id, remote)
            if _content(local) != _content(remote):
                await self._store.put(
                    local.model_copy(update={"id": remote.id, "created_at": remote.created_at, "synced": False})
                )

            if isinstance(current, CreateOperation) and current.data != op.data:
                # Fields were folded in while the create was in flight; send them as an update.
                changes = current.data.model_dump(mode="json", include=set(_CONTENT_FIELDS))
                await self._store.replace_queued(
                    queue_id, UpdateOperation(item_id=remote.id, changes=changes, timestamp=current.timestamp)
                )
            else:
                await self._store.dequeue(queue_id)
            return True

    async def _replay_update(self, op: UpdateOperation, queue_id: int, id_map: Dict[str, str]) -> bool:
        target = await self._resolve(op, queue_id, id_map)
        if target is None:
            return False
        remote = await self._gateway.update(target, op.changes)

        async with self._lock:
            local = await self._store.get(target)
            queue = await self._store.list_queue()
            if local is not None and not self._has_later_work(queue_id, op.item_id, local, queue):
                await self._store.reconcile(target, remote)
            await self._store.dequeue(queue_id)
        return True

    @staticmethod
    def _has_later_work(queue_id: int, item_id: str, local: Item, queue: List[QueuedOperation]) -> bool:
        """True when another queued operation will still change `local` (by id, or by archiving its week)."""
        for other in queue:
            if other.queue_id == queue_id:
                continue
            if other.target_id in (local.id, item_id):
                return True
            if isinstance(other, ArchiveOperation) and other.week_of == local.week_of:
                return True
        return False

    async def _replay_delete(self, op: DeleteOperation, queue_id: int, id_map: Dict[str, str]) -> bool:
        target = await self._resolve(op, queue_id, id_map)
        if target is None:
            return False
        await self._gateway.soft_delete(target)

        async with self._lock:
            await self._store.delete(target)
            await self._store.dequeue(queue_id)
        return True

    async def _replay_archive(self, op: ArchiveOperation, queue_id: int) -> bool:
        await self._gateway.bulk_transition_status(ItemStatus.ACTIVE, op.week_of, ItemStatus.ARCHIVED)

        async with self._lock:
            await self._store.dequeue(queue_id)
            await self._mark_week_synced(op.week_of)
        return True

    # -- full refresh ------------------------------------------------------

    # PUBLIC_INTERFACE
    async def full_sync(self) -> FullSyncResult:
        """
        Drain the queue, then replace local state with the service's active
        items for the current week.

        Records that still have queued operations are kept (unsynced) so a
        partial drain never hides local work. A week with a queued archive is
        kept whole: its remote copies are still active and would undo the
        archive locally. A failed fetch leaves the local store untouched and
        reports refreshed=False.
        """
        summary = await self.sync_queue()
        self._refreshing = True
        try:
            try:
                remote_items = await self._gateway.list(ItemStatus.ACTIVE, week_key(self._clock()))
            except RemoteError as e:
                logger.warning("full_sync_fetch_failed", extra={"error": str(e)})
                return FullSyncResult(summary.synced, summary.failed, refreshed=False)

            async with self._lock:
                pending, held_weeks = await self._records_with_pending_work()
                held_ids = {it.id for it in pending}
                fresh = [it for it in remote_items if it.id not in held_ids and it.week_of not in held_weeks]
                await self._store.replace_all(fresh, pending)
        finally:
            self._refreshing = False

        logger.info(
            "full_sync_finished",
            extra={"synced": summary.synced, "failed": summary.failed, "items": len(remote_items)},
        )
        return FullSyncResult(summary.synced, summary.failed, refreshed=True)

    async def _records_with_pending_work(self) -> Tuple[List[Item], Set[str]]:
        """Local records a refresh must not overwrite, and the weeks with a queued archive."""
        queue = await self._store.list_queue()
        held_weeks = {op.week_of for op in queue if isinstance(op, ArchiveOperation)}
        records: Dict[str, Item] = {}
        for item_id in {op.target_id for op in queue if op.target_id is not None}:
            item = await self._store.get(item_id)
            if item is not None:
                records[item.id] = item
        if held_weeks:
            for status in ItemStatus:
                for item in await self._store.list_by_status(status):
                    if item.week_of in held_weeks:
                        records[item.id] = item
        return list(records.values()), held_weeks
