from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Generator, List, Optional, Sequence, TypeVar

from .errors import StorageError
from .models import Item, QueuedOperation, parse_operation
from .schemas import ItemStatus
from .store import LocalStore
from .utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class _Cols:
    table: str = "items"
    id: str = "id"
    url: str = "url"
    title: str = "title"
    notes: str = "notes"
    category: str = "category"
    status: str = "status"
    week_of: str = "week_of"
    created_at: str = "created_at"
    updated_at: str = "updated_at"
    synced: str = "synced"


@dataclass(frozen=True)
class _QueueCols:
    table: str = "sync_queue"
    queue_id: str = "queue_id"
    type: str = "type"
    payload: str = "payload"
    timestamp: str = "timestamp"


_COLS = _Cols()
_QCOLS = _QueueCols()

_ITEM_FIELDS = (
    _COLS.id,
    _COLS.url,
    _COLS.title,
    _COLS.notes,
    _COLS.category,
    _COLS.status,
    _COLS.week_of,
    _COLS.created_at,
    _COLS.updated_at,
    _COLS.synced,
)

_UPSERT_SQL = f"""
    INSERT INTO {_COLS.table} ({", ".join(_ITEM_FIELDS)})
    VALUES ({", ".join("?" for _ in _ITEM_FIELDS)})
    ON CONFLICT({_COLS.id}) DO UPDATE SET
    {", ".join(f"{c} = excluded.{c}" for c in _ITEM_FIELDS[1:])}
"""


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class SQLiteLocalStore(LocalStore):
    """
    Durable local store backed by a single SQLite file.

    Blocking sqlite3 calls run in worker threads. Writes are serialized and
    each public operation commits as one transaction, so readers on other
    connections observe a reconcile or replace_all either entirely or not
    at all (WAL journal).
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._write_lock = RLock()
        try:
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create store directory for {db_path}") from e
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=30)
        except sqlite3.Error as e:
            logger.error("local_store_open_failed", extra={"db_path": self._db_path, "error": str(e)})
            raise StorageError(f"Cannot open local store at {self._db_path}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("local_store_operation_failed", extra={"db_path": self._db_path, "error": str(e)})
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(fn, *args)

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} TEXT PRIMARY KEY,
                    {_COLS.url} TEXT NULL,
                    {_COLS.title} TEXT NULL,
                    {_COLS.notes} TEXT NULL,
                    {_COLS.category} TEXT NULL,
                    {_COLS.status} TEXT NOT NULL,
                    {_COLS.week_of} TEXT NOT NULL,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.updated_at} TEXT NOT NULL,
                    {_COLS.synced} INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_status ON {_COLS.table}({_COLS.status})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_week_of ON {_COLS.table}({_COLS.week_of})"
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_QCOLS.table} (
                    {_QCOLS.queue_id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_QCOLS.type} TEXT NOT NULL,
                    {_QCOLS.payload} TEXT NOT NULL,
                    {_QCOLS.timestamp} TEXT NOT NULL
                )
                """
            )

    # -- row mapping -------------------------------------------------------

    def _row_to_item(self, row: sqlite3.Row) -> Item:
        return Item(
            id=row[_COLS.id],
            url=row[_COLS.url],
            title=row[_COLS.title],
            notes=row[_COLS.notes],
            category=row[_COLS.category],
            status=ItemStatus(row[_COLS.status]),
            week_of=row[_COLS.week_of],
            created_at=datetime.fromisoformat(row[_COLS.created_at]),
            updated_at=datetime.fromisoformat(row[_COLS.updated_at]),
            synced=bool(row[_COLS.synced]),
        )

    def _item_params(self, item: Item) -> tuple:
        return (
            item.id,
            item.url,
            item.title,
            item.notes,
            item.category,
            item.status.value,
            item.week_of,
            _ts(item.created_at),
            _ts(item.updated_at),
            1 if item.synced else 0,
        )

    def _row_to_operation(self, row: sqlite3.Row) -> QueuedOperation:
        op = parse_operation(row[_QCOLS.payload])
        return op.model_copy(update={_QCOLS.queue_id: int(row[_QCOLS.queue_id])})

    def _operation_payload(self, operation: QueuedOperation) -> str:
        return operation.model_dump_json(exclude={"queue_id"})

    # -- items -------------------------------------------------------------

    def _put(self, item: Item) -> None:
        with self._write_lock, self._conn() as conn:
            conn.execute(_UPSERT_SQL, self._item_params(item))

    def _get(self, item_id: str) -> Optional[Item]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_COLS.table} WHERE {_COLS.id} = ?", (item_id,)).fetchone()
            return self._row_to_item(row) if row else None

    def _list_by_status(self, status: ItemStatus) -> List[Item]:
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_COLS.table}
                WHERE {_COLS.status} = ?
                ORDER BY {_COLS.created_at} DESC, rowid ASC
                """,
                (status.value,),
            ).fetchall()
            return [self._row_to_item(r) for r in rows]

    def _delete(self, item_id: str) -> None:
        with self._write_lock, self._conn() as conn:
            conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (item_id,))

    def _reconcile(self, temp_id: str, item: Item) -> Item:
        synced = item.model_copy(update={"synced": True})
        with self._write_lock, self._conn() as conn:
            if temp_id != item.id:
                conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (temp_id,))
                rows = conn.execute(
                    f"SELECT * FROM {_QCOLS.table} WHERE {_QCOLS.type} IN ('update', 'delete')"
                ).fetchall()
                for row in rows:
                    op = self._row_to_operation(row)
                    if op.target_id == temp_id:
                        conn.execute(
                            f"UPDATE {_QCOLS.table} SET {_QCOLS.payload} = ? WHERE {_QCOLS.queue_id} = ?",
                            (self._operation_payload(op.model_copy(update={"item_id": item.id})), op.queue_id),
                        )
            conn.execute(_UPSERT_SQL, self._item_params(synced))
        return synced

    def _replace_all(self, items: Sequence[Item], pending: Sequence[Item]) -> None:
        with self._write_lock, self._conn() as conn:
            conn.execute(f"DELETE FROM {_COLS.table}")
            for item in items:
                conn.execute(_UPSERT_SQL, self._item_params(item.model_copy(update={"synced": True})))
            for item in pending:
                conn.execute(_UPSERT_SQL, self._item_params(item))

    def _transition_week(self, week_of: str, from_status: ItemStatus, to_status: ItemStatus) -> List[Item]:
        now = utcnow()
        with self._write_lock, self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_COLS.table}
                WHERE {_COLS.week_of} = ? AND {_COLS.status} = ?
                ORDER BY {_COLS.created_at} DESC, rowid ASC
                """,
                (week_of, from_status.value),
            ).fetchall()
            conn.execute(
                f"""
                UPDATE {_COLS.table}
                SET {_COLS.status} = ?, {_COLS.synced} = 0, {_COLS.updated_at} = ?
                WHERE {_COLS.week_of} = ? AND {_COLS.status} = ?
                """,
                (to_status.value, _ts(now), week_of, from_status.value),
            )
            return [
                self._row_to_item(r).model_copy(update={"status": to_status, "synced": False, "updated_at": now})
                for r in rows
            ]

    # -- queue -------------------------------------------------------------

    def _enqueue(self, operation: QueuedOperation) -> int:
        with self._write_lock, self._conn() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO {_QCOLS.table} ({_QCOLS.type}, {_QCOLS.payload}, {_QCOLS.timestamp})
                VALUES (?, ?, ?)
                """,
                (operation.type, self._operation_payload(operation), _ts(operation.timestamp)),
            )
            if cur.lastrowid is None:
                raise StorageError("enqueue did not return a queue id")
            return int(cur.lastrowid)

    def _list_queue(self) -> List[QueuedOperation]:
        with self._conn() as conn:
            rows = conn.execute(f"SELECT * FROM {_QCOLS.table} ORDER BY {_QCOLS.queue_id} ASC").fetchall()
            return [self._row_to_operation(r) for r in rows]

    def _get_queued(self, queue_id: int) -> Optional[QueuedOperation]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT * FROM {_QCOLS.table} WHERE {_QCOLS.queue_id} = ?", (queue_id,)
            ).fetchone()
            return self._row_to_operation(row) if row else None

    def _replace_queued(self, queue_id: int, operation: QueuedOperation) -> bool:
        with self._write_lock, self._conn() as conn:
            cur = conn.execute(
                f"""
                UPDATE {_QCOLS.table} SET {_QCOLS.type} = ?, {_QCOLS.payload} = ?
                WHERE {_QCOLS.queue_id} = ?
                """,
                (operation.type, self._operation_payload(operation), queue_id),
            )
            return cur.rowcount > 0

    def _dequeue(self, queue_id: int) -> None:
        with self._write_lock, self._conn() as conn:
            conn.execute(f"DELETE FROM {_QCOLS.table} WHERE {_QCOLS.queue_id} = ?", (queue_id,))

    # -- async surface -----------------------------------------------------

    async def put(self, item: Item) -> None:
        await self._run(self._put, item)

    async def get(self, item_id: str) -> Optional[Item]:
        return await self._run(self._get, item_id)

    async def list_by_status(self, status: ItemStatus) -> List[Item]:
        return await self._run(self._list_by_status, status)

    async def delete(self, item_id: str) -> None:
        await self._run(self._delete, item_id)

    async def reconcile(self, temp_id: str, item: Item) -> Item:
        return await self._run(self._reconcile, temp_id, item)

    async def replace_all(self, items: Sequence[Item], pending: Sequence[Item] = ()) -> None:
        await self._run(self._replace_all, list(items), list(pending))

    async def transition_week(
        self, week_of: str, from_status: ItemStatus, to_status: ItemStatus
    ) -> List[Item]:
        return await self._run(self._transition_week, week_of, from_status, to_status)

    async def enqueue(self, operation: QueuedOperation) -> int:
        return await self._run(self._enqueue, operation)

    async def list_queue(self) -> List[QueuedOperation]:
        return await self._run(self._list_queue)

    async def get_queued(self, queue_id: int) -> Optional[QueuedOperation]:
        return await self._run(self._get_queued, queue_id)

    async def replace_queued(self, queue_id: int, operation: QueuedOperation) -> bool:
        return await self._run(self._replace_queued, queue_id, operation)

    async def dequeue(self, queue_id: int) -> None:
        await self._run(self._dequeue, queue_id)
