from __future__ import annotations

import asyncio
import builtins
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime

import aiosqlite

from ..exceptions import InvalidArgument, StoreUnavailable
from ..models import DEFAULT_TABLE_NAME, Item, ItemStatus
from ..util.checks import (
    check_ids,
    check_limit,
    check_payload,
    check_routing_key,
    check_status,
    check_table_name,
)
from ..util.time import db_timestamp, now_utc, parse_iso
from .base import ItemStore

logger = logging.getLogger("rowqueue.store.sqlite")

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on old builds.
_ID_CHUNK = 500

_COLUMNS = (
    "id, status, created_at, completed_at, claimed_at, routing_key, metadata, content, error"
)


class SqliteItemStore(ItemStore):
    """SQLite-based item store with WAL mode for better concurrency.

    SQLite has no lock-and-skip read, so claims use a conditional update
    (``WHERE id = ? AND status = 0``) inside an immediate transaction and retry
    the selection when another connection got there first.
    """

    def __init__(
        self,
        db_path: str = "./rowqueue.db",
        table_name: str = DEFAULT_TABLE_NAME,
        timeout: float = 30.0,
        claim_retries: int = 10,
    ):
        if not db_path:
            raise InvalidArgument("db_path is required")
        if claim_retries < 1:
            raise InvalidArgument("claim_retries must be >= 1")
        self._db_path = db_path
        self._table = check_table_name(table_name)
        self._timeout = timeout
        self._claim_retries = claim_retries
        self._lock = asyncio.Lock()
        self._conn: aiosqlite.Connection | None = None

    @property
    def table_name(self) -> str:
        return self._table

    async def _ensure(self) -> aiosqlite.Connection:
        """Ensure connection is established."""
        if self._conn is None:
            try:
                conn = await aiosqlite.connect(
                    self._db_path,
                    isolation_level=None,
                    timeout=self._timeout,
                )
                conn.row_factory = aiosqlite.Row
                await conn.execute("PRAGMA journal_mode=WAL;")
                await conn.execute("PRAGMA synchronous=NORMAL;")
                await conn.execute(f"PRAGMA busy_timeout={int(self._timeout * 1000)};")
            except (aiosqlite.Error, OSError) as e:
                raise StoreUnavailable(f"Cannot open SQLite database {self._db_path}") from e
            self._conn = conn
        return self._conn

    async def init_schema(self) -> None:
        """Create the item table and its indexes."""
        t = self._table
        async with self._tx() as cx:
            await cx.execute(
                f"""
                CREATE TABLE IF NOT EXISTS "{t}" (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  status INTEGER NOT NULL DEFAULT 0,
                  created_at TEXT NOT NULL,
                  completed_at TEXT,
                  claimed_at TEXT,
                  routing_key TEXT NOT NULL,
                  metadata BLOB,
                  content BLOB,
                  error TEXT
                );
                """
            )
            info = await (await cx.execute(f'PRAGMA table_info("{t}")')).fetchall()
            columns = {r["name"] for r in info}
            if "claimed_at" not in columns:
                await cx.execute(f'ALTER TABLE "{t}" ADD COLUMN claimed_at TEXT')
            await cx.execute(
                f'CREATE INDEX IF NOT EXISTS "ix_{t}_status_routing_key" ON "{t}"(status, routing_key);'
            )
            await cx.execute(f'CREATE INDEX IF NOT EXISTS "ix_{t}_created_at" ON "{t}"(created_at);')
        logger.info(f"Schema ready for table {t}")

    @asynccontextmanager
    async def _tx(self, immediate: bool = False) -> AsyncIterator[aiosqlite.Connection]:
        """Transaction context with lock; rolls back on any error."""
        async with self._lock:
            conn = await self._ensure()
            try:
                await conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            except aiosqlite.Error as e:
                raise StoreUnavailable("Cannot begin transaction") from e
            try:
                yield conn
            except BaseException as e:
                try:
                    await conn.rollback()
                except aiosqlite.Error:
                    logger.exception("Rollback failed")
                if isinstance(e, aiosqlite.Error):
                    logger.exception("Transaction error")
                    raise StoreUnavailable(str(e)) from e
                raise
            else:
                try:
                    await conn.commit()
                except aiosqlite.Error as e:
                    logger.exception("Commit failed")
                    raise StoreUnavailable(str(e)) from e

    async def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            try:
                await self._conn.close()
            finally:
                self._conn = None

    async def enqueue(
        self,
        routing_key: str,
        content: bytes | None = None,
        metadata: bytes | None = None,
    ) -> int:
        """Insert a New item and return its id."""
        routing_key = check_routing_key(routing_key)
        content = check_payload("content", content)
        metadata = check_payload("metadata", metadata)
        async with self._tx() as cx:
            cur = await cx.execute(
                f"""
                INSERT INTO "{self._table}" (status, created_at, routing_key, metadata, content)
                VALUES (?, ?, ?, ?, ?)
                """,
                (ItemStatus.new.value, db_timestamp(now_utc()), routing_key, metadata, content),
            )
            item_id = int(cur.lastrowid)
        logger.debug(f"Enqueued item {item_id} for {routing_key}")
        return item_id

    async def claim(self, routing_key: str | None = None) -> Item | None:
        """Claim the oldest New item, optionally restricted to a routing key."""
        where = "status = ?"
        args: list[object] = [ItemStatus.new.value]
        if routing_key:
            where += " AND routing_key = ?"
            args.append(routing_key)
        select_sql = f'SELECT {_COLUMNS} FROM "{self._table}" WHERE {where} ORDER BY id LIMIT 1'
        update_sql = (
            f'UPDATE "{self._table}" SET status = ?, claimed_at = ? WHERE id = ? AND status = ?'
        )

        for attempt in range(self._claim_retries):
            async with self._tx(immediate=True) as cx:
                row = await (await cx.execute(select_sql, args)).fetchone()
                if row is None:
                    return None
                claimed_at = now_utc()
                cur = await cx.execute(
                    update_sql,
                    (
                        ItemStatus.in_progress.value,
                        db_timestamp(claimed_at),
                        row["id"],
                        ItemStatus.new.value,
                    ),
                )
                if cur.rowcount == 1:
                    item = self._row_to_item(row)
                    item.status = ItemStatus.in_progress
                    item.claimed_at = claimed_at
                    logger.debug(f"Claimed item {item.id} ({item.routing_key})")
                    return item
            logger.debug(f"Lost claim race for item {row['id']} (attempt {attempt + 1})")
        return None

    async def set_status(
        self,
        ids: Iterable[int],
        status: ItemStatus | int | str,
        error: str | None = None,
    ) -> None:
        """Set status for all given ids in one transaction."""
        id_list = check_ids(ids)
        if not id_list:
            return
        status = check_status(status)
        completed_at = db_timestamp(now_utc()) if status.is_terminal() else None

        updated = 0
        async with self._tx() as cx:
            for start in range(0, len(id_list), _ID_CHUNK):
                chunk = id_list[start : start + _ID_CHUNK]
                marks = ",".join("?" for _ in chunk)
                cur = await cx.execute(
                    f"""
                    UPDATE "{self._table}"
                    SET status = ?, completed_at = ?, error = ?
                    WHERE id IN ({marks})
                    """,
                    (status.value, completed_at, error, *chunk),
                )
                updated += cur.rowcount or 0
        logger.debug(f"Set {updated}/{len(id_list)} items to {status.name}")

    async def query(
        self,
        routing_key: str | None = None,
        status: ItemStatus | int | str | None = None,
        *,
        created_before: datetime | None = None,
        limit: int | None = None,
    ) -> builtins.list[Item]:
        """List items with filters, ascending by id."""
        limit = check_limit(limit)
        where, args = [], []
        if routing_key:
            where.append("routing_key = ?")
            args.append(routing_key)
        if status is not None:
            where.append("status = ?")
            args.append(ItemStatus.parse(status).value)
        if created_before is not None:
            where.append("created_at < ?")
            args.append(db_timestamp(created_before))
        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        sql = f'SELECT {_COLUMNS} FROM "{self._table}" {where_sql} ORDER BY id'
        if limit is not None:
            sql += " LIMIT ?"
            args.append(limit)

        async with self._tx() as cx:
            rows = await (await cx.execute(sql, args)).fetchall()
        return [self._row_to_item(r) for r in rows]

    async def requeue_stale(
        self,
        claimed_before: datetime,
        routing_key: str | None = None,
    ) -> int:
        """Reset items claimed before the cutoff and still InProgress."""
        sql = f"""
            UPDATE "{self._table}"
            SET status = ?, completed_at = NULL, error = NULL, claimed_at = NULL
            WHERE status = ? AND claimed_at < ?
        """
        args: list[object] = [
            ItemStatus.new.value,
            ItemStatus.in_progress.value,
            db_timestamp(claimed_before),
        ]
        if routing_key:
            sql += " AND routing_key = ?"
            args.append(routing_key)
        async with self._tx() as cx:
            cur = await cx.execute(sql, args)
            count = cur.rowcount or 0
        if count > 0:
            logger.warning(f"Requeued {count} stale in-progress items")
        return count

    async def reset_failed(
        self,
        routing_key: str | None = None,
        created_before: datetime | None = None,
    ) -> int:
        """Reset Failed items to New."""
        sql = f"""
            UPDATE "{self._table}"
            SET status = ?, completed_at = NULL, error = NULL
            WHERE status = ?
        """
        args: list[object] = [ItemStatus.new.value, ItemStatus.failed.value]
        if routing_key:
            sql += " AND routing_key = ?"
            args.append(routing_key)
        if created_before is not None:
            sql += " AND created_at < ?"
            args.append(db_timestamp(created_before))
        async with self._tx() as cx:
            cur = await cx.execute(sql, args)
            count = cur.rowcount or 0
        if count > 0:
            logger.info(f"Reset {count} failed items to new")
        return count

    def _row_to_item(self, row: aiosqlite.Row) -> Item:
        """Convert database row to Item."""
        return Item(
            id=row["id"],
            status=ItemStatus(row["status"]),
            created_at=parse_iso(row["created_at"]),  # type: ignore[arg-type]
            completed_at=parse_iso(row["completed_at"]),
            claimed_at=parse_iso(row["claimed_at"]),
            routing_key=row["routing_key"],
            metadata=bytes(row["metadata"]) if row["metadata"] is not None else None,
            content=bytes(row["content"]) if row["content"] is not None else None,
            error=row["error"],
        )
