from __future__ import annotations

import asyncio
import builtins
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime

import asyncpg

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
from ..util.time import now_utc, to_utc
from .base import ItemStore

logger = logging.getLogger("rowqueue.store.postgres")

_COLUMNS = (
    "id, status, created_at, completed_at, claimed_at, routing_key, metadata, content, error"
)

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _affected(status: str) -> int:
    """Row count from a command tag such as 'UPDATE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class PostgresItemStore(ItemStore):
    """PostgreSQL item store.

    Claims lock the candidate row with ``FOR UPDATE SKIP LOCKED`` so that
    concurrent claimants each land on a different row instead of queueing
    behind one another.
    """

    def __init__(
        self,
        dsn: str,
        table_name: str = DEFAULT_TABLE_NAME,
        *,
        min_size: int = 1,
        max_size: int = 10,
        pool: asyncpg.Pool | None = None,
    ):
        if not dsn and pool is None:
            raise InvalidArgument("dsn is required")
        self._dsn = dsn
        self._table = check_table_name(table_name)
        self._min_size = min_size
        self._max_size = max_size
        self._pool = pool
        self._owns_pool = pool is None
        self._pool_lock = asyncio.Lock()

    @property
    def table_name(self) -> str:
        return self._table

    async def _ensure(self) -> asyncpg.Pool:
        """Ensure the connection pool exists."""
        if self._pool is None:
            async with self._pool_lock:
                if self._pool is None:
                    try:
                        self._pool = await asyncpg.create_pool(
                            self._dsn,
                            min_size=self._min_size,
                            max_size=self._max_size,
                        )
                    except _DRIVER_ERRORS as e:
                        raise StoreUnavailable("Cannot connect to PostgreSQL") from e
        return self._pool

    @asynccontextmanager
    async def _tx(self) -> AsyncIterator[asyncpg.Connection]:
        """Run the block in one READ COMMITTED transaction."""
        pool = await self._ensure()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction(isolation="read_committed"):
                    yield conn
        except _DRIVER_ERRORS as e:
            logger.exception("Transaction error")
            raise StoreUnavailable(str(e)) from e

    async def init_schema(self) -> None:
        """Create the item table and its indexes."""
        t = self._table
        async with self._tx() as cx:
            await cx.execute(
                f"""
                CREATE TABLE IF NOT EXISTS "{t}" (
                  id BIGSERIAL PRIMARY KEY,
                  status SMALLINT NOT NULL DEFAULT 0,
                  created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                  completed_at TIMESTAMPTZ,
                  claimed_at TIMESTAMPTZ,
                  routing_key VARCHAR(255) NOT NULL,
                  metadata BYTEA,
                  content BYTEA,
                  error TEXT
                )
                """
            )
            await cx.execute(f'ALTER TABLE "{t}" ADD COLUMN IF NOT EXISTS claimed_at TIMESTAMPTZ')
            await cx.execute(
                f'CREATE INDEX IF NOT EXISTS "ix_{t}_status_routing_key" ON "{t}" (status, routing_key)'
            )
            await cx.execute(f'CREATE INDEX IF NOT EXISTS "ix_{t}_created_at" ON "{t}" (created_at)')
        logger.info(f"Schema ready for table {t}")

    async def close(self) -> None:
        """Close the pool if this store created it."""
        if self._pool is not None and self._owns_pool:
            try:
                await self._pool.close()
            finally:
                self._pool = None

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
            item_id = await cx.fetchval(
                f"""
                INSERT INTO "{self._table}" (status, created_at, routing_key, metadata, content)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id
                """,
                ItemStatus.new.value,
                now_utc(),
                routing_key,
                metadata,
                content,
            )
        logger.debug(f"Enqueued item {item_id} for {routing_key}")
        return int(item_id)

    async def claim(self, routing_key: str | None = None) -> Item | None:
        """Lock-and-skip the oldest New item and mark it InProgress."""
        if routing_key:
            select_sql = f"""
                SELECT {_COLUMNS} FROM "{self._table}"
                WHERE status = $1 AND routing_key = $2
                ORDER BY id
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            """
            args: tuple[object, ...] = (ItemStatus.new.value, routing_key)
        else:
            select_sql = f"""
                SELECT {_COLUMNS} FROM "{self._table}"
                WHERE status = $1
                ORDER BY id
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            """
            args = (ItemStatus.new.value,)

        async with self._tx() as cx:
            row = await cx.fetchrow(select_sql, *args)
            if row is None:
                return None
            claimed_at = now_utc()
            await cx.execute(
                f'UPDATE "{self._table}" SET status = $1, claimed_at = $2 WHERE id = $3',
                ItemStatus.in_progress.value,
                claimed_at,
                row["id"],
            )

        item = self._row_to_item(row)
        item.status = ItemStatus.in_progress
        item.claimed_at = claimed_at
        logger.debug(f"Claimed item {item.id} ({item.routing_key})")
        return item

    async def set_status(
        self,
        ids: Iterable[int],
        status: ItemStatus | int | str,
        error: str | None = None,
    ) -> None:
        """Set status for all given ids with one UPDATE."""
        id_list = check_ids(ids)
        if not id_list:
            return
        status = check_status(status)
        completed_at = now_utc() if status.is_terminal() else None

        async with self._tx() as cx:
            result = await cx.execute(
                f"""
                UPDATE "{self._table}"
                SET status = $1, completed_at = $2, error = $3
                WHERE id = ANY($4::bigint[])
                """,
                status.value,
                completed_at,
                error,
                id_list,
            )
        logger.debug(f"Set items to {status.name}: {result}")

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
        where: list[str] = []
        args: list[object] = []
        if routing_key:
            args.append(routing_key)
            where.append(f"routing_key = ${len(args)}")
        if status is not None:
            args.append(ItemStatus.parse(status).value)
            where.append(f"status = ${len(args)}")
        if created_before is not None:
            args.append(to_utc(created_before))
            where.append(f"created_at < ${len(args)}")
        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        sql = f'SELECT {_COLUMNS} FROM "{self._table}" {where_sql} ORDER BY id'
        if limit is not None:
            args.append(limit)
            sql += f" LIMIT ${len(args)}"

        pool = await self._ensure()
        try:
            async with pool.acquire() as cx:
                rows = await cx.fetch(sql, *args)
        except _DRIVER_ERRORS as e:
            raise StoreUnavailable(str(e)) from e
        return [self._row_to_item(r) for r in rows]

    async def requeue_stale(
        self,
        claimed_before: datetime,
        routing_key: str | None = None,
    ) -> int:
        """Reset items claimed before the cutoff and still InProgress."""
        sql = f"""
            UPDATE "{self._table}"
            SET status = $1, completed_at = NULL, error = NULL, claimed_at = NULL
            WHERE status = $2 AND claimed_at < $3
        """
        args: list[object] = [
            ItemStatus.new.value,
            ItemStatus.in_progress.value,
            to_utc(claimed_before),
        ]
        if routing_key:
            args.append(routing_key)
            sql += f" AND routing_key = ${len(args)}"
        async with self._tx() as cx:
            result = await cx.execute(sql, *args)
        count = _affected(result)
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
            SET status = $1, completed_at = NULL, error = NULL
            WHERE status = $2
        """
        args: list[object] = [ItemStatus.new.value, ItemStatus.failed.value]
        if routing_key:
            args.append(routing_key)
            sql += f" AND routing_key = ${len(args)}"
        if created_before is not None:
            args.append(to_utc(created_before))
            sql += f" AND created_at < ${len(args)}"
        async with self._tx() as cx:
            result = await cx.execute(sql, *args)
        count = _affected(result)
        if count > 0:
            logger.info(f"Reset {count} failed items to new")
        return count

    def _row_to_item(self, row: asyncpg.Record) -> Item:
        """Convert database row to Item."""
        return Item(
            id=row["id"],
            status=ItemStatus(row["status"]),
            created_at=to_utc(row["created_at"]),  # type: ignore[arg-type]
            completed_at=to_utc(row["completed_at"]),
            claimed_at=to_utc(row["claimed_at"]),
            routing_key=row["routing_key"],
            metadata=row["metadata"],
            content=row["content"],
            error=row["error"],
        )
