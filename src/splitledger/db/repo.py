from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Sequence

import asyncpg

from splitledger.channel import Channel
from splitledger.db.models import ActivityType, Bill, BillActivity, bill_from_document, bill_to_document
from splitledger.db.store import WriteResult
from splitledger.errors import StorageError
from splitledger.logging import get_logger, sql_logger

BILL_CHANGES_CHANNEL = "bill_changes"

Listener = Callable[[asyncpg.Connection, int, str, str], None]


class Database:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None
        self._log = get_logger(__name__)

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg expects a plain postgresql:// scheme, without "+asyncpg"
            dsn = self._dsn.replace("+asyncpg", "")
            self._pool = await asyncpg.create_pool(dsn)
            self._log.info("db.pool.created")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetch", query=query, args=args)
        return await self._pool.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchrow", query=query, args=args)
        return await self._pool.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchval", query=query, args=args)
        return await self._pool.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.execute", query=query, args=args)
        return await self._pool.execute(query, *args)

    async def executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.executemany", query=command)
        await self._pool.executemany(command, args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        await self._ensure_pool()
        assert self._pool
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                sql_logger.info("sql.transaction.begin")
                yield conn

    async def listen(self, channel: str, callback: Listener) -> Callable[[], Awaitable[None]]:
        """Hold a pooled connection on LISTEN until the returned stopper runs."""
        await self._ensure_pool()
        assert self._pool
        conn = await self._pool.acquire()
        await conn.add_listener(channel, callback)
        self._log.info("db.listen.start", channel=channel)

        async def stop() -> None:
            try:
                await conn.remove_listener(channel, callback)
            finally:
                if self._pool is not None:
                    await self._pool.release(conn)
                self._log.info("db.listen.stop", channel=channel)

        return stop

    async def _ensure_pool(self) -> None:
        if self._pool is None:
            await self.connect()


def _decode_bill(row: asyncpg.Record | None) -> Optional[Bill]:
    if row is None:
        return None
    return bill_from_document(row["document"])


def _decode_activity(row: asyncpg.Record) -> BillActivity:
    return BillActivity(
        id=row["id"],
        bill_id=row["bill_id"],
        participant_id=row["participant_id"],
        actor_id=row["actor_id"],
        activity_type=ActivityType(row["activity_type"]),
        timestamp=row["created_at"],
        amount_snapshot=row["amount_snapshot"],
        bill_name=row["bill_name"],
        currency=row["currency"],
    )


class PostgresBillStore:
    def __init__(self, db: Database) -> None:
        self.db = db
        self._log = get_logger(__name__)
        self._deliveries: set[asyncio.Task[None]] = set()

    async def get_bill(self, bill_id: str) -> Optional[Bill]:
        row = await self.db.fetchrow("SELECT document FROM bills WHERE id = $1", bill_id)
        return _decode_bill(row)

    async def read_version(self, bill_id: str) -> int:
        version = await self.db.fetchval("SELECT version FROM bills WHERE id = $1", bill_id)
        return int(version) if version is not None else 0

    async def write_if_version(
        self,
        bill: Bill,
        expected_version: int,
        activities: Sequence[BillActivity] = (),
    ) -> WriteResult:
        document = bill_to_document(bill)
        try:
            async with self.db.transaction() as conn:
                if expected_version == 0:
                    status = await conn.execute(
                        """
                        INSERT INTO bills (id, version, is_deleted, participant_ids, created_at, document)
                        VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                        ON CONFLICT (id) DO NOTHING
                        """,
                        bill.id,
                        bill.version,
                        bill.is_deleted,
                        bill.participant_ids,
                        bill.created_at,
                        document,
                    )
                    if status == "INSERT 0 0":
                        row = await conn.fetchrow("SELECT document FROM bills WHERE id = $1", bill.id)
                        return WriteResult(committed=False, current=_decode_bill(row))
                    previous_participants: list[str] = []
                else:
                    row = await conn.fetchrow(
                        "SELECT version, participant_ids, document FROM bills WHERE id = $1 FOR UPDATE",
                        bill.id,
                    )
                    stored_version = row["version"] if row is not None else 0
                    if stored_version != expected_version:
                        self._log.info(
                            "store.write.conflict",
                            bill_id=bill.id,
                            expected_version=expected_version,
                            stored_version=stored_version,
                        )
                        return WriteResult(committed=False, current=_decode_bill(row))
                    previous_participants = list(row["participant_ids"])
                    await conn.execute(
                        """
                        UPDATE bills
                        SET version = $2,
                            is_deleted = $3,
                            participant_ids = $4,
                            document = $5::jsonb,
                            updated_at = now()
                        WHERE id = $1
                        """,
                        bill.id,
                        bill.version,
                        bill.is_deleted,
                        bill.participant_ids,
                        document,
                    )

                if activities:
                    await conn.executemany(
                        """
                        INSERT INTO bill_activities (
                            id, bill_id, participant_id, actor_id, activity_type,
                            created_at, amount_snapshot, bill_name, currency
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                        """,
                        [
                            (
                                activity.id,
                                activity.bill_id,
                                activity.participant_id,
                                activity.actor_id,
                                activity.activity_type.value,
                                activity.timestamp,
                                activity.amount_snapshot,
                                activity.bill_name,
                                activity.currency,
                            )
                            for activity in activities
                        ],
                    )

                payload = json.dumps(
                    {
                        "id": bill.id,
                        "version": bill.version,
                        "participant_ids": sorted(set(bill.participant_ids) | set(previous_participants)),
                    }
                )
                # Delivered to listeners only once the transaction commits.
                await conn.execute("SELECT pg_notify($1, $2)", BILL_CHANGES_CHANNEL, payload)
        except (asyncpg.PostgresError, OSError) as exc:
            self._log.error("store.write.failed", bill_id=bill.id, error=str(exc))
            raise StorageError(f"write of bill {bill.id} failed: {exc}") from exc

        self._log.info("store.write.committed", bill_id=bill.id, version=bill.version)
        return WriteResult(committed=True, current=bill)

    async def subscribe(self, participant_id: Optional[str] = None) -> Channel[Bill]:
        async def close(_: Channel[Bill]) -> None:
            await stop()

        channel: Channel[Bill] = Channel(on_close=close)

        def on_notify(connection: asyncpg.Connection, pid: int, channel_name: str, payload: str) -> None:
            message = json.loads(payload)
            if participant_id is not None and participant_id not in message["participant_ids"]:
                return
            task = asyncio.get_running_loop().create_task(self._deliver(channel, message["id"]))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

        try:
            stop = await self.db.listen(BILL_CHANGES_CHANNEL, on_notify)
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageError(f"cannot subscribe to {BILL_CHANGES_CHANNEL}: {exc}") from exc
        return channel

    async def list_bills(self, participant_id: str, include_deleted: bool = False) -> list[Bill]:
        rows = await self.db.fetch(
            """
            SELECT document
            FROM bills
            WHERE $1 = ANY(participant_ids)
              AND ($2 OR is_deleted = false)
            ORDER BY created_at
            """,
            participant_id,
            include_deleted,
        )
        return [bill_from_document(row["document"]) for row in rows]

    async def list_activities(
        self,
        bill_id: Optional[str] = None,
        participant_id: Optional[str] = None,
    ) -> list[BillActivity]:
        rows = await self.db.fetch(
            """
            SELECT *
            FROM bill_activities
            WHERE ($1::text IS NULL OR bill_id = $1)
              AND ($2::text IS NULL OR participant_id = $2)
            ORDER BY created_at, id
            """,
            bill_id,
            participant_id,
        )
        return [_decode_activity(row) for row in rows]

    async def _deliver(self, channel: Channel[Bill], bill_id: str) -> None:
        # Fetches may finish out of order; readers drop versions they already hold.
        try:
            bill = await self.get_bill(bill_id)
        except (asyncpg.PostgresError, OSError) as exc:
            self._log.error("store.deliver.failed", bill_id=bill_id, error=str(exc))
            return
        if bill is not None:
            channel.push(bill)
