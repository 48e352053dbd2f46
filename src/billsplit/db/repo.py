from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Protocol

import asyncpg

from billsplit.db.models import (
    Event,
    EventCategory,
    EventStatus,
    Expense,
    Ledger,
    Payment,
    SplitType,
)
from billsplit.errors import ConflictError
from billsplit.logging import get_logger, sql_logger

CONFLICT_ERRORS = (
    asyncpg.exceptions.LockNotAvailableError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)


class Executor(Protocol):
    async def fetch(self, query: str, *args: Any) -> list[Any]: ...

    async def fetchrow(self, query: str, *args: Any) -> Any: ...

    async def fetchval(self, query: str, *args: Any) -> Any: ...

    async def execute(self, query: str, *args: Any) -> str: ...

    async def executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None: ...


class LoggedConnection:
    """A connection checked out of the pool, usually inside a transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        sql_logger.info("sql.fetch", query=query, args=args)
        return await self._conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        sql_logger.info("sql.fetchrow", query=query, args=args)
        return await self._conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        sql_logger.info("sql.fetchval", query=query, args=args)
        return await self._conn.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        sql_logger.info("sql.execute", query=query, args=args)
        return await self._conn.execute(query, *args)

    async def executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None:
        sql_logger.info("sql.executemany", query=command)
        await self._conn.executemany(command, args)


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
    async def transaction(
        self,
        isolation: Optional[str] = None,
        readonly: bool = False,
    ) -> AsyncIterator[LoggedConnection]:
        await self._ensure_pool()
        assert self._pool
        async with self._pool.acquire() as conn:
            async with conn.transaction(isolation=isolation, readonly=readonly):
                yield LoggedConnection(conn)

    async def _ensure_pool(self) -> None:
        if self._pool is None:
            await self.connect()


def event_from_row(row: Mapping[str, Any]) -> Event:
    return Event(
        id=int(row["id"]),
        name=row["name"],
        category=EventCategory(row["category"]),
        creator_id=int(row["creator_id"]),
        status=EventStatus(row["status"]),
        created_at=row["created_at"],
        description=row["description"],
    )


def expense_from_row(row: Mapping[str, Any], allocations: Mapping[int, int]) -> Expense:
    return Expense(
        id=int(row["id"]),
        event_id=int(row["event_id"]),
        payer_id=int(row["payer_id"]),
        description=row["description"],
        total_amount=int(row["total_amount"]),
        split_type=SplitType(row["split_type"]),
        allocations=dict(allocations),
        created_at=row["created_at"],
        reversal_of=int(row["reversal_of"]) if row["reversal_of"] is not None else None,
    )


def payment_from_row(row: Mapping[str, Any]) -> Payment:
    return Payment(
        id=int(row["id"]),
        event_id=int(row["event_id"]),
        from_id=int(row["from_id"]),
        to_id=int(row["to_id"]),
        amount=int(row["amount"]),
        created_at=row["created_at"],
    )


class BillQueries:
    """Read queries, usable on the pool or on a locked connection."""

    def __init__(self, db: Executor) -> None:
        self.db = db

    async def get_event(self, event_id: int) -> Event | None:
        row = await self.db.fetchrow("SELECT * FROM events WHERE id = $1", event_id)
        return event_from_row(row) if row is not None else None

    async def get_participant_ids(self, event_id: int) -> list[int]:
        rows = await self.db.fetch(
            "SELECT user_id FROM event_participants WHERE event_id = $1 ORDER BY user_id",
            event_id,
        )
        return [int(row["user_id"]) for row in rows]

    async def list_user_events(self, user_id: int) -> list[Event]:
        rows = await self.db.fetch(
            """
            SELECT e.*
            FROM events e
            JOIN event_participants ep ON ep.event_id = e.id
            WHERE ep.user_id = $1
            ORDER BY e.created_at DESC, e.id DESC
            """,
            user_id,
        )
        return [event_from_row(row) for row in rows]

    async def get_ledger(self, event_id: int) -> Ledger:
        participant_ids = await self.get_participant_ids(event_id)
        expense_rows = await self.db.fetch(
            "SELECT * FROM expenses WHERE event_id = $1 ORDER BY created_at, id",
            event_id,
        )
        allocation_rows = await self.db.fetch(
            """
            SELECT ea.expense_id, ea.user_id, ea.amount_cents
            FROM expense_allocations ea
            JOIN expenses e ON e.id = ea.expense_id
            WHERE e.event_id = $1
            """,
            event_id,
        )
        payment_rows = await self.db.fetch(
            "SELECT * FROM payments WHERE event_id = $1 ORDER BY created_at, id",
            event_id,
        )

        allocations: dict[int, dict[int, int]] = {}
        for row in allocation_rows:
            allocations.setdefault(int(row["expense_id"]), {})[int(row["user_id"])] = int(row["amount_cents"])

        records: list[Expense | Payment] = [
            expense_from_row(row, allocations.get(int(row["id"]), {})) for row in expense_rows
        ]
        records.extend(payment_from_row(row) for row in payment_rows)
        return Ledger.build(event_id, participant_ids, records)


class EventWriter(BillQueries):
    """Writes for one event, issued while holding that event's lock."""

    async def insert_expense(
        self,
        event_id: int,
        payer_id: int,
        description: str,
        total_amount: int,
        split_type: SplitType,
        allocations: Mapping[int, int],
        reversal_of: Optional[int] = None,
    ) -> Expense:
        row = await self.db.fetchrow(
            """
            INSERT INTO expenses (event_id, payer_id, description, total_amount, split_type, reversal_of)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING *
            """,
            event_id,
            payer_id,
            description,
            total_amount,
            split_type.value,
            reversal_of,
        )
        assert row is not None
        await self.db.executemany(
            """
            INSERT INTO expense_allocations (expense_id, user_id, amount_cents)
            VALUES ($1, $2, $3)
            """,
            [(row["id"], user_id, amount) for user_id, amount in allocations.items()],
        )
        return expense_from_row(row, allocations)

    async def insert_payment(self, event_id: int, from_id: int, to_id: int, amount: int) -> Payment:
        row = await self.db.fetchrow(
            """
            INSERT INTO payments (event_id, from_id, to_id, amount)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            event_id,
            from_id,
            to_id,
            amount,
        )
        assert row is not None
        return payment_from_row(row)

    async def add_participant(self, event_id: int, user_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO event_participants (event_id, user_id)
            VALUES ($1, $2)
            ON CONFLICT (event_id, user_id) DO NOTHING
            """,
            event_id,
            user_id,
        )

    async def remove_participant(self, event_id: int, user_id: int) -> None:
        await self.db.execute(
            "DELETE FROM event_participants WHERE event_id = $1 AND user_id = $2",
            event_id,
            user_id,
        )

    async def set_event_status(self, event_id: int, status: EventStatus) -> None:
        await self.db.execute("UPDATE events SET status = $1 WHERE id = $2", status.value, event_id)

    async def update_event(
        self,
        event_id: int,
        name: str,
        category: EventCategory,
        description: Optional[str],
    ) -> None:
        await self.db.execute(
            "UPDATE events SET name = $1, category = $2, description = $3 WHERE id = $4",
            name,
            category.value,
            description,
            event_id,
        )


class BillRepository(BillQueries):
    def __init__(self, db: Database, lock_timeout_ms: int = 2000) -> None:
        super().__init__(db)
        self.database = db
        self.lock_timeout_ms = lock_timeout_ms
        self._log = get_logger(__name__)

    async def create_event(
        self,
        creator_id: int,
        name: str,
        category: EventCategory,
        description: Optional[str],
    ) -> Event:
        async with self.database.transaction() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO events (creator_id, name, category, description)
                VALUES ($1, $2, $3, $4)
                RETURNING *
                """,
                creator_id,
                name,
                category.value,
                description,
            )
            assert row is not None
            await conn.execute(
                "INSERT INTO event_participants (event_id, user_id) VALUES ($1, $2)",
                row["id"],
                creator_id,
            )
        return event_from_row(row)

    async def get_ledger(self, event_id: int) -> Ledger:
        # one snapshot for participants, expenses, allocations and payments
        async with self.database.transaction(isolation="repeatable_read", readonly=True) as conn:
            return await BillQueries(conn).get_ledger(event_id)

    @asynccontextmanager
    async def event_writer(self, event_id: int) -> AsyncIterator[EventWriter]:
        try:
            async with self.database.transaction() as conn:
                await conn.execute("SELECT set_config('lock_timeout', $1, true)", f"{self.lock_timeout_ms}ms")
                await conn.execute("SELECT pg_advisory_xact_lock($1)", event_id)
                yield EventWriter(conn)
        except CONFLICT_ERRORS as exc:
            self._log.warning("db.event_lock.conflict", event_id=event_id, error=type(exc).__name__)
            raise ConflictError(f"event {event_id} is being modified, retry the request") from exc
