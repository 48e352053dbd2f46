from __future__ import annotations

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Mapping, Optional

import pytest

from billsplit.db.models import Event, EventCategory, EventStatus, Expense, Ledger, Payment, SplitType
from billsplit.errors import ConflictError

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


class MemoryStore:
    """In-memory stand-in for BillRepository with the same per-event locking."""

    def __init__(self, lock_timeout: float = 0.05) -> None:
        self.lock_timeout = lock_timeout
        self.events: dict[int, Event] = {}
        self.participants: dict[int, set[int]] = {}
        self.expenses: dict[int, list[Expense]] = {}
        self.payments: dict[int, list[Payment]] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    def now(self) -> datetime:
        return BASE_TIME + timedelta(minutes=next(self._ticks))

    async def create_event(
        self,
        creator_id: int,
        name: str,
        category: EventCategory,
        description: Optional[str],
    ) -> Event:
        event = Event(
            id=next(self._ids),
            name=name,
            category=category,
            creator_id=creator_id,
            status=EventStatus.ACTIVE,
            created_at=self.now(),
            description=description,
        )
        self.events[event.id] = event
        self.participants[event.id] = {creator_id}
        self.expenses[event.id] = []
        self.payments[event.id] = []
        return replace(event)

    async def get_event(self, event_id: int) -> Event | None:
        event = self.events.get(event_id)
        return replace(event) if event else None

    async def get_participant_ids(self, event_id: int) -> list[int]:
        return sorted(self.participants.get(event_id, set()))

    async def get_ledger(self, event_id: int) -> Ledger:
        return Ledger.build(
            event_id,
            self.participants.get(event_id, set()),
            [*self.expenses.get(event_id, []), *self.payments.get(event_id, [])],
        )

    async def list_user_events(self, user_id: int) -> list[Event]:
        events = [replace(self.events[event_id]) for event_id, users in self.participants.items() if user_id in users]
        return sorted(events, key=lambda event: (event.created_at, event.id), reverse=True)

    @asynccontextmanager
    async def event_writer(self, event_id: int) -> AsyncIterator["MemoryWriter"]:
        lock = self._locks.setdefault(event_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), self.lock_timeout)
        except asyncio.TimeoutError as exc:
            raise ConflictError(f"event {event_id} is being modified, retry the request") from exc
        writer = MemoryWriter(self)
        try:
            yield writer
            for apply in writer.pending:
                apply()
        finally:
            lock.release()


class MemoryWriter:
    """Stages writes and applies them only when the writer block succeeds."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store
        self.pending: list[Callable[[], None]] = []

    async def get_event(self, event_id: int) -> Event | None:
        return await self.store.get_event(event_id)

    async def get_participant_ids(self, event_id: int) -> list[int]:
        return await self.store.get_participant_ids(event_id)

    async def get_ledger(self, event_id: int) -> Ledger:
        return await self.store.get_ledger(event_id)

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
        expense = Expense(
            id=next(self.store._ids),
            event_id=event_id,
            payer_id=payer_id,
            description=description,
            total_amount=total_amount,
            split_type=split_type,
            allocations=dict(allocations),
            created_at=self.store.now(),
            reversal_of=reversal_of,
        )
        self.pending.append(lambda: self.store.expenses[event_id].append(expense))
        return expense

    async def insert_payment(self, event_id: int, from_id: int, to_id: int, amount: int) -> Payment:
        payment = Payment(
            id=next(self.store._ids),
            event_id=event_id,
            from_id=from_id,
            to_id=to_id,
            amount=amount,
            created_at=self.store.now(),
        )
        self.pending.append(lambda: self.store.payments[event_id].append(payment))
        return payment

    async def add_participant(self, event_id: int, user_id: int) -> None:
        self.pending.append(lambda: self.store.participants[event_id].add(user_id))

    async def remove_participant(self, event_id: int, user_id: int) -> None:
        self.pending.append(lambda: self.store.participants[event_id].discard(user_id))

    async def set_event_status(self, event_id: int, status: EventStatus) -> None:
        def apply() -> None:
            self.store.events[event_id].status = status

        self.pending.append(apply)

    async def update_event(
        self,
        event_id: int,
        name: str,
        category: EventCategory,
        description: Optional[str],
    ) -> None:
        def apply() -> None:
            event = self.store.events[event_id]
            event.name = name
            event.category = category
            event.description = description

        self.pending.append(apply)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
