from __future__ import annotations

from typing import Optional, Protocol

from billsplit.db.models import Event, EventCategory, EventStatus, Expense, Ledger, Payment
from billsplit.errors import NotFoundError, ValidationError
from billsplit.logging import get_logger
from billsplit.services.aggregate import UserBalanceSummary, total_balance
from billsplit.services.balances import balance_of, compute_balances
from billsplit.services.ledger import (
    ExpenseLedger,
    LedgerStore,
    require_active_event,
    require_event,
)
from billsplit.services.settlement import Transfer, settle
from billsplit.services.validation import (
    EventDraft,
    EventUpdate,
    ExpenseDraft,
    PaymentDraft,
    Rejected,
    check_event,
)
from billsplit.utils.parse import format_amount


class EventStore(LedgerStore, Protocol):
    async def create_event(
        self,
        creator_id: int,
        name: str,
        category: EventCategory,
        description: Optional[str],
    ) -> Event: ...


class BillService:
    """Operations a frontend calls, keyed by already-resolved user ids.

    Balances and settlement plans are rebuilt from the ledger on every call
    and never cached.
    """

    def __init__(self, store: EventStore, max_amount_cents: Optional[int] = None) -> None:
        self._store = store
        self._ledger = ExpenseLedger(store, max_amount_cents)
        self._log = get_logger(__name__)

    # events

    async def create_event(self, creator_id: int, draft: EventDraft) -> Event:
        result = check_event(draft)
        if isinstance(result, Rejected):
            raise ValidationError(result.reason)
        clean = result.value
        event = await self._store.create_event(
            creator_id=creator_id,
            name=clean.name,
            category=EventCategory(clean.category),
            description=clean.description,
        )
        self._log.info("event.created", event_id=event.id, creator_id=creator_id)
        return event

    async def get_event(self, event_id: int) -> Event:
        return await require_event(self._store, event_id)

    async def update_event(self, event_id: int, update: EventUpdate) -> Event:
        async with self._store.event_writer(event_id) as writer:
            event = await require_active_event(writer, event_id)
            result = check_event(update.merged_with(event.name, event.category, event.description))
            if isinstance(result, Rejected):
                raise ValidationError(result.reason)
            clean = result.value
            event.name = clean.name
            event.category = EventCategory(clean.category)
            event.description = clean.description
            await writer.update_event(event_id, event.name, event.category, event.description)
        self._log.info("event.updated", event_id=event_id)
        return event

    async def list_user_events(self, user_id: int) -> list[Event]:
        return await self._store.list_user_events(user_id)

    async def list_participants(self, event_id: int) -> list[int]:
        await require_event(self._store, event_id)
        return await self._store.get_participant_ids(event_id)

    async def add_participant(self, event_id: int, user_id: int) -> None:
        async with self._store.event_writer(event_id) as writer:
            await require_active_event(writer, event_id)
            await writer.add_participant(event_id, user_id)
        self._log.info("event.participant.added", event_id=event_id, user_id=user_id)

    async def remove_participant(self, event_id: int, user_id: int) -> None:
        async with self._store.event_writer(event_id) as writer:
            event = await require_active_event(writer, event_id)
            if user_id == event.creator_id:
                raise ValidationError("the event creator cannot leave the event")
            if user_id not in await writer.get_participant_ids(event_id):
                raise ValidationError(f"user {user_id} is not a participant of event {event_id}")
            ledger = await writer.get_ledger(event_id)
            balance = balance_of(compute_balances(ledger), user_id)
            if balance != 0:
                raise ValidationError(
                    f"user {user_id} still has a balance of {format_amount(balance)} and cannot leave"
                )
            # a later reversal of these would move money onto a non-participant
            named_in = [
                expense.id
                for expense in ledger.active_expenses
                if expense.payer_id == user_id or user_id in expense.allocations
            ]
            if named_in:
                listed = ", ".join(str(expense_id) for expense_id in named_in)
                raise ValidationError(
                    f"user {user_id} is named in expenses that are not reversed ({listed}) and cannot leave"
                )
            await writer.remove_participant(event_id, user_id)
        self._log.info("event.participant.removed", event_id=event_id, user_id=user_id)

    async def complete_event(self, event_id: int) -> Event:
        async with self._store.event_writer(event_id) as writer:
            event = await require_event(writer, event_id)
            if not event.is_completed:
                balances = compute_balances(await writer.get_ledger(event_id))
                open_balances = {user_id: value for user_id, value in balances.items() if value != 0}
                if open_balances:
                    listed = ", ".join(
                        f"{user_id}: {format_amount(value)}" for user_id, value in sorted(open_balances.items())
                    )
                    raise ValidationError(f"event {event_id} still has open balances ({listed})")
                await writer.set_event_status(event_id, EventStatus.COMPLETED)
                event.status = EventStatus.COMPLETED
        self._log.info("event.completed", event_id=event_id)
        return event

    # ledger

    async def create_expense(self, event_id: int, draft: ExpenseDraft) -> Expense:
        return await self._ledger.record_expense(event_id, draft)

    async def record_payment(self, event_id: int, draft: PaymentDraft) -> Payment:
        return await self._ledger.record_payment(event_id, draft)

    async def reverse_expense(self, event_id: int, expense_id: int) -> Expense:
        return await self._ledger.reverse_expense(event_id, expense_id)

    async def get_ledger(self, event_id: int) -> Ledger:
        return await self._ledger.load(event_id)

    async def get_expense(self, event_id: int, expense_id: int) -> Expense:
        ledger = await self._ledger.load(event_id)
        expense = ledger.find_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"expense {expense_id} not found in event {event_id}")
        return expense

    async def list_expenses(self, event_id: int) -> list[Expense]:
        ledger = await self._ledger.load(event_id)
        return list(reversed(ledger.expenses))

    # derived state

    async def get_balances(self, event_id: int) -> dict[int, int]:
        ledger = await self._ledger.load(event_id)
        return compute_balances(ledger)

    async def get_settlement_plan(self, event_id: int) -> list[Transfer]:
        ledger = await self._ledger.load(event_id)
        return settle(compute_balances(ledger), event_id=event_id)

    async def get_user_total_balance(self, user_id: int) -> UserBalanceSummary:
        events = await self._store.list_user_events(user_id)
        pairs = [(event, await self._store.get_ledger(event.id)) for event in events]
        return total_balance(user_id, pairs)
