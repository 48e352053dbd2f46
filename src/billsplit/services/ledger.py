from __future__ import annotations

from typing import AsyncContextManager, Mapping, Optional, Protocol

from billsplit.config import get_settings
from billsplit.db.models import Event, EventCategory, EventStatus, Expense, Ledger, Payment, SplitType
from billsplit.errors import NotFoundError, ValidationError
from billsplit.logging import get_logger
from billsplit.services.validation import (
    ExpenseDraft,
    PaymentDraft,
    Rejected,
    check_payment,
    resolve_split,
)


class LedgerReader(Protocol):
    async def get_event(self, event_id: int) -> Event | None: ...

    async def get_participant_ids(self, event_id: int) -> list[int]: ...

    async def get_ledger(self, event_id: int) -> Ledger: ...


class LedgerWriter(LedgerReader, Protocol):
    async def insert_expense(
        self,
        event_id: int,
        payer_id: int,
        description: str,
        total_amount: int,
        split_type: SplitType,
        allocations: Mapping[int, int],
        reversal_of: Optional[int] = None,
    ) -> Expense: ...

    async def insert_payment(self, event_id: int, from_id: int, to_id: int, amount: int) -> Payment: ...

    async def add_participant(self, event_id: int, user_id: int) -> None: ...

    async def remove_participant(self, event_id: int, user_id: int) -> None: ...

    async def set_event_status(self, event_id: int, status: EventStatus) -> None: ...

    async def update_event(
        self,
        event_id: int,
        name: str,
        category: EventCategory,
        description: Optional[str],
    ) -> None: ...


class LedgerStore(LedgerReader, Protocol):
    async def list_user_events(self, user_id: int) -> list[Event]: ...

    def event_writer(self, event_id: int) -> AsyncContextManager[LedgerWriter]: ...


async def require_event(reader: LedgerReader, event_id: int) -> Event:
    event = await reader.get_event(event_id)
    if event is None:
        raise NotFoundError(f"event {event_id} not found")
    return event


async def require_active_event(reader: LedgerReader, event_id: int) -> Event:
    event = await require_event(reader, event_id)
    if event.is_completed:
        raise ValidationError(f"event {event_id} is completed and accepts no new records")
    return event


class ExpenseLedger:
    """Append-only expense and payment records of one event at a time.

    Each write runs inside the store's per-event writer, so validation and
    insert see the same participants and no other write can interleave.
    """

    def __init__(self, store: LedgerStore, max_amount_cents: Optional[int] = None) -> None:
        self._store = store
        self._max_amount_cents = max_amount_cents or get_settings().max_amount_cents
        self._log = get_logger(__name__)

    async def load(self, event_id: int) -> Ledger:
        await require_event(self._store, event_id)
        return await self._store.get_ledger(event_id)

    async def record_expense(self, event_id: int, draft: ExpenseDraft) -> Expense:
        async with self._store.event_writer(event_id) as writer:
            await require_active_event(writer, event_id)
            participants = set(await writer.get_participant_ids(event_id))

            result = resolve_split(draft, participants, self._max_amount_cents)
            if isinstance(result, Rejected):
                self._log.info("ledger.expense.rejected", event_id=event_id, reason=result.reason)
                raise ValidationError(result.reason)

            resolved = result.value
            expense = await writer.insert_expense(
                event_id=event_id,
                payer_id=resolved.payer_id,
                description=resolved.description,
                total_amount=resolved.total_amount,
                split_type=resolved.split_type,
                allocations=resolved.allocations,
            )

        self._log.info(
            "ledger.expense.recorded",
            event_id=event_id,
            expense_id=expense.id,
            payer_id=expense.payer_id,
            total_amount=expense.total_amount,
            split_type=expense.split_type.value,
        )
        return expense

    async def record_payment(self, event_id: int, draft: PaymentDraft) -> Payment:
        async with self._store.event_writer(event_id) as writer:
            await require_active_event(writer, event_id)
            participants = set(await writer.get_participant_ids(event_id))

            result = check_payment(draft, participants, self._max_amount_cents)
            if isinstance(result, Rejected):
                self._log.info("ledger.payment.rejected", event_id=event_id, reason=result.reason)
                raise ValidationError(result.reason)

            payment = await writer.insert_payment(
                event_id=event_id,
                from_id=draft.from_id,
                to_id=draft.to_id,
                amount=draft.amount,
            )

        self._log.info(
            "ledger.payment.recorded",
            event_id=event_id,
            payment_id=payment.id,
            from_id=payment.from_id,
            to_id=payment.to_id,
            amount=payment.amount,
        )
        return payment

    async def reverse_expense(self, event_id: int, expense_id: int) -> Expense:
        """Append an offsetting record that cancels ``expense_id``."""
        async with self._store.event_writer(event_id) as writer:
            await require_active_event(writer, event_id)
            ledger = await writer.get_ledger(event_id)

            original = ledger.find_expense(expense_id)
            if original is None:
                raise NotFoundError(f"expense {expense_id} not found in event {event_id}")
            if original.is_reversal:
                raise ValidationError(f"expense {expense_id} is itself a reversal and cannot be reversed")
            if any(expense.reversal_of == expense_id for expense in ledger.expenses):
                raise ValidationError(f"expense {expense_id} has already been reversed")

            reversal = await writer.insert_expense(
                event_id=event_id,
                payer_id=original.payer_id,
                description=f"Reversal of: {original.description}"[:255],
                total_amount=original.total_amount,
                split_type=original.split_type,
                allocations=original.allocations,
                reversal_of=original.id,
            )

        self._log.info(
            "ledger.expense.reversed",
            event_id=event_id,
            expense_id=expense_id,
            reversal_id=reversal.id,
        )
        return reversal
