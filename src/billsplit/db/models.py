from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Union


class EventStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class EventCategory(str, Enum):
    RESTAURANT = "restaurant"
    TRAVEL = "travel"
    SHARED_HOUSE = "shared_house"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    UTILITIES = "utilities"
    OTHER = "other"


class SplitType(str, Enum):
    EQUAL = "equal"
    PERCENTAGE = "percentage"
    CUSTOM = "custom"


@dataclass(slots=True)
class Event:
    id: int
    name: str
    category: EventCategory
    creator_id: int
    status: EventStatus
    created_at: datetime
    description: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == EventStatus.COMPLETED


@dataclass(slots=True)
class Participant:
    event_id: int
    user_id: int


@dataclass(slots=True, frozen=True)
class Expense:
    id: int
    event_id: int
    payer_id: int
    description: str
    total_amount: int
    split_type: SplitType
    allocations: dict[int, int]
    created_at: datetime
    reversal_of: Optional[int] = None

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of is not None


@dataclass(slots=True, frozen=True)
class Payment:
    id: int
    event_id: int
    from_id: int
    to_id: int
    amount: int
    created_at: datetime


LedgerRecord = Union[Expense, Payment]


def record_sort_key(record: LedgerRecord) -> tuple[datetime, int, int]:
    # expenses and payments have separate id sequences
    kind = 0 if isinstance(record, Expense) else 1
    return (record.created_at, kind, record.id)


@dataclass(slots=True, frozen=True)
class Ledger:
    event_id: int
    participant_ids: tuple[int, ...]
    records: tuple[LedgerRecord, ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls,
        event_id: int,
        participant_ids: Iterable[int],
        records: Iterable[LedgerRecord],
    ) -> "Ledger":
        return cls(
            event_id=event_id,
            participant_ids=tuple(sorted(set(participant_ids))),
            records=tuple(sorted(records, key=record_sort_key)),
        )

    def __len__(self) -> int:
        return len(self.records)

    @property
    def expenses(self) -> list[Expense]:
        return [record for record in self.records if isinstance(record, Expense)]

    @property
    def payments(self) -> list[Payment]:
        return [record for record in self.records if isinstance(record, Payment)]

    @property
    def active_expenses(self) -> list[Expense]:
        """Expenses that are neither reversals nor reversed."""
        reversed_ids = {expense.reversal_of for expense in self.expenses if expense.is_reversal}
        return [
            expense
            for expense in self.expenses
            if not expense.is_reversal and expense.id not in reversed_ids
        ]

    def find_expense(self, expense_id: int) -> Optional[Expense]:
        for expense in self.expenses:
            if expense.id == expense_id:
                return expense
        return None
