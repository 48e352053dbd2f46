"""Typed write requests and the checks that accept or reject them.

Every check returns ``Accepted`` or ``Rejected`` instead of raising, so the
caller decides how a rejection surfaces. The ledger turns ``Rejected`` into
``ValidationError`` before anything is written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Collection, Generic, Mapping, Optional, Sequence, TypeVar, Union

from billsplit.db.models import EventCategory, SplitType
from billsplit.services.split import find_duplicates, split_by_percentage, split_custom, split_equally
from billsplit.utils.parse import PercentageInput, parse_percentage

T = TypeVar("T")

MAX_DESCRIPTION_LENGTH = 255
MAX_EVENT_NAME_LENGTH = 100


@dataclass(slots=True, frozen=True)
class Accepted(Generic[T]):
    value: T


@dataclass(slots=True, frozen=True)
class Rejected:
    reason: str


Result = Union[Accepted[T], Rejected]


@dataclass(slots=True)
class ExpenseDraft:
    payer_id: int
    total_amount: int
    description: str
    split_type: Union[SplitType, str] = SplitType.EQUAL
    # equal split: who consumed; empty means every participant
    consumers: Sequence[int] = ()
    # percentage split: id -> percent, custom split: id -> cents
    shares: Optional[Mapping[int, Union[PercentageInput, int]]] = None


@dataclass(slots=True)
class PaymentDraft:
    from_id: int
    to_id: int
    amount: int


@dataclass(slots=True)
class EventDraft:
    name: str
    category: Union[EventCategory, str] = EventCategory.OTHER
    description: Optional[str] = None


@dataclass(slots=True)
class EventUpdate:
    # None keeps the current value; an empty description clears it
    name: Optional[str] = None
    category: Optional[Union[EventCategory, str]] = None
    description: Optional[str] = None

    def merged_with(self, name: str, category: EventCategory, description: Optional[str]) -> EventDraft:
        return EventDraft(
            name=name if self.name is None else self.name,
            category=category if self.category is None else self.category,
            description=description if self.description is None else self.description,
        )


@dataclass(slots=True, frozen=True)
class ResolvedExpense:
    payer_id: int
    total_amount: int
    description: str
    split_type: SplitType
    allocations: dict[int, int] = field(default_factory=dict)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_amount(amount: object, max_amount_cents: int, label: str = "amount") -> Optional[Rejected]:
    if not _is_int(amount):
        return Rejected(f"{label} must be an integer number of cents")
    if amount <= 0:  # type: ignore[operator]
        return Rejected(f"{label} must be positive")
    if amount > max_amount_cents:  # type: ignore[operator]
        return Rejected(f"{label} must not exceed {max_amount_cents} cents")
    return None


def _check_members(ids: Collection[int], participants: Collection[int], role: str) -> Optional[Rejected]:
    unknown = sorted(user_id for user_id in ids if user_id not in participants)
    if unknown:
        listed = ", ".join(str(user_id) for user_id in unknown)
        return Rejected(f"{role} must be event participants; unknown: {listed}")
    return None


def resolve_split(
    draft: ExpenseDraft,
    participants: Collection[int],
    max_amount_cents: int,
) -> Result[ResolvedExpense]:
    rejected = check_amount(draft.total_amount, max_amount_cents, "total amount")
    if rejected:
        return rejected

    description = (draft.description or "").strip()
    if not description or len(description) > MAX_DESCRIPTION_LENGTH:
        return Rejected(f"description must be between 1 and {MAX_DESCRIPTION_LENGTH} characters")

    try:
        split_type = SplitType(draft.split_type)
    except ValueError:
        return Rejected(f"invalid split type {draft.split_type!r}")

    if draft.payer_id not in participants:
        return Rejected(f"payer {draft.payer_id} is not a participant of the event")

    if split_type == SplitType.EQUAL:
        outcome = _resolve_equal(draft, participants)
    elif split_type == SplitType.PERCENTAGE:
        outcome = _resolve_percentage(draft, participants)
    else:
        outcome = _resolve_custom(draft, participants)

    if isinstance(outcome, Rejected):
        return outcome

    allocations = outcome.value
    if sum(allocations.values()) != draft.total_amount:
        return Rejected("allocations must sum to the expense total")

    return Accepted(
        ResolvedExpense(
            payer_id=draft.payer_id,
            total_amount=draft.total_amount,
            description=description,
            split_type=split_type,
            allocations=allocations,
        )
    )


def _resolve_equal(draft: ExpenseDraft, participants: Collection[int]) -> Result[dict[int, int]]:
    consumers = list(draft.consumers) if draft.consumers else sorted(participants)
    if not consumers:
        return Rejected("an equal split needs at least one consumer")
    duplicates = find_duplicates(consumers)
    if duplicates:
        return Rejected(f"consumer listed more than once: {duplicates[0]}")
    rejected = _check_members(consumers, participants, "consumers")
    if rejected:
        return rejected
    return Accepted(split_equally(draft.total_amount, consumers))


def _resolve_percentage(draft: ExpenseDraft, participants: Collection[int]) -> Result[dict[int, int]]:
    if not draft.shares:
        return Rejected("a percentage split needs a percentage for each consumer")
    rejected = _check_members(list(draft.shares), participants, "consumers")
    if rejected:
        return rejected

    percentages: dict[int, Fraction] = {}
    for consumer, raw in draft.shares.items():
        try:
            pct = parse_percentage(raw)
        except ValueError as exc:
            return Rejected(str(exc))
        if pct < 0:
            return Rejected(f"percentage for {consumer} must not be negative")
        percentages[consumer] = Fraction(pct)

    total_pct = sum(percentages.values(), Fraction(0))
    if total_pct != 100:
        return Rejected(f"percentages must sum to exactly 100, got {float(total_pct):g}")
    return Accepted(split_by_percentage(draft.total_amount, percentages))


def _resolve_custom(draft: ExpenseDraft, participants: Collection[int]) -> Result[dict[int, int]]:
    if not draft.shares:
        return Rejected("a custom split needs an amount for each consumer")
    rejected = _check_members(list(draft.shares), participants, "consumers")
    if rejected:
        return rejected

    amounts: dict[int, int] = {}
    for consumer, raw in draft.shares.items():
        if not _is_int(raw):
            return Rejected(f"custom amount for {consumer} must be an integer number of cents")
        if raw < 0:  # type: ignore[operator]
            return Rejected(f"custom amount for {consumer} must not be negative")
        amounts[consumer] = int(raw)  # type: ignore[arg-type]

    try:
        return Accepted(split_custom(draft.total_amount, amounts))
    except ValueError as exc:
        return Rejected(str(exc))


def check_payment(
    draft: PaymentDraft,
    participants: Collection[int],
    max_amount_cents: int,
) -> Result[PaymentDraft]:
    rejected = check_amount(draft.amount, max_amount_cents)
    if rejected:
        return rejected
    if draft.from_id == draft.to_id:
        return Rejected("a payment needs two different participants")
    rejected = _check_members([draft.from_id, draft.to_id], participants, "payment parties")
    if rejected:
        return rejected
    return Accepted(draft)


def check_event(draft: EventDraft) -> Result[EventDraft]:
    name = (draft.name or "").strip()
    if not name or len(name) > MAX_EVENT_NAME_LENGTH:
        return Rejected(f"name must be between 1 and {MAX_EVENT_NAME_LENGTH} characters")
    try:
        category = EventCategory(draft.category)
    except ValueError:
        return Rejected(f"invalid event category {draft.category!r}")
    description = draft.description.strip() if draft.description else None
    return Accepted(EventDraft(name=name, category=category, description=description or None))
