from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from billsplit.db.models import Event, Ledger
from billsplit.services.balances import balance_of, compute_balances


@dataclass(slots=True, frozen=True)
class EventBalance:
    event_id: int
    event_name: str
    balance: int


@dataclass(slots=True, frozen=True)
class UserBalanceSummary:
    user_id: int
    total: int
    per_event: list[EventBalance] = field(default_factory=list)


def total_balance(user_id: int, events: Iterable[tuple[Event, Ledger]]) -> UserBalanceSummary:
    """Sum one user's balance over every event they take part in.

    Events are listed most recent first. A zero balance is kept in the list:
    it means settled, not absent.
    """
    ordered = sorted(events, key=lambda pair: (pair[0].created_at, pair[0].id), reverse=True)

    per_event: list[EventBalance] = []
    for event, ledger in ordered:
        balances = compute_balances(ledger)
        per_event.append(
            EventBalance(
                event_id=event.id,
                event_name=event.name,
                balance=balance_of(balances, user_id),
            )
        )

    return UserBalanceSummary(
        user_id=user_id,
        total=sum(entry.balance for entry in per_event),
        per_event=per_event,
    )
