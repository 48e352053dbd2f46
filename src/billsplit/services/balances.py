from __future__ import annotations

from typing import Mapping

from billsplit.db.models import Expense, Ledger, LedgerRecord, Payment
from billsplit.errors import InvariantViolation
from billsplit.logging import get_logger

log = get_logger(__name__)


def record_deltas(record: LedgerRecord) -> dict[int, int]:
    """Balance change caused by one ledger record."""
    deltas: dict[int, int] = {}
    if isinstance(record, Expense):
        sign = -1 if record.is_reversal else 1
        deltas[record.payer_id] = sign * record.total_amount
        for user_id, share in record.allocations.items():
            deltas[user_id] = deltas.get(user_id, 0) - sign * share
    elif isinstance(record, Payment):
        # the sender is owed back what they handed over
        deltas[record.from_id] = record.amount
        deltas[record.to_id] = deltas.get(record.to_id, 0) - record.amount
    else:
        raise TypeError(f"unsupported ledger record {type(record).__name__}")
    return deltas


def compute_balances(ledger: Ledger) -> dict[int, int]:
    balances: dict[int, int] = {user_id: 0 for user_id in ledger.participant_ids}

    for record in ledger.records:
        deltas = record_deltas(record)
        residue = sum(deltas.values())
        if residue != 0:
            _violation(
                ledger.event_id,
                residue,
                f"{type(record).__name__.lower()} {record.id} does not net to zero",
            )
        for user_id, delta in deltas.items():
            balances[user_id] = balances.get(user_id, 0) + delta

    total = sum(balances.values())
    if total != 0:
        _violation(ledger.event_id, total, "event balances do not sum to zero")
    return balances


def balance_of(balances: Mapping[int, int], user_id: int) -> int:
    return balances.get(user_id, 0)


def is_settled(balances: Mapping[int, int]) -> bool:
    return all(balance == 0 for balance in balances.values())


def _violation(event_id: int, residue: int, message: str) -> None:
    log.error("ledger.invariant_violation", event_id=event_id, residue=residue, reason=message)
    raise InvariantViolation(message, event_id=event_id, residue=residue)
