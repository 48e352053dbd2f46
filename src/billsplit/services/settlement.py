from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional

from billsplit.errors import InvariantViolation
from billsplit.logging import get_logger

log = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class Transfer:
    from_user: int
    to_user: int
    amount_cents: int


def settle(balances: Mapping[int, int], event_id: Optional[int] = None) -> List[Transfer]:
    """Greedy largest-pair netting.

    Each step matches the largest creditor with the largest debtor, ties by
    ascending user id, and moves ``min`` of the two. Every step clears at
    least one side, so a plan never has more than N - 1 transfers for N
    non-zero balances. This is not the global minimum, which is NP-hard.
    """
    # heap entries are (-amount, user_id): largest amount first, then lowest id
    creditors: list[tuple[int, int]] = []
    debtors: list[tuple[int, int]] = []

    for user_id, balance in balances.items():
        if balance > 0:
            creditors.append((-balance, user_id))
        elif balance < 0:
            debtors.append((balance, user_id))

    heapq.heapify(creditors)
    heapq.heapify(debtors)

    transfers: list[Transfer] = []

    while creditors and debtors:
        neg_credit, cred_id = heapq.heappop(creditors)
        neg_debt, debt_id = heapq.heappop(debtors)
        cred_amount, debt_amount = -neg_credit, -neg_debt

        transfer_amount = min(cred_amount, debt_amount)
        transfers.append(Transfer(from_user=debt_id, to_user=cred_id, amount_cents=transfer_amount))

        cred_amount -= transfer_amount
        debt_amount -= transfer_amount

        if cred_amount:
            heapq.heappush(creditors, (-cred_amount, cred_id))
        if debt_amount:
            heapq.heappush(debtors, (-debt_amount, debt_id))

    if creditors or debtors:
        residue = sum(-amount for amount, _ in creditors) - sum(-amount for amount, _ in debtors)
        log.error(
            "settlement.invariant_violation",
            event_id=event_id,
            residue=residue,
            creditors=[user_id for _, user_id in creditors],
            debtors=[user_id for _, user_id in debtors],
        )
        raise InvariantViolation(
            "settlement plan leaves a non-zero balance",
            event_id=event_id,
            residue=residue,
        )

    log.debug("settlement.planned", event_id=event_id, transfers=len(transfers))
    return transfers


def apply_transfers(balances: Mapping[int, int], transfers: Iterable[Transfer]) -> dict[int, int]:
    after = dict(balances)
    for transfer in transfers:
        after[transfer.from_user] = after.get(transfer.from_user, 0) + transfer.amount_cents
        after[transfer.to_user] = after.get(transfer.to_user, 0) - transfer.amount_cents
    return after
