import random
from datetime import datetime, timedelta, timezone

import pytest

from billsplit.db.models import Expense, Ledger, Payment, SplitType
from billsplit.errors import InvariantViolation
from billsplit.services.balances import compute_balances, is_settled, record_deltas
from billsplit.services.split import split_equally

A, B, C = 1, 2, 3
T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def expense(id_, payer, total, allocations, minutes=0, reversal_of=None) -> Expense:
    return Expense(
        id=id_,
        event_id=1,
        payer_id=payer,
        description=f"expense {id_}",
        total_amount=total,
        split_type=SplitType.CUSTOM,
        allocations=allocations,
        created_at=T0 + timedelta(minutes=minutes),
        reversal_of=reversal_of,
    )


def payment(id_, from_id, to_id, amount, minutes=0) -> Payment:
    return Payment(
        id=id_,
        event_id=1,
        from_id=from_id,
        to_id=to_id,
        amount=amount,
        created_at=T0 + timedelta(minutes=minutes),
    )


def test_equal_split_rounding_example():
    ledger = Ledger.build(1, [A, B, C], [expense(1, A, 1000, split_equally(1000, [A, B, C]))])
    assert compute_balances(ledger) == {A: 666, B: -333, C: -333}


def test_three_way_dinner():
    ledger = Ledger.build(1, [A, B, C], [expense(1, A, 3000, split_equally(3000, [A, B, C]))])
    assert compute_balances(ledger) == {A: 2000, B: -1000, C: -1000}


def test_payments_move_balances_toward_zero():
    ledger = Ledger.build(
        1,
        [A, B, C],
        [
            expense(1, A, 3000, {A: 1000, B: 1000, C: 1000}),
            payment(1, B, A, 1000, minutes=1),
            payment(2, C, A, 400, minutes=2),
        ],
    )
    assert compute_balances(ledger) == {A: 600, B: 0, C: -600}


def test_participants_without_records_start_at_zero():
    ledger = Ledger.build(1, [A, B, C], [expense(1, A, 500, {B: 500})])
    assert compute_balances(ledger) == {A: 500, B: -500, C: 0}


def test_record_parties_outside_participant_list_are_kept():
    ledger = Ledger.build(1, [A], [expense(1, A, 500, {B: 500})])
    assert compute_balances(ledger) == {A: 500, B: -500}


def test_reversal_cancels_expense():
    original = expense(1, A, 1000, {A: 334, B: 333, C: 333})
    reversal = expense(2, A, 1000, {A: 334, B: 333, C: 333}, minutes=5, reversal_of=1)
    ledger = Ledger.build(1, [A, B, C], [original, reversal])
    balances = compute_balances(ledger)
    assert balances == {A: 0, B: 0, C: 0}
    assert is_settled(balances)


def test_record_deltas_payment():
    assert record_deltas(payment(1, B, A, 250)) == {B: 250, A: -250}


def test_corrupted_expense_raises():
    broken = expense(7, A, 1000, {A: 500, B: 499})
    ledger = Ledger.build(1, [A, B], [broken])
    with pytest.raises(InvariantViolation) as exc_info:
        compute_balances(ledger)
    assert exc_info.value.event_id == 1
    assert exc_info.value.residue == 1


def test_balances_sum_to_zero_after_every_record():
    rng = random.Random(7)
    users = list(range(1, 9))
    records = []
    for i in range(1, 120):
        if rng.random() < 0.7:
            consumers = rng.sample(users, rng.randint(1, len(users)))
            total = rng.randint(1, 500_000)
            records.append(expense(i, rng.choice(users), total, split_equally(total, consumers), minutes=i))
        else:
            sender, receiver = rng.sample(users, 2)
            records.append(payment(i, sender, receiver, rng.randint(1, 100_000), minutes=i))

        ledger = Ledger.build(1, users, records)
        balances = compute_balances(ledger)
        assert sum(balances.values()) == 0
        # recomputation on an unchanged ledger is identical
        assert compute_balances(ledger) == balances
