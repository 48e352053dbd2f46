import random

import pytest

from billsplit.errors import InvariantViolation
from billsplit.services.settlement import Transfer, apply_transfers, settle


def test_settle_balances():
    balances = {
        1: 500,
        2: -300,
        3: -200,
    }

    transfers = settle(balances)

    assert transfers == [
        Transfer(from_user=2, to_user=1, amount_cents=300),
        Transfer(from_user=3, to_user=1, amount_cents=200),
    ]

    total = sum(t.amount_cents for t in transfers)
    assert total == 500

    after = apply_transfers(balances, transfers)
    assert all(value == 0 for value in after.values())


def test_settle_equal_split_example():
    transfers = settle({1: 2000, 2: -1000, 3: -1000})
    assert transfers == [
        Transfer(from_user=2, to_user=1, amount_cents=1000),
        Transfer(from_user=3, to_user=1, amount_cents=1000),
    ]


def test_settle_ties_by_ascending_id():
    transfers = settle({2: 100, 1: 100, 4: -100, 3: -100})
    assert transfers == [
        Transfer(from_user=3, to_user=1, amount_cents=100),
        Transfer(from_user=4, to_user=2, amount_cents=100),
    ]


def test_settle_reselects_largest_after_partial():
    transfers = settle({1: 700, 2: 400, 3: -600, 4: -500})
    assert transfers == [
        Transfer(from_user=3, to_user=1, amount_cents=600),
        Transfer(from_user=4, to_user=2, amount_cents=400),
        Transfer(from_user=4, to_user=1, amount_cents=100),
    ]


def test_settle_nothing_to_do():
    assert settle({}) == []
    assert settle({1: 0, 2: 0}) == []


def test_settle_unbalanced_input_raises():
    with pytest.raises(InvariantViolation) as exc_info:
        settle({1: 100, 2: -50}, event_id=9)
    assert exc_info.value.event_id == 9
    assert exc_info.value.residue == 50


def test_settle_random_balances_clear():
    rng = random.Random(99)
    for _ in range(300):
        users = rng.sample(range(1, 1000), rng.randint(2, 15))
        balances = {user: rng.randint(-50_000, 50_000) for user in users[:-1]}
        balances[users[-1]] = -sum(balances.values())

        transfers = settle(balances)

        after = apply_transfers(balances, transfers)
        assert all(value == 0 for value in after.values())
        non_zero = sum(1 for value in balances.values() if value != 0)
        assert len(transfers) <= max(non_zero - 1, 0)
        assert all(t.amount_cents > 0 for t in transfers)
        assert settle(balances) == transfers
