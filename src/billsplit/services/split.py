from __future__ import annotations

from fractions import Fraction
from typing import Iterable, Mapping, Sequence


def split_equally(amount_cents: int, consumers: Iterable[int]) -> dict[int, int]:
    ordered = sorted(consumers)
    if amount_cents < 0:
        raise ValueError("amount_cents must be non-negative")
    if not ordered:
        raise ValueError("consumers must not be empty")

    base_share, remainder = divmod(amount_cents, len(ordered))
    # the first `remainder` consumers by id pay one extra cent
    return {
        consumer: base_share + (1 if index < remainder else 0)
        for index, consumer in enumerate(ordered)
    }


def split_by_percentage(amount_cents: int, percentages: Mapping[int, Fraction]) -> dict[int, int]:
    """Floor every exact share, then hand out the leftover cents.

    Leftover cents go one at a time to the largest fractional parts, ties by
    ascending consumer id. ``percentages`` must already sum to exactly 100.
    """
    if amount_cents < 0:
        raise ValueError("amount_cents must be non-negative")
    if sum(percentages.values(), Fraction(0)) != 100:
        raise ValueError("percentages must sum to 100")

    floors: dict[int, int] = {}
    fractions: dict[int, Fraction] = {}
    for consumer, pct in percentages.items():
        exact = Fraction(amount_cents) * pct / 100
        floor = exact.numerator // exact.denominator
        floors[consumer] = floor
        fractions[consumer] = exact - floor

    remainder = amount_cents - sum(floors.values())
    assert 0 <= remainder < max(len(floors), 1)

    by_fraction = sorted(floors, key=lambda consumer: (-fractions[consumer], consumer))
    for consumer in by_fraction[:remainder]:
        floors[consumer] += 1

    return {consumer: floors[consumer] for consumer in sorted(floors)}


def split_custom(amount_cents: int, amounts: Mapping[int, int]) -> dict[int, int]:
    total = sum(amounts.values())
    if total != amount_cents:
        raise ValueError(f"custom amounts sum to {total}, expected {amount_cents}")
    return {consumer: amounts[consumer] for consumer in sorted(amounts)}


def find_duplicates(ids: Sequence[int]) -> list[int]:
    seen: set[int] = set()
    duplicates: list[int] = []
    for user_id in ids:
        if user_id in seen and user_id not in duplicates:
            duplicates.append(user_id)
        seen.add(user_id)
    return duplicates
