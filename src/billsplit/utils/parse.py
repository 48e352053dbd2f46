from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union


PercentageInput = Union[int, float, str, Decimal]


def format_amount(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(cents), 100)
    return f"{sign}{whole}.{fraction:02d}"


def parse_percentage(value: PercentageInput) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("Percentage must be a number")
    if isinstance(value, Decimal):
        pct = value
    else:
        # str() keeps a float's shortest repr, so 33.3 stays 33.3
        try:
            pct = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Invalid percentage {value!r}") from exc
    if not pct.is_finite():
        raise ValueError(f"Invalid percentage {value!r}")
    return pct
