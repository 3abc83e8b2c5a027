from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Annotated

from pydantic import BeforeValidator, Field, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_decimal(v):
    # Rates and percents arrive as str/int/float/Decimal; go through str() so 0.21 stays 0.21.
    if v is None:
        return v
    if isinstance(v, bool):
        raise ValueError("expected a number")
    if isinstance(v, Decimal):
        d = v
    else:
        try:
            d = Decimal(str(v).strip())
        except InvalidOperation:
            raise ValueError(f"invalid number: {v!r}")
    if not d.is_finite():
        raise ValueError(f"invalid number: {v!r}")
    return d


Cents = Annotated[int, Field(ge=0)]
Quantity = Annotated[int, Field(ge=1)]
TaxRate = Annotated[Decimal, BeforeValidator(_to_decimal), Field(ge=0, le=1)]
Percent = Annotated[Decimal, BeforeValidator(_to_decimal), Field(ge=0, le=100)]


# Payment methods are configured on the backend; keep a tight, safe character set.
PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]


def parse_percent(value) -> Decimal:
    """Parse a 0..100 percentage; raises ValueError for anything else."""
    d = _to_decimal(value)
    if d is None:
        raise ValueError("percent is required")
    if d < 0 or d > 100:
        raise ValueError(f"percent must be between 0 and 100, got {d}")
    return d
