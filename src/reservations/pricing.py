from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from .errors import InvalidInterval

CENTS = Decimal("0.01")
_MICROS_PER_HOUR = Decimal(3_600_000_000)


def price(start: datetime, end: datetime, hourly_rate: Decimal | str | int) -> Decimal:
    """Duration in hours times the hourly rate, rounded half-up to cents."""
    if end <= start:
        raise InvalidInterval()
    micros = (end - start) // timedelta(microseconds=1)
    hours = Decimal(micros) / _MICROS_PER_HOUR
    return (hours * Decimal(str(hourly_rate))).quantize(CENTS, rounding=ROUND_HALF_UP)
