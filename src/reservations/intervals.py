"""Half-open interval arithmetic shared by every overlap check.

All intervals are ``[start, end)``: the start instant is occupied, the end
instant is not, so a booking ending at 10:00 and another starting at 10:00
do not conflict.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Protocol, TypeVar


class Interval(Protocol):
    start_time: datetime
    end_time: datetime


T = TypeVar("T", bound=Interval)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def find_overlapping(candidates: Iterable[T], start: datetime, end: datetime) -> list[T]:
    """Return the candidates that overlap ``[start, end)``.

    Linear scan; callers only depend on the returned list, so an indexed
    structure can replace it without touching them.
    """
    return [c for c in candidates if overlaps(c.start_time, c.end_time, start, end)]


def parse_instant(value: str | datetime) -> datetime:
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def to_iso(dt: datetime) -> str:
    return parse_instant(dt).astimezone(UTC).isoformat()
