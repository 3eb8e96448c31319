"""Reduce a day-by-day availability feed to bookable stretches of nights."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, timedelta
from typing import Any

from aws_lambda_powertools import Logger
from pydantic import ValidationError

from .models import AvailabilityGap, DayAvailability

logger = Logger()


def _clean_days(days: Iterable[DayAvailability | Mapping[str, Any]]) -> list[DayAvailability]:
    parsed: dict[date, DayAvailability] = {}
    skipped = 0
    for raw in days:
        try:
            day = raw if isinstance(raw, DayAvailability) else DayAvailability.model_validate(raw)
        except ValidationError:
            skipped += 1
            continue
        # first entry for a date wins
        parsed.setdefault(day.date, day)
    if skipped:
        logger.warning("Skipped malformed availability entries", extra={"skipped": skipped})
    return [parsed[d] for d in sorted(parsed)]


def find_gaps(
    days: Iterable[DayAvailability | Mapping[str, Any]], min_nights: int = 1
) -> list[AvailabilityGap]:
    """Runs of consecutive days with at least one room free.

    A run ends at a sold-out day or at a missing date. Each gap reports the
    smallest ``rooms_available`` seen across it, which is how many rooms can
    be held for the whole stay. Runs shorter than ``min_nights`` are dropped.
    """
    min_nights = max(1, min_nights)
    gaps: list[AvailabilityGap] = []
    current: AvailabilityGap | None = None

    def close() -> None:
        if current is not None and current.nights >= min_nights:
            gaps.append(current)

    for day in _clean_days(days):
        if day.rooms_available <= 0:
            close()
            current = None
            continue
        if current is not None and day.date == current.end_date + timedelta(days=1):
            current = current.model_copy(
                update={
                    "end_date": day.date,
                    "nights": current.nights + 1,
                    "min_rooms_available": min(current.min_rooms_available, day.rooms_available),
                }
            )
            continue
        close()
        current = AvailabilityGap(
            start_date=day.date,
            end_date=day.date,
            nights=1,
            min_rooms_available=day.rooms_available,
        )
    close()
    return gaps
