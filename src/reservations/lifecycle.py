from __future__ import annotations

from .errors import AlreadyCancelled, InvalidTransition
from .models import BookingStatus

# COMPLETED is only ever set outside this service; nothing here moves a booking into it.
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    if can_transition(current, target):
        return
    if current == BookingStatus.CANCELLED and target == BookingStatus.CANCELLED:
        raise AlreadyCancelled()
    raise InvalidTransition(current.value, target.value)
