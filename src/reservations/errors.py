from __future__ import annotations

from enum import StrEnum


class ConflictReason(StrEnum):
    BLOCKED = "blocked"
    TAKEN = "taken"
    RACE_LOST = "race_lost"


class ReservationError(Exception):
    """Base class for every error the booking core reports to callers."""

    code = "RESERVATION_ERROR"
    status_code = 400
    default_message = "Reservation error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInterval(ReservationError):
    code = "INVALID_INTERVAL"
    default_message = "End time must be after start time"


class PastBooking(ReservationError):
    code = "PAST_BOOKING"
    default_message = "Cannot book in the past"


class ResourceNotFound(ReservationError):
    code = "RESOURCE_NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"

    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__()


class ResourceUnavailable(ReservationError):
    code = "RESOURCE_UNAVAILABLE"
    default_message = "Resource is not available for booking"

    def __init__(self, resource_id: str, status: str) -> None:
        self.resource_id = resource_id
        self.status = status
        super().__init__()


_CONFLICT_MESSAGES = {
    ConflictReason.BLOCKED: "This time slot is blocked",
    ConflictReason.TAKEN: "This time slot is already booked",
    ConflictReason.RACE_LOST: "This time slot was just booked by another user",
}


class SlotConflict(ReservationError):
    code = "SLOT_CONFLICT"
    status_code = 409

    def __init__(self, reason: ConflictReason) -> None:
        self.reason = reason
        super().__init__(_CONFLICT_MESSAGES[reason])


class ConflictWithBooking(ReservationError):
    code = "CONFLICT_WITH_BOOKING"
    status_code = 409
    default_message = "Cannot block time slot with existing bookings"


class ConflictWithBlock(ReservationError):
    code = "CONFLICT_WITH_BLOCK"
    status_code = 409
    default_message = "Block overlaps with existing block"


class AlreadyCancelled(ReservationError):
    code = "ALREADY_CANCELLED"
    default_message = "Booking is already cancelled"


class InvalidTransition(ReservationError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move booking from {current} to {target}")


class NotAuthorized(ReservationError):
    code = "NOT_AUTHORIZED"
    status_code = 403
    default_message = "Not authorized to perform this action"


class NotFound(ReservationError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class ResourceInUse(ReservationError):
    code = "RESOURCE_IN_USE"
    default_message = "Cannot delete resource with active bookings"


class FeedUnavailable(ReservationError):
    code = "FEED_UNAVAILABLE"
    status_code = 502
    default_message = "Hotel availability check failed"
