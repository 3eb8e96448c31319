from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from aws_lambda_powertools import Logger, Tracer

from .dal import ConcurrentWriteError, DynamoStore
from .errors import (
    AlreadyCancelled,
    ConflictReason,
    InvalidInterval,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    PastBooking,
    ResourceNotFound,
    ResourceUnavailable,
    SlotConflict,
)
from .events import Action, Channel, DomainEvent, EventSink, emit
from .guard import BookingGuard
from .intervals import find_overlapping
from .lifecycle import ensure_transition
from .models import Booking, BookingCreate, BookingStatus, Resource, ResourceStatus
from .pricing import price

logger = Logger()
tracer = Tracer()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class BookingService:
    def __init__(
        self,
        store: DynamoStore,
        sinks: Sequence[EventSink] = (),
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_id,
        max_attempts: int = 3,
    ) -> None:
        self._store = store
        self._guard = BookingGuard(store)
        self._sinks = sinks
        self._clock = clock
        self._id_factory = id_factory
        self._max_attempts = max_attempts

    @property
    def guard(self) -> BookingGuard:
        return self._guard

    @tracer.capture_method
    def create_booking(self, payload: BookingCreate) -> Booking:
        start, end = payload.start_time, payload.end_time
        if start >= end:
            raise InvalidInterval()
        now = self._clock()
        if start < now:
            raise PastBooking()

        # Fast path; the authoritative check runs again in _commit.
        resource = self._guard.check_slot(payload.resource_id, start, end)
        booking = self._commit(payload, now)

        logger.info(
            "Booking created",
            extra={"booking_id": booking.booking_id, "resource_id": booking.resource_id},
        )
        emit(self._sinks, _booking_events(Action.BOOKING_CREATE, booking, resource, payload.user_id))
        return booking

    def _commit(self, payload: BookingCreate, now: datetime) -> Booking:
        start, end = payload.start_time, payload.end_time
        for attempt in range(1, self._max_attempts + 1):
            resource = self._store.get_resource(payload.resource_id)
            if resource is None:
                raise ResourceNotFound(payload.resource_id)
            if resource.status != ResourceStatus.AVAILABLE:
                raise ResourceUnavailable(resource.resource_id, resource.status.value)
            if find_overlapping(self._store.list_blocks(resource.resource_id), start, end):
                raise SlotConflict(ConflictReason.BLOCKED)
            if find_overlapping(self._store.list_bookings(resource.resource_id), start, end):
                raise SlotConflict(ConflictReason.RACE_LOST)

            booking = Booking(
                booking_id=self._id_factory(),
                resource_id=resource.resource_id,
                user_id=payload.user_id,
                start_time=start,
                end_time=end,
                total_price=price(start, end, resource.hourly_rate),
                status=BookingStatus.CONFIRMED,
                notes=payload.notes,
                created_at=now,
                updated_at=now,
            )
            try:
                self._store.insert_booking(booking, resource.version)
            except ConcurrentWriteError:
                logger.info(
                    "Concurrent write on resource, re-checking",
                    extra={"resource_id": resource.resource_id, "attempt": attempt},
                )
                continue
            return booking

        logger.warning(
            "Gave up booking after repeated concurrent writes",
            extra={"resource_id": payload.resource_id, "attempts": self._max_attempts},
        )
        raise SlotConflict(ConflictReason.RACE_LOST)

    @tracer.capture_method
    def cancel_booking(self, booking_id: str, actor_id: str, is_admin: bool = False) -> Booking:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise NotFound("Booking", booking_id)
        if not is_admin and booking.user_id != actor_id:
            raise NotAuthorized("Not authorized to cancel this booking")
        ensure_transition(booking.status, BookingStatus.CANCELLED)

        try:
            cancelled = self._store.set_booking_status(booking, BookingStatus.CANCELLED, self._clock())
        except ConcurrentWriteError as exc:
            current = self._store.get_booking(booking_id)
            if current is None or current.status == BookingStatus.CANCELLED:
                raise AlreadyCancelled() from exc
            raise InvalidTransition(current.status.value, BookingStatus.CANCELLED.value) from exc

        logger.info(
            "Booking cancelled",
            extra={"booking_id": booking_id, "cancelled_by": "admin" if is_admin else "user"},
        )
        resource = self._resource_for_events(booking.resource_id)
        emit(
            self._sinks,
            _booking_events(
                Action.BOOKING_CANCEL,
                cancelled,
                resource,
                actor_id,
                originalStatus=booking.status.value,
                cancelledBy="admin" if is_admin else "user",
            ),
        )
        return cancelled

    def _resource_for_events(self, resource_id: str) -> Resource | None:
        # Only decorates side-effect payloads; the write has already committed.
        try:
            return self._store.get_resource(resource_id)
        except Exception:
            logger.exception("Resource lookup for events failed", extra={"resource_id": resource_id})
            return None

    def get_booking(self, booking_id: str, actor_id: str | None = None, is_admin: bool = False) -> Booking:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise NotFound("Booking", booking_id)
        if not is_admin and actor_id is not None and booking.user_id != actor_id:
            raise NotAuthorized("Not authorized to view this booking")
        return booking

    def list_user_bookings(
        self, user_id: str, status: BookingStatus | None = None, upcoming: bool = False
    ) -> list[Booking]:
        bookings = self._store.list_bookings_for_user(user_id)
        if upcoming:
            now = self._clock()
            bookings = [
                b for b in bookings if b.start_time >= now and b.status != BookingStatus.CANCELLED
            ]
        elif status is not None:
            bookings = [b for b in bookings if b.status == status]
        return sorted(bookings, key=lambda b: b.start_time)

    def calendar_bookings(
        self, resource_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> list[Booking]:
        bookings = self._store.list_bookings(resource_id)
        if start is not None and end is not None:
            bookings = find_overlapping(bookings, start, end)
        return sorted(bookings, key=lambda b: b.start_time)

    def list_all_bookings(
        self,
        status: BookingStatus | None = None,
        resource_id: str | None = None,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Booking]:
        """Admin listing, newest first. ``start``/``end`` bound the booking's start time."""
        if resource_id:
            bookings = self._store.list_bookings(resource_id, include_cancelled=True)
        elif user_id:
            bookings = self._store.list_bookings_for_user(user_id)
        else:
            bookings = self._store.scan_bookings()
        bookings = [
            b
            for b in bookings
            if (status is None or b.status == status)
            and (user_id is None or b.user_id == user_id)
            and (start is None or b.start_time >= start)
            and (end is None or b.start_time <= end)
        ]
        return sorted(bookings, key=lambda b: b.created_at, reverse=True)


def _booking_events(
    action: Action,
    booking: Booking,
    resource: Resource | None,
    actor_id: str,
    **details: str,
) -> list[DomainEvent]:
    payload = {
        "resourceId": booking.resource_id,
        "resourceName": resource.name if resource else None,
        "startTime": booking.start_time.isoformat(),
        "endTime": booking.end_time.isoformat(),
        "totalPrice": str(booking.total_price),
        **details,
    }
    common = {
        "action": action,
        "entity": "Booking",
        "entity_id": booking.booking_id,
        "actor_id": actor_id,
        "recipient_id": booking.user_id,
        "details": payload,
    }
    return [DomainEvent(channel=channel, **common) for channel in Channel]
