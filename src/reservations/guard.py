from __future__ import annotations

from datetime import datetime

from .dal import DynamoStore
from .errors import ConflictReason, InvalidInterval, ResourceNotFound, ResourceUnavailable, SlotConflict
from .intervals import find_overlapping
from .models import Resource, ResourceStatus


class BookingGuard:
    """Answers "is this slot free" for a resource.

    Reads are not transactional; callers that write must re-check inside
    their own atomic unit.
    """

    def __init__(self, store: DynamoStore) -> None:
        self._store = store

    def check_slot(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: str | None = None,
    ) -> Resource:
        if end <= start:
            raise InvalidInterval()

        resource = self._store.get_resource(resource_id)
        if resource is None:
            raise ResourceNotFound(resource_id)
        if resource.status != ResourceStatus.AVAILABLE:
            raise ResourceUnavailable(resource_id, resource.status.value)

        if find_overlapping(self._store.list_blocks(resource_id), start, end):
            raise SlotConflict(ConflictReason.BLOCKED)

        bookings = [
            b for b in self._store.list_bookings(resource_id) if b.booking_id != exclude_booking_id
        ]
        if find_overlapping(bookings, start, end):
            raise SlotConflict(ConflictReason.TAKEN)
        return resource

    def is_slot_free(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: str | None = None,
    ) -> bool:
        try:
            self.check_slot(resource_id, start, end, exclude_booking_id)
        except SlotConflict:
            return False
        return True
