from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from reservations.dal import DynamoStore
from reservations.errors import (
    ConflictReason,
    InvalidInterval,
    ResourceNotFound,
    ResourceUnavailable,
    SlotConflict,
)
from reservations.guard import BookingGuard
from reservations.models import Booking, BookingStatus, Resource, ResourceBlock, ResourceStatus


def at(hour: int, minute: int = 0, day: int = 10) -> datetime:
    return datetime(2026, 1, day, hour, minute, tzinfo=UTC)


def seed_booking(store: DynamoStore, booking_id: str, start: datetime, end: datetime, **overrides) -> Booking:
    resource = store.get_resource("r-1")
    assert resource is not None
    booking = Booking(
        booking_id=booking_id,
        resource_id="r-1",
        user_id=overrides.pop("user_id", "u-1"),
        start_time=start,
        end_time=end,
        total_price=Decimal("0"),
        created_at=at(0, day=1),
        updated_at=at(0, day=1),
        **overrides,
    )
    store.insert_booking(booking, resource.version)
    return booking


def seed_block(store: DynamoStore, start: datetime, end: datetime) -> ResourceBlock:
    resource = store.get_resource("r-1")
    assert resource is not None
    block = ResourceBlock(
        block_id="blk-1",
        resource_id="r-1",
        start_time=start,
        end_time=end,
        reason="maintenance",
        created_by="admin-1",
        created_at=at(0, day=1),
    )
    store.insert_block(block, resource.version)
    return block


@pytest.fixture()
def guard(store: DynamoStore) -> BookingGuard:
    return BookingGuard(store)


def test_empty_resource_is_free(guard: BookingGuard, resource: Resource) -> None:
    assert guard.is_slot_free("r-1", at(9), at(11)) is True


def test_existing_booking_takes_the_slot(guard: BookingGuard, store: DynamoStore, resource: Resource) -> None:
    seed_booking(store, "b-1", at(9), at(11))

    assert guard.is_slot_free("r-1", at(10), at(12)) is False
    with pytest.raises(SlotConflict) as exc_info:
        guard.check_slot("r-1", at(10), at(12))
    assert exc_info.value.reason == ConflictReason.TAKEN


def test_adjacent_booking_does_not_conflict(guard: BookingGuard, store: DynamoStore, resource: Resource) -> None:
    seed_booking(store, "b-1", at(9), at(11))
    assert guard.is_slot_free("r-1", at(11), at(12)) is True
    assert guard.is_slot_free("r-1", at(8), at(9)) is True


def test_block_reports_blocked_reason(guard: BookingGuard, store: DynamoStore, resource: Resource) -> None:
    seed_block(store, at(13), at(17))

    with pytest.raises(SlotConflict) as exc_info:
        guard.check_slot("r-1", at(16), at(18))
    assert exc_info.value.reason == ConflictReason.BLOCKED


def test_cancelled_bookings_are_ignored(guard: BookingGuard, store: DynamoStore, resource: Resource) -> None:
    seed_booking(store, "b-1", at(9), at(11), status=BookingStatus.CANCELLED)
    assert guard.is_slot_free("r-1", at(9), at(11)) is True


def test_excluded_booking_does_not_conflict_with_itself(
    guard: BookingGuard, store: DynamoStore, resource: Resource
) -> None:
    seed_booking(store, "b-1", at(9), at(11))
    assert guard.is_slot_free("r-1", at(9), at(11), exclude_booking_id="b-1") is True
    assert guard.is_slot_free("r-1", at(9), at(11), exclude_booking_id="b-other") is False


def test_unknown_resource(guard: BookingGuard) -> None:
    with pytest.raises(ResourceNotFound):
        guard.is_slot_free("missing", at(9), at(10))


@pytest.mark.parametrize("status", [ResourceStatus.MAINTENANCE, ResourceStatus.UNAVAILABLE])
def test_resource_must_be_available(guard: BookingGuard, store: DynamoStore, status: ResourceStatus) -> None:
    store.put_resource(Resource(resource_id="r-9", name="Desk 9", hourly_rate=Decimal("5"), status=status))

    with pytest.raises(ResourceUnavailable) as exc_info:
        guard.is_slot_free("r-9", at(9), at(10))
    assert exc_info.value.status == status.value


def test_reversed_interval_is_rejected(guard: BookingGuard, resource: Resource) -> None:
    with pytest.raises(InvalidInterval):
        guard.is_slot_free("r-1", at(11), at(9))
