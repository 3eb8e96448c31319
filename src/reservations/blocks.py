from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from aws_lambda_powertools import Logger, Tracer

from .dal import ConcurrentWriteError, DynamoStore
from .errors import (
    ConflictReason,
    ConflictWithBlock,
    ConflictWithBooking,
    InvalidInterval,
    NotFound,
    ResourceNotFound,
    SlotConflict,
)
from .events import Action, Channel, DomainEvent, EventSink, emit
from .intervals import find_overlapping
from .models import BlockCreate, ResourceBlock

logger = Logger()
tracer = Tracer()


class BlockService:
    """Administrator-imposed unavailability.

    Block inserts take part in the same versioned write as bookings, so a
    block and a booking racing for one resource cannot both land.
    """

    def __init__(
        self,
        store: DynamoStore,
        sinks: Sequence[EventSink] = (),
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        max_attempts: int = 3,
    ) -> None:
        self._store = store
        self._sinks = sinks
        self._clock = clock
        self._id_factory = id_factory
        self._max_attempts = max_attempts

    @tracer.capture_method
    def create_block(self, payload: BlockCreate, creator_id: str) -> ResourceBlock:
        start, end = payload.start_time, payload.end_time
        if start >= end:
            raise InvalidInterval()

        for attempt in range(1, self._max_attempts + 1):
            resource = self._store.get_resource(payload.resource_id)
            if resource is None:
                raise ResourceNotFound(payload.resource_id)
            if find_overlapping(self._store.list_bookings(resource.resource_id), start, end):
                raise ConflictWithBooking()
            if find_overlapping(self._store.list_blocks(resource.resource_id), start, end):
                raise ConflictWithBlock()

            block = ResourceBlock(
                block_id=self._id_factory(),
                resource_id=resource.resource_id,
                start_time=start,
                end_time=end,
                reason=payload.reason,
                created_by=creator_id,
                created_at=self._clock(),
            )
            try:
                self._store.insert_block(block, resource.version)
            except ConcurrentWriteError:
                logger.info(
                    "Concurrent write on resource, re-checking block",
                    extra={"resource_id": resource.resource_id, "attempt": attempt},
                )
                continue

            logger.info("Block created", extra={"block_id": block.block_id, "resource_id": block.resource_id})
            emit(
                self._sinks,
                [
                    _audit(
                        Action.BLOCK_CREATE,
                        block,
                        creator_id,
                        resourceName=resource.name,
                        reason=block.reason,
                    )
                ],
            )
            return block

        raise SlotConflict(ConflictReason.RACE_LOST)

    @tracer.capture_method
    def delete_block(self, block_id: str, actor_id: str) -> None:
        block = self._store.get_block(block_id)
        if block is None:
            raise NotFound("Block", block_id)
        self._store.delete_block(block)
        logger.info("Block deleted", extra={"block_id": block_id, "resource_id": block.resource_id})
        emit(self._sinks, [_audit(Action.BLOCK_DELETE, block, actor_id)])

    def list_blocks(
        self, resource_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> list[ResourceBlock]:
        blocks = self._store.list_blocks(resource_id)
        if start is not None and end is not None:
            blocks = find_overlapping(blocks, start, end)
        return sorted(blocks, key=lambda b: b.start_time)

    def list_all_blocks(
        self,
        resource_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ResourceBlock]:
        """Admin listing, latest start first. ``start``/``end`` bound the block's start time."""
        blocks = self._store.list_blocks(resource_id) if resource_id else self._store.scan_blocks()
        blocks = [
            b
            for b in blocks
            if (start is None or b.start_time >= start) and (end is None or b.start_time <= end)
        ]
        return sorted(blocks, key=lambda b: b.start_time, reverse=True)


def _audit(action: Action, block: ResourceBlock, actor_id: str, **details: str | None) -> DomainEvent:
    return DomainEvent(
        channel=Channel.AUDIT,
        action=action,
        entity="ResourceBlock",
        entity_id=block.block_id,
        actor_id=actor_id,
        details={
            "resourceId": block.resource_id,
            "startTime": block.start_time.isoformat(),
            "endTime": block.end_time.isoformat(),
            **details,
        },
    )
