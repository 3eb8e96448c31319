from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from datetime import datetime

from aws_lambda_powertools import Logger

from .dal import ConcurrentWriteError, DynamoStore
from .errors import InvalidInterval, ResourceInUse, ResourceNotFound
from .events import Action, Channel, DomainEvent, EventSink, emit
from .guard import BookingGuard
from .models import Resource, ResourceCreate, ResourceStatus, ResourceUpdate

logger = Logger()


class ResourceService:
    def __init__(
        self,
        store: DynamoStore,
        sinks: Sequence[EventSink] = (),
        *,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        max_attempts: int = 3,
    ) -> None:
        self._store = store
        self._guard = BookingGuard(store)
        self._sinks = sinks
        self._id_factory = id_factory
        self._max_attempts = max_attempts

    def get_resource(self, resource_id: str) -> Resource:
        resource = self._store.get_resource(resource_id)
        if resource is None:
            raise ResourceNotFound(resource_id)
        return resource

    def list_resources(
        self,
        resource_type: str | None = None,
        status: ResourceStatus | None = None,
        search: str | None = None,
    ) -> list[Resource]:
        """Resources matching every given filter; ``search`` looks in name and description."""
        needle = search.casefold() if search else None
        matches = []
        for resource in self._store.scan_resources():
            if resource_type and resource.resource_type != resource_type:
                continue
            if status and resource.status != status:
                continue
            if needle and not (
                needle in resource.name.casefold()
                or needle in (resource.description or "").casefold()
            ):
                continue
            matches.append(resource)
        return sorted(matches, key=lambda r: r.name)

    def resource_types(self) -> list[str]:
        return sorted({r.resource_type for r in self._store.scan_resources()})

    def available_resources(
        self, start: datetime, end: datetime, resource_type: str | None = None
    ) -> list[Resource]:
        if end <= start:
            raise InvalidInterval()
        candidates = self.list_resources(resource_type=resource_type, status=ResourceStatus.AVAILABLE)
        return [r for r in candidates if self._guard.is_slot_free(r.resource_id, start, end)]

    def create_resource(self, payload: ResourceCreate, actor_id: str) -> Resource:
        resource = Resource(resource_id=self._id_factory(), **payload.model_dump())
        self._store.put_resource(resource)
        logger.info("Resource created", extra={"resource_id": resource.resource_id})
        self._audit(Action.RESOURCE_CREATE, resource, actor_id)
        return resource

    def update_resource(self, resource_id: str, payload: ResourceUpdate, actor_id: str) -> Resource:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        try:
            resource = self._store.update_resource(resource_id, changes)
        except KeyError as exc:
            raise ResourceNotFound(resource_id) from exc
        self._audit(Action.RESOURCE_UPDATE, resource, actor_id, changed=sorted(changes))
        return resource

    def delete_resource(self, resource_id: str, actor_id: str) -> None:
        # The delete is conditioned on the version read before the booking
        # check, so a booking committed in between cancels it.
        for attempt in range(1, self._max_attempts + 1):
            resource = self.get_resource(resource_id)
            if self._store.list_bookings(resource_id):
                raise ResourceInUse()
            try:
                self._store.delete_resource(resource_id, resource.version)
            except ConcurrentWriteError:
                logger.info(
                    "Resource changed during delete, re-checking",
                    extra={"resource_id": resource_id, "attempt": attempt},
                )
                continue
            break
        else:
            raise ResourceInUse()

        logger.info("Resource deleted", extra={"resource_id": resource_id})
        self._audit(Action.RESOURCE_DELETE, resource, actor_id)

    def _audit(self, action: Action, resource: Resource, actor_id: str, **details: object) -> None:
        emit(
            self._sinks,
            [
                DomainEvent(
                    channel=Channel.AUDIT,
                    action=action,
                    entity="Resource",
                    entity_id=resource.resource_id,
                    actor_id=actor_id,
                    details={"resourceName": resource.name, **details},
                )
            ],
        )
