"""Best-effort side effects: notifications, outbound messages and audit records.

Nothing emitted here may fail the operation that triggered it. ``emit`` is
the only place that catches sink failures.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

from aws_lambda_powertools import Logger
from pydantic import BaseModel, Field

logger = Logger()


class Channel(StrEnum):
    NOTIFICATION = "notification"
    MESSAGE = "message"
    AUDIT = "audit"


class Action(StrEnum):
    BOOKING_CREATE = "BOOKING_CREATE"
    BOOKING_CANCEL = "BOOKING_CANCEL"
    BLOCK_CREATE = "BLOCK_CREATE"
    BLOCK_DELETE = "BLOCK_DELETE"
    RESOURCE_CREATE = "RESOURCE_CREATE"
    RESOURCE_UPDATE = "RESOURCE_UPDATE"
    RESOURCE_DELETE = "RESOURCE_DELETE"


class DomainEvent(BaseModel):
    channel: Channel
    action: Action
    entity: str
    entity_id: str
    actor_id: str | None = None
    recipient_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class EventSink(Protocol):
    def record(self, event: DomainEvent) -> None: ...


class LoggingSink:
    def record(self, event: DomainEvent) -> None:
        logger.info("Domain event", extra=event.model_dump(mode="json"))


class EventBridgeSink:
    def __init__(self, client: Any, source: str, bus_name: str) -> None:
        self._client = client
        self._source = source
        self._bus_name = bus_name

    def record(self, event: DomainEvent) -> None:
        resp = self._client.put_events(
            Entries=[
                {
                    "Source": self._source,
                    "DetailType": f"{event.channel.value}.{event.action.value}",
                    "Detail": json.dumps(event.model_dump(mode="json")),
                    "EventBusName": self._bus_name,
                }
            ]
        )
        if resp.get("FailedEntryCount"):
            raise RuntimeError(f"EventBridge rejected {event.action.value} event")


def emit(sinks: Iterable[EventSink], events: Iterable[DomainEvent]) -> None:
    """Hand every event to every sink once; log and drop individual failures."""
    for event in events:
        for sink in sinks:
            try:
                sink.record(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Failed to record side effect",
                    extra={
                        "channel": event.channel.value,
                        "action": event.action.value,
                        "entity_id": event.entity_id,
                    },
                )
