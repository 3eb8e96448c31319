from __future__ import annotations

from functools import lru_cache

import boto3

from .blocks import BlockService
from .bookings import BookingService
from .config import Settings, load_settings
from .dal import DynamoStore
from .events import EventBridgeSink, EventSink, LoggingSink
from .feed import HotelFeedClient
from .resources import ResourceService


class Services:
    def __init__(
        self,
        bookings: BookingService,
        blocks: BlockService,
        resources: ResourceService,
        feed: HotelFeedClient,
    ) -> None:
        self.bookings = bookings
        self.blocks = blocks
        self.resources = resources
        self.feed = feed


def build_sinks(settings: Settings) -> list[EventSink]:
    sinks: list[EventSink] = [LoggingSink()]
    if settings.event_bus_name:
        sinks.append(EventBridgeSink(boto3.client("events"), settings.event_source, settings.event_bus_name))
    return sinks


def build_services(settings: Settings) -> Services:
    store = DynamoStore.from_settings(settings)
    sinks = build_sinks(settings)
    return Services(
        bookings=BookingService(store, sinks, max_attempts=settings.booking_max_attempts),
        blocks=BlockService(store, sinks, max_attempts=settings.booking_max_attempts),
        resources=ResourceService(store, sinks, max_attempts=settings.booking_max_attempts),
        feed=HotelFeedClient.from_settings(settings),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(load_settings())
