from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field


class Settings(BaseModel):
    resources_table: str = "resources"
    bookings_table: str = "bookings"
    blocks_table: str = "blocks"
    event_bus_name: str | None = None
    event_source: str = "reservations"
    booking_max_attempts: int = Field(default=3, ge=1)
    hotel_api_base_url: str = "https://api.cloudbeds.com/api/v1.1"
    hotel_api_key: str = ""
    hotel_property_id: str = ""
    hotel_booking_base_url: str = "https://us2.cloudbeds.com/en/reservation"
    hotel_property_code: str = ""
    hotel_api_timeout: float = 20.0


_ENV_KEYS = {
    "resources_table": "RESOURCES_TABLE",
    "bookings_table": "BOOKINGS_TABLE",
    "blocks_table": "BLOCKS_TABLE",
    "event_bus_name": "EVENT_BUS_NAME",
    "event_source": "EVENT_SOURCE",
    "booking_max_attempts": "BOOKING_MAX_ATTEMPTS",
    "hotel_api_base_url": "HOTEL_API_BASE_URL",
    "hotel_api_key": "HOTEL_API_KEY",
    "hotel_property_id": "HOTEL_PROPERTY_ID",
    "hotel_booking_base_url": "HOTEL_BOOKING_BASE_URL",
    "hotel_property_code": "HOTEL_PROPERTY_CODE",
    "hotel_api_timeout": "HOTEL_API_TIMEOUT",
}


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    values = {
        field: env[key].strip()
        for field, key in _ENV_KEYS.items()
        if env.get(key, "").strip()
    }
    return Settings(**values)
