from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from math import ceil
from typing import Generic, TypeVar

from pydantic import AliasChoices, BaseModel, Field, field_validator

from .intervals import parse_instant

T = TypeVar("T")


class ResourceStatus(StrEnum):
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"
    MAINTENANCE = "MAINTENANCE"


class BookingStatus(StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class _Timed(BaseModel):
    @field_validator("start_time", "end_time", mode="after", check_fields=False)
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return parse_instant(value)


class ResourceCreate(BaseModel):
    name: str = Field(..., min_length=1)
    resource_type: str = Field(default="room", min_length=1)
    description: str | None = None
    capacity: int = Field(default=1, ge=1)
    hourly_rate: Decimal = Field(..., ge=0, decimal_places=2)
    status: ResourceStatus = ResourceStatus.AVAILABLE


class ResourceUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    resource_type: str | None = None
    description: str | None = None
    capacity: int | None = Field(default=None, ge=1)
    hourly_rate: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    status: ResourceStatus | None = None


class Resource(BaseModel):
    resource_id: str
    name: str
    resource_type: str = "room"
    description: str | None = None
    capacity: int = 1
    hourly_rate: Decimal
    status: ResourceStatus = ResourceStatus.AVAILABLE
    # bumped by every booking or block insert; guards the check-then-insert
    version: int = 0


class BookingCreate(_Timed):
    resource_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    notes: str | None = None


class Booking(_Timed):
    booking_id: str
    resource_id: str
    user_id: str
    start_time: datetime
    end_time: datetime
    total_price: Decimal
    status: BookingStatus = BookingStatus.CONFIRMED
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class BlockCreate(_Timed):
    resource_id: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    reason: str | None = None


class ResourceBlock(_Timed):
    block_id: str
    resource_id: str
    start_time: datetime
    end_time: datetime
    reason: str | None = None
    created_by: str
    created_at: datetime


class DayAvailability(BaseModel):
    date: date
    rooms_available: int = Field(
        ..., ge=0, validation_alias=AliasChoices("rooms_available", "roomsAvailable")
    )


class AvailabilityGap(BaseModel):
    start_date: date
    end_date: date
    nights: int
    min_rooms_available: int


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def of(cls, items: list[T], page: int, limit: int) -> Page[T]:
        start = (page - 1) * limit
        return cls(
            items=items[start : start + limit],
            total=len(items),
            page=page,
            limit=limit,
            total_pages=ceil(len(items) / limit),
        )
