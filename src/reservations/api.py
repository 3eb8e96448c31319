# Annotations stay evaluated here: FastAPI inspects traced handlers through
# their wrapper, whose globals cannot resolve string annotations.
from datetime import date, datetime
from typing import Annotated, Any

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.metrics import Metrics, MetricUnit
from fastapi import Depends, FastAPI, Header, Query, Request
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse, Response

from .container import Services, get_services
from .errors import NotAuthorized, ReservationError, SlotConflict
from .gaps import find_gaps
from .intervals import parse_instant
from .models import (
    AvailabilityGap,
    BlockCreate,
    Booking,
    BookingCreate,
    BookingStatus,
    DayAvailability,
    Page,
    Resource,
    ResourceBlock,
    ResourceCreate,
    ResourceStatus,
    ResourceUpdate,
)

logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="ReservationsAPI")

app = FastAPI(title="Resource Booking API", version="0.1.0")

ServicesDep = Annotated[Services, Depends(get_services)]
PageDep = Annotated[int, Query(ge=1)]
LimitDep = Annotated[int, Query(ge=1, le=100)]


class Actor(BaseModel):
    user_id: str
    is_admin: bool = False


def get_actor(
    x_user_id: Annotated[str, Header(min_length=1)],
    x_user_role: Annotated[str, Header()] = "USER",
) -> Actor:
    # Identity is established upstream; these headers are set by the authorizer.
    return Actor(user_id=x_user_id, is_admin=x_user_role.upper() == "ADMIN")


def require_admin(actor: Annotated[Actor, Depends(get_actor)]) -> Actor:
    if not actor.is_admin:
        raise NotAuthorized("Admin access required")
    return actor


ActorDep = Annotated[Actor, Depends(get_actor)]
AdminDep = Annotated[Actor, Depends(require_admin)]


def _utc(value: datetime | None) -> datetime | None:
    return parse_instant(value) if value is not None else None


class BookingRequest(BaseModel):
    resource_id: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    notes: str | None = None


class SlotAvailability(BaseModel):
    resource_id: str
    start_time: datetime
    end_time: datetime
    available: bool


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    body: dict[str, str] = {"code": exc.code, "detail": exc.message}
    if isinstance(exc, SlotConflict):
        body["reason"] = exc.reason.value
        metrics.add_metric(name="SlotConflict", value=1, unit=MetricUnit.Count)
    logger.info("Request rejected", extra={"path": request.url.path, **body})
    return JSONResponse(status_code=exc.status_code, content=body)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/bookings", response_model=Booking, status_code=201)
@tracer.capture_method
def create_booking(payload: BookingRequest, actor: ActorDep, services: ServicesDep) -> Booking:
    metrics.add_metric(name="CreateBooking", value=1, unit=MetricUnit.Count)
    return services.bookings.create_booking(
        BookingCreate(user_id=actor.user_id, **payload.model_dump())
    )


@app.get("/bookings/{booking_id}", response_model=Booking)
@tracer.capture_method
def get_booking(booking_id: str, actor: ActorDep, services: ServicesDep) -> Booking:
    return services.bookings.get_booking(booking_id, actor.user_id, actor.is_admin)


@app.get("/users/{user_id}/bookings", response_model=list[Booking])
@tracer.capture_method
def list_bookings(
    user_id: str,
    actor: ActorDep,
    services: ServicesDep,
    status: BookingStatus | None = None,
    upcoming: bool = False,
) -> list[Booking]:
    if not actor.is_admin and actor.user_id != user_id:
        raise NotAuthorized("Not authorized to view these bookings")
    return services.bookings.list_user_bookings(user_id, status=status, upcoming=upcoming)


@app.post("/bookings/{booking_id}/cancel", response_model=Booking)
@tracer.capture_method
def cancel_booking(booking_id: str, actor: ActorDep, services: ServicesDep) -> Booking:
    metrics.add_metric(name="CancelBooking", value=1, unit=MetricUnit.Count)
    return services.bookings.cancel_booking(booking_id, actor.user_id, actor.is_admin)


@app.get("/resources/{resource_id}/availability", response_model=SlotAvailability)
@tracer.capture_method
def slot_availability(
    resource_id: str, start: datetime, end: datetime, services: ServicesDep
) -> SlotAvailability:
    start, end = parse_instant(start), parse_instant(end)
    available = services.bookings.guard.is_slot_free(resource_id, start, end)
    return SlotAvailability(resource_id=resource_id, start_time=start, end_time=end, available=available)


@app.get("/resources", response_model=Page[Resource])
def list_resources(
    services: ServicesDep,
    resource_type: Annotated[str | None, Query(alias="type")] = None,
    status: ResourceStatus | None = None,
    search: str | None = None,
    page: PageDep = 1,
    limit: LimitDep = 10,
) -> Page[Resource]:
    resources = services.resources.list_resources(resource_type=resource_type, status=status, search=search)
    return Page[Resource].of(resources, page, limit)


@app.get("/resources/types")
def resource_types(services: ServicesDep) -> list[str]:
    return services.resources.resource_types()


@app.get("/resources/available", response_model=list[Resource])
@tracer.capture_method
def available_resources(
    start: datetime,
    end: datetime,
    services: ServicesDep,
    resource_type: Annotated[str | None, Query(alias="type")] = None,
) -> list[Resource]:
    return services.resources.available_resources(parse_instant(start), parse_instant(end), resource_type)


@app.post("/resources", response_model=Resource, status_code=201)
def create_resource(payload: ResourceCreate, actor: AdminDep, services: ServicesDep) -> Resource:
    return services.resources.create_resource(payload, actor.user_id)


@app.get("/resources/{resource_id}", response_model=Resource)
def get_resource(resource_id: str, services: ServicesDep) -> Resource:
    return services.resources.get_resource(resource_id)


@app.patch("/resources/{resource_id}", response_model=Resource)
def update_resource(
    resource_id: str, payload: ResourceUpdate, actor: AdminDep, services: ServicesDep
) -> Resource:
    return services.resources.update_resource(resource_id, payload, actor.user_id)


@app.delete("/resources/{resource_id}")
def delete_resource(resource_id: str, actor: AdminDep, services: ServicesDep) -> Response:
    services.resources.delete_resource(resource_id, actor.user_id)
    return Response(status_code=204)


@app.post("/blocks", response_model=ResourceBlock, status_code=201)
@tracer.capture_method
def create_block(payload: BlockCreate, actor: AdminDep, services: ServicesDep) -> ResourceBlock:
    metrics.add_metric(name="CreateBlock", value=1, unit=MetricUnit.Count)
    return services.blocks.create_block(payload, actor.user_id)


@app.delete("/blocks/{block_id}")
@tracer.capture_method
def delete_block(block_id: str, actor: AdminDep, services: ServicesDep) -> Response:
    services.blocks.delete_block(block_id, actor.user_id)
    return Response(status_code=204)


@app.get("/admin/bookings", response_model=Page[Booking])
def admin_bookings(
    actor: AdminDep,
    services: ServicesDep,
    status: BookingStatus | None = None,
    resource_id: str | None = None,
    user_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: PageDep = 1,
    limit: LimitDep = 10,
) -> Page[Booking]:
    bookings = services.bookings.list_all_bookings(
        status=status, resource_id=resource_id, user_id=user_id, start=_utc(start), end=_utc(end)
    )
    return Page[Booking].of(bookings, page, limit)


@app.get("/admin/blocks", response_model=Page[ResourceBlock])
def admin_blocks(
    actor: AdminDep,
    services: ServicesDep,
    resource_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: PageDep = 1,
    limit: LimitDep = 20,
) -> Page[ResourceBlock]:
    blocks = services.blocks.list_all_blocks(resource_id=resource_id, start=_utc(start), end=_utc(end))
    return Page[ResourceBlock].of(blocks, page, limit)


@app.get("/calendar/bookings", response_model=list[Booking])
def calendar_bookings(
    resource_id: str,
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Booking]:
    return services.bookings.calendar_bookings(resource_id, _utc(start), _utc(end))


@app.get("/calendar/blocks", response_model=list[ResourceBlock])
def calendar_blocks(
    resource_id: str,
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[ResourceBlock]:
    return services.blocks.list_blocks(resource_id, _utc(start), _utc(end))


@app.get("/calendar/availability", response_model=list[DayAvailability])
@tracer.capture_method
def daily_availability(start_date: date, end_date: date, services: ServicesDep) -> list[DayAvailability]:
    return services.feed.fetch_daily_availability(start_date, end_date)


@app.get("/calendar/gaps", response_model=list[AvailabilityGap])
@tracer.capture_method
def availability_gaps(
    start_date: date,
    end_date: date,
    services: ServicesDep,
    min_nights: Annotated[int, Query(ge=1)] = 1,
) -> list[AvailabilityGap]:
    days = services.feed.fetch_daily_availability(start_date, end_date)
    return find_gaps(days, min_nights)


@app.get("/hotel/status")
def hotel_status(services: ServicesDep) -> dict[str, Any]:
    return services.feed.check_connection()


@app.get("/hotel/room-types")
def hotel_room_types(services: ServicesDep) -> dict[str, Any]:
    return services.feed.get_room_types()


@app.get("/hotel/booking-url")
def hotel_booking_url(
    check_in: date, check_out: date, services: ServicesDep, room_type_id: str | None = None
) -> dict[str, str]:
    return {"url": services.feed.booking_url(check_in, check_out, room_type_id)}
