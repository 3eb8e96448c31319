from __future__ import annotations

from datetime import date
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from reservations.errors import FeedUnavailable
from reservations.feed import HotelFeedClient

NO_ROOM_TYPES = {"success": True, "data": []}


def response(body: Any, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.json.return_value = body
    if status >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} error")
    return resp


def serve_get(session: MagicMock, **by_endpoint: Any) -> None:
    """Answer GETs by endpoint name; a value may be a body, a response or an exception."""

    def get(url: str, **kwargs: Any) -> MagicMock:
        answer = by_endpoint[url.rsplit("/", 1)[-1]]
        if isinstance(answer, Exception):
            raise answer
        return answer if isinstance(answer, MagicMock) else response(answer)

    session.get.side_effect = get


def calls_to(session: MagicMock, endpoint: str) -> list[Any]:
    return [c for c in session.get.call_args_list if c.args[0].endswith("/" + endpoint)]


@pytest.fixture()
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture()
def client(session: MagicMock) -> HotelFeedClient:
    return HotelFeedClient(
        "https://hotel.example/api/v1.1/",
        "secret",
        "prop-1",
        session=session,
        timeout=5,
        property_code="67942i",
    )


def test_daily_availability_sums_room_types_per_date(client: HotelFeedClient, session: MagicMock) -> None:
    serve_get(
        session,
        getAvailableRoomTypes={
            "success": True,
            "data": [
                {
                    "date": "2026-01-01",
                    "propertyRooms": [
                        {"roomTypeID": "A", "roomsAvailable": 2},
                        {"roomTypeID": "B", "roomsAvailable": 1},
                    ],
                },
                {"date": "2026-01-02", "propertyRooms": [{"roomTypeID": "A", "roomsAvailable": 0}]},
            ],
        },
        getRoomTypes=NO_ROOM_TYPES,
    )

    days = client.fetch_daily_availability(date(2026, 1, 1), date(2026, 1, 3))

    assert [(d.date.isoformat(), d.rooms_available) for d in days] == [
        ("2026-01-01", 3),
        ("2026-01-02", 0),
        ("2026-01-03", 0),
    ]
    [call] = calls_to(session, "getAvailableRoomTypes")
    assert call.args[0] == "https://hotel.example/api/v1.1/getAvailableRoomTypes"
    assert call.kwargs["params"] == {"propertyID": "prop-1", "startDate": "2026-01-01", "endDate": "2026-01-03"}
    assert call.kwargs["headers"]["Authorization"] == "Bearer secret"
    assert call.kwargs["timeout"] == 5


def test_only_listed_room_types_count(client: HotelFeedClient, session: MagicMock) -> None:
    serve_get(
        session,
        getAvailableRoomTypes={
            "data": [
                {
                    "date": "2026-01-01",
                    "propertyRooms": [
                        {"roomTypeID": "A", "roomsAvailable": 2},
                        {"roomTypeID": "retired", "roomsAvailable": 5},
                    ],
                }
            ]
        },
        getRoomTypes={"success": True, "data": [{"roomTypeID": "A", "roomTypeName": "Double"}, {"roomTypeId": "B"}]},
    )

    days = client.fetch_daily_availability(date(2026, 1, 1), date(2026, 1, 1))

    assert days[0].rooms_available == 2
    assert calls_to(session, "getRoomTypes")[0].kwargs["params"] == {"propertyID": "prop-1"}


def test_room_type_list_failure_counts_everything(client: HotelFeedClient, session: MagicMock) -> None:
    serve_get(
        session,
        getAvailableRoomTypes={
            "data": [{"date": "2026-01-01", "rooms": [{"roomTypeID": "A", "roomsAvailable": 2}, {"roomTypeID": "C", "roomsAvailable": 1}]}]
        },
        getRoomTypes=requests.exceptions.Timeout("slow"),
    )

    days = client.fetch_daily_availability(date(2026, 1, 1), date(2026, 1, 1))

    assert days[0].rooms_available == 3


def test_undated_room_counts_apply_to_whole_range(client: HotelFeedClient, session: MagicMock) -> None:
    serve_get(
        session,
        getAvailableRoomTypes={
            "data": [{"propertyRooms": [{"roomTypeID": "A", "available": "2"}]}, {"roomTypeID": "B", "availableRooms": 1}]
        },
        getRoomTypes=NO_ROOM_TYPES,
    )

    days = client.fetch_daily_availability(date(2026, 1, 1), date(2026, 1, 2))

    assert [d.rooms_available for d in days] == [3, 3]


def test_falls_back_to_post_when_get_fails(client: HotelFeedClient, session: MagicMock) -> None:
    serve_get(
        session,
        getAvailableRoomTypes=requests.exceptions.ConnectionError("boom"),
        getRoomTypes=NO_ROOM_TYPES,
    )
    session.post.return_value = response(
        {"success": True, "data": [{"date": "2026-01-01", "rooms": [{"roomTypeID": "A", "roomsAvailable": 4}]}]}
    )

    days = client.fetch_daily_availability(date(2026, 1, 1), date(2026, 1, 1))

    assert days[0].rooms_available == 4
    assert session.post.call_args.args[0] == "https://hotel.example/api/v1.1/getAvailability"
    assert session.post.call_args.kwargs["data"]["propertyID"] == "prop-1"


def test_falls_back_when_get_reports_failure(client: HotelFeedClient, session: MagicMock) -> None:
    serve_get(session, getAvailableRoomTypes={"success": False, "message": "nope"}, getRoomTypes=NO_ROOM_TYPES)
    session.post.return_value = response({"success": True, "data": []})

    days = client.fetch_daily_availability(date(2026, 1, 1), date(2026, 1, 2))

    assert [d.rooms_available for d in days] == [0, 0]
    session.post.assert_called_once()


def test_both_endpoints_failing_raises(client: HotelFeedClient, session: MagicMock) -> None:
    serve_get(session, getAvailableRoomTypes=response({}, status=500), getRoomTypes=NO_ROOM_TYPES)
    session.post.return_value = response({"success": False})

    with pytest.raises(FeedUnavailable):
        client.fetch_daily_availability(date(2026, 1, 1), date(2026, 1, 2))


def test_booking_url(client: HotelFeedClient) -> None:
    url = client.booking_url(date(2026, 1, 4), date(2026, 1, 6), "rt-9")
    assert url == (
        "https://us2.cloudbeds.com/en/reservation/67942i"
        "?checkin=2026-01-04&checkout=2026-01-06&currency=usd&room_type_id=rt-9"
    )


def test_check_connection(client: HotelFeedClient, session: MagicMock) -> None:
    session.get.return_value = response({"data": {"propertyName": "Amplitude"}})
    assert client.check_connection() == {"connected": True, "hotel_name": "Amplitude"}

    session.get.side_effect = requests.exceptions.Timeout("slow")
    status = client.check_connection()
    assert status["connected"] is False
    assert "slow" not in status["message"]
