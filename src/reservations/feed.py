"""Client for the third-party hotel management API (day-by-day availability)."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Any
from urllib.parse import urlencode

import requests
from aws_lambda_powertools import Logger

from .config import Settings
from .errors import FeedUnavailable
from .models import DayAvailability

logger = Logger()


def _date_range(start: date, end: date) -> list[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def _as_date(value: Any) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _room_count(room: dict[str, Any]) -> int:
    for key in ("roomsAvailable", "available", "availableRooms"):
        value = room.get(key)
        if value is not None:
            try:
                return max(0, int(value))
            except (TypeError, ValueError):
                return 0
    return 0


class HotelFeedClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        property_id: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 20.0,
        booking_base_url: str = "https://us2.cloudbeds.com/en/reservation",
        property_code: str = "",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._property_id = property_id
        self._session = session or requests.Session()
        self._timeout = timeout
        self._booking_base_url = booking_base_url.rstrip("/")
        self._property_code = property_code

    @classmethod
    def from_settings(cls, settings: Settings) -> HotelFeedClient:
        return cls(
            settings.hotel_api_base_url,
            settings.hotel_api_key,
            settings.hotel_property_id,
            timeout=settings.hotel_api_timeout,
            booking_base_url=settings.hotel_booking_base_url,
            property_code=settings.hotel_property_code,
        )

    def _request(self, endpoint: str, method: str = "GET", data: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self._api_key}", "Accept": "application/json"}
        try:
            if method == "GET":
                response = self._session.get(url, params=data, headers=headers, timeout=self._timeout)
            else:
                # requests form-encodes dict bodies
                response = self._session.post(url, data=data, headers=headers, timeout=self._timeout)
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as exc:
            logger.warning("Hotel API request failed", extra={"endpoint": endpoint, "error": str(exc)})
            raise FeedUnavailable() from exc
        if not isinstance(body, dict):
            raise FeedUnavailable()
        return body

    def get_hotel_details(self) -> dict[str, Any]:
        return self._request("getHotelDetails", data={"propertyID": self._property_id})

    def get_room_types(self) -> dict[str, Any]:
        return self._request("getRoomTypes", data={"propertyID": self._property_id})

    def _room_type_ids(self) -> set[str]:
        try:
            res = self.get_room_types()
        except FeedUnavailable:
            logger.warning("Room type list unavailable, counting every room type in the response")
            return set()
        data = res.get("data")
        if not isinstance(data, list):
            return set()
        ids: set[str] = set()
        for room_type in data:
            if isinstance(room_type, dict):
                room_type_id = room_type.get("roomTypeID") or room_type.get("roomTypeId")
                if room_type_id:
                    ids.add(str(room_type_id))
        return ids

    def get_available_room_types(self, start_date: date, end_date: date) -> dict[str, Any]:
        payload = {
            "propertyID": self._property_id,
            "startDate": start_date.isoformat(),
            "endDate": end_date.isoformat(),
        }
        logger.info("Fetching availability", extra=payload)
        try:
            res = self._request("getAvailableRoomTypes", "GET", payload)
            if res.get("success") is not False:
                return res
        except FeedUnavailable:
            pass

        logger.info("getAvailableRoomTypes failed, falling back to getAvailability")
        res = self._request("getAvailability", "POST", payload)
        if res.get("success") is False:
            raise FeedUnavailable()
        return res

    def fetch_daily_availability(self, start_date: date, end_date: date) -> list[DayAvailability]:
        """One entry per date in ``[start_date, end_date]``, rooms summed over room types.

        Only the property's listed room types count; if that list is empty or
        cannot be fetched, every room type in the response counts.
        """
        res = self.get_available_room_types(start_date, end_date)
        listed = self._room_type_ids()
        dates = _date_range(start_date, end_date)
        per_room_type: dict[tuple[str, date], int] = {}

        def visit(node: Any, parent_date: date | None = None) -> None:
            if isinstance(node, list):
                for child in node:
                    visit(child, parent_date)
                return
            if not isinstance(node, dict):
                return
            node_date = _as_date(node.get("date") or node.get("Date") or node.get("checkInDate"))
            rooms = node.get("propertyRooms") or node.get("rooms")
            if rooms is None:
                rooms = [node] if node.get("roomTypeID") else []
            for room in rooms:
                if not isinstance(room, dict):
                    continue
                room_type = room.get("roomTypeID") or room.get("roomTypeId")
                if not room_type:
                    continue
                count = _room_count(room)
                room_date = _as_date(room.get("date") or room.get("Date")) or node_date or parent_date
                if room_date is not None:
                    per_room_type[(str(room_type), room_date)] = count
                else:
                    # no date: the count holds for every night of the searched range
                    for d in dates:
                        per_room_type[(str(room_type), d)] = count

        visit(res.get("data") or res.get("availability") or res)

        totals: dict[date, int] = defaultdict(int)
        for (room_type, d), count in per_room_type.items():
            if listed and room_type not in listed:
                continue
            totals[d] += count
        return [DayAvailability(date=d, rooms_available=totals[d]) for d in dates]

    def booking_url(self, check_in: date, check_out: date, room_type_id: str | None = None) -> str:
        params = {"checkin": check_in.isoformat(), "checkout": check_out.isoformat(), "currency": "usd"}
        if room_type_id:
            params["room_type_id"] = room_type_id
        return f"{self._booking_base_url}/{self._property_code}?{urlencode(params)}"

    def check_connection(self) -> dict[str, Any]:
        try:
            hotel = self.get_hotel_details()
        except FeedUnavailable as exc:
            return {"connected": False, "message": exc.message}
        data = hotel.get("data") if isinstance(hotel.get("data"), dict) else hotel
        return {"connected": True, "hotel_name": data.get("propertyName") or "Unknown"}
