"""
Booking.com Connector

XML over HTTPS with Basic auth. Every request body is a <request> document
addressed to the hotel; a response is accepted when it carries no <error>
element and no fault.
"""

import logging
import re
from typing import Any, Dict, List
from xml.etree import ElementTree

from ...utils.sanitization import escape_xml
from ..results import (
    AvailabilityRecord,
    ChannelBooking,
    ConnectionTestResult,
    DateRange,
    RoomRecord,
    SyncRequest,
    SyncResult,
    SyncType,
)
from ..transport import TransportError, TransportResponse
from .base import (
    ChannelConnector,
    ChannelRejection,
    extract_tag_message,
    find_text,
    iter_elements,
    to_float,
    to_int,
)

# <error>, <soap:Fault> and friends, in any case
ERROR_ELEMENT = re.compile(r"<(?:\w+:)?(?:error|fault)\b", re.IGNORECASE)


class BookingComConnector(ChannelConnector):
    channel_type = "booking-com"
    display_name = "Booking.com"
    required_credentials = ("username", "password")
    default_base_url = "https://supply-xml.booking.com"
    default_requests_per_minute = 30

    def _headers(self, credentials: Dict[str, Any], xml_body: bool = True) -> Dict[str, str]:
        headers = {"Authorization": self.basic_auth_header(credentials)}
        if xml_body:
            headers["Content-Type"] = "application/xml"
        return headers

    @staticmethod
    def is_success(data: Any) -> bool:
        if isinstance(data, str):
            return not ERROR_ELEMENT.search(data)
        if isinstance(data, dict):
            return data.get("success") is not False and not data.get("error")
        return True

    @staticmethod
    def error_message(data: Any) -> str:
        if isinstance(data, str):
            return extract_tag_message(data, ("error",))
        if isinstance(data, dict):
            return str(data.get("error") or data.get("message") or "Unknown error")
        return "Unknown error"

    def _post(self, path: str, credentials: Dict[str, Any], xml: str) -> TransportResponse:
        response = self._request(path, method="POST", headers=self._headers(credentials), body=xml)
        if not self.is_success(response.data):
            raise ChannelRejection(self.error_message(response.data))
        return response

    def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        error = self.credential_error(credentials)
        if error:
            return ConnectionTestResult(success=False, message=error, details={"error": error})

        self._log(logging.INFO, "Testing connection")
        try:
            response = self._request(
                "/hotels/xml/availabilities",
                headers=self._headers(credentials, xml_body=False)
            )
        except TransportError as e:
            self._log(logging.ERROR, f"Connection test failed: {e}")
            return ConnectionTestResult(
                success=False,
                message=f"Connection failed: {e}",
                details={"error": str(e), "status_code": e.status_code}
            )

        return ConnectionTestResult(
            success=True,
            message="Successfully connected to Booking.com",
            details={"status_code": response.status_code, "response_time_ms": response.duration_ms}
        )

    def sync_inventory(self, request: SyncRequest) -> SyncResult:
        failed = self.precheck(request, SyncType.INVENTORY)
        if failed:
            return failed

        hotel_id = self.external_property_id(request)

        def push(room: RoomRecord):
            room_id = self.resolve_room_id(request, room.id)
            self._post("/hotels/xml/rooms", request.credentials, self.room_xml(hotel_id, room_id, room))

        return self.run_batch(
            SyncType.INVENTORY,
            self.sanitize_rooms(request.rooms),
            describe=lambda room: f"room {room.room_number}",
            push=push,
            request=request
        )

    def sync_rates(self, request: SyncRequest) -> SyncResult:
        failed = self.precheck(request, SyncType.RATES)
        if failed:
            return failed

        hotel_id = self.external_property_id(request)
        window = self.rate_window()
        currency = self.currency_for(request)

        def push(room: RoomRecord):
            room_id = self.resolve_room_id(request, room.id)
            xml = self.rate_xml(hotel_id, room_id, room, window, currency)
            self._post("/hotels/xml/rates", request.credentials, xml)

        return self.run_batch(
            SyncType.RATES,
            self.sanitize_rooms(request.rooms),
            describe=lambda room: f"room {room.room_number}",
            push=push,
            request=request
        )

    def sync_availability(self, request: SyncRequest) -> SyncResult:
        failed = self.precheck(request, SyncType.AVAILABILITY)
        if failed:
            return failed

        hotel_id = self.external_property_id(request)
        grouped = self.group_availability_by_room(request.availability)

        def push(item):
            room_id, records = item
            xml = self.availability_xml(hotel_id, self.resolve_room_id(request, room_id), records)
            self._post("/hotels/xml/availability", request.credentials, xml)

        return self.run_batch(
            SyncType.AVAILABILITY,
            list(grouped.items()),
            describe=lambda item: f"room {item[0]}",
            push=push,
            weight=lambda item: len(item[1]),
            request=request
        )

    def get_bookings(self, credentials: Dict[str, Any], date_range: DateRange) -> List[ChannelBooking]:
        if self.credential_error(credentials):
            self._log(logging.WARNING, "Skipping booking fetch: missing credentials")
            return []

        try:
            response = self._request(
                "/hotels/xml/reservations",
                headers=self._headers(credentials, xml_body=False),
                params={
                    "checkin_from": self.format_date(date_range.start),
                    "checkin_to": self.format_date(date_range.end),
                }
            )
            return self.parse_bookings(response.data)
        except Exception as e:
            self._log(logging.ERROR, f"Failed to fetch bookings: {e}")
            return []

    def update_booking(self, credentials: Dict[str, Any], booking_id: str, updates: Dict[str, Any]) -> SyncResult:
        error = self.credential_error(credentials)
        if error:
            return SyncResult.failure(error)

        self._log(logging.INFO, f"Updating booking {booking_id}")
        try:
            self._post("/hotels/xml/reservations", credentials, self.booking_update_xml(booking_id, updates))
        except (ChannelRejection, TransportError) as e:
            self._log(logging.WARNING, f"Booking {booking_id} update failed: {e}")
            return SyncResult.failure(f"Booking update failed: {e}")

        return SyncResult.ok(f"Booking {booking_id} updated successfully")

    # ==================
    # Payloads
    # ==================

    @staticmethod
    def room_xml(hotel_id: str, room_id: str, room: RoomRecord) -> str:
        amenities = "".join(f"<amenity>{escape_xml(a)}</amenity>" for a in room.amenities)
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            "<request>"
            f"<hotel_id>{escape_xml(hotel_id)}</hotel_id>"
            "<room>"
            f"<id>{escape_xml(room_id)}</id>"
            f"<name>{escape_xml(room.room_type)}</name>"
            f"<description>{escape_xml(room.description)}</description>"
            f"<max_occupancy>{escape_xml(room.max_occupancy)}</max_occupancy>"
            f"<room_size>{escape_xml(room.size)}</room_size>"
            f"<amenities>{amenities}</amenities>"
            "</room>"
            "</request>"
        )

    def rate_xml(self, hotel_id: str, room_id: str, room: RoomRecord, window: DateRange, currency: str) -> str:
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            "<request>"
            f"<hotel_id>{escape_xml(hotel_id)}</hotel_id>"
            "<rates>"
            f"<room_id>{escape_xml(room_id)}</room_id>"
            f"<date_from>{self.format_date(window.start)}</date_from>"
            f"<date_to>{self.format_date(window.end)}</date_to>"
            f"<rate>{escape_xml(room.base_rate)}</rate>"
            f"<currency>{escape_xml(currency)}</currency>"
            "</rates>"
            "</request>"
        )

    def availability_xml(self, hotel_id: str, room_id: str, records: List[AvailabilityRecord]) -> str:
        dates = "".join(
            f'<date value="{self.format_date(r.date)}" available="{1 if r.available else 0}" '
            f'rooms_to_sell="{r.units}"/>'
            for r in records
        )
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            "<request>"
            f"<hotel_id>{escape_xml(hotel_id)}</hotel_id>"
            "<availability>"
            f"<room_id>{escape_xml(room_id)}</room_id>"
            f"{dates}"
            "</availability>"
            "</request>"
        )

    @staticmethod
    def booking_update_xml(booking_id: str, updates: Dict[str, Any]) -> str:
        notes = updates.get("notes")
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            "<request>"
            f"<reservation_id>{escape_xml(booking_id)}</reservation_id>"
            f"<status>{escape_xml(updates.get('status') or 'confirmed')}</status>"
            f"{f'<notes>{escape_xml(notes)}</notes>' if notes else ''}"
            "</request>"
        )

    def parse_bookings(self, data: Any) -> List[ChannelBooking]:
        if not isinstance(data, str) or not data.strip():
            return []

        root = ElementTree.fromstring(data)
        bookings = []
        for reservation in iter_elements(root, "reservation"):
            reservation_id = find_text(reservation, "id")
            if not reservation_id:
                continue

            first_name = find_text(reservation, "first_name", "")
            last_name = find_text(reservation, "last_name", "")
            guest_name = f"{first_name} {last_name}".strip() or None

            bookings.append(ChannelBooking(
                id=reservation_id,
                channel_booking_id=reservation_id,
                guest_name=guest_name,
                email=find_text(reservation, "email"),
                phone=find_text(reservation, "telephone"),
                check_in=find_text(reservation, "arrival_date"),
                check_out=find_text(reservation, "departure_date"),
                room_type=find_text(reservation, "room_name"),
                adults=to_int(find_text(reservation, "numberofguests")),
                children=to_int(find_text(reservation, "numberofchildren")),
                total_amount=to_float(find_text(reservation, "totalprice")),
                currency=find_text(reservation, "currencycode", self.currency),
                status=find_text(reservation, "status"),
                source=self.channel_type
            ))
        return bookings
