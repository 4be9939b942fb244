"""
Agoda Connector

SOAP XML. Credentials travel inside each envelope's <Authentication> block,
every call carries its SOAPAction header, and a room type must be followed by
a rate plan before rates can be pushed against it.
"""

import logging
from typing import Any, Dict, List, Optional
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

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"
AGODA_NS = "http://www.agoda.com/xmlapi"
DEFAULT_ROOM_SIZE = 25


class AgodaConnector(ChannelConnector):
    channel_type = "agoda"
    display_name = "Agoda"
    required_credentials = ("hotelId", "username", "password")
    default_base_url = "https://xmlapi.agoda.com"
    default_requests_per_minute = 30

    @staticmethod
    def is_success(data: Any) -> bool:
        if isinstance(data, str):
            return "Success" in data and "<Error" not in data and "Fault>" not in data
        if isinstance(data, dict):
            return data.get("success") is not False and not data.get("error")
        return False

    @staticmethod
    def error_message(data: Any) -> str:
        if isinstance(data, str):
            return extract_tag_message(data, ("Error", "soap:Fault", "Fault", "faultstring"))
        if isinstance(data, dict):
            return str(data.get("error") or data.get("message") or "Unknown error")
        return "Unknown error"

    def _call(self, action: str, envelope: str) -> TransportResponse:
        """POST a SOAP envelope to /apxml/<action>"""
        return self._request(
            f"/apxml/{action}",
            method="POST",
            headers={
                "Content-Type": "application/xml",
                "SOAPAction": f"{AGODA_NS}/{action}",
            },
            body=envelope
        )

    def _call_checked(self, action: str, envelope: str) -> TransportResponse:
        response = self._call(action, envelope)
        if not self.is_success(response.data):
            raise ChannelRejection(self.error_message(response.data))
        return response

    def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        error = self.credential_error(credentials)
        if error:
            return ConnectionTestResult(success=False, message=error, details={"error": error})

        self._log(logging.INFO, "Testing connection")
        try:
            response = self._call("property_list", self.envelope("PropertyListRQ", credentials, ""))
        except TransportError as e:
            self._log(logging.ERROR, f"Connection test failed: {e}")
            return ConnectionTestResult(
                success=False,
                message=f"Connection failed: {e}",
                details={"error": str(e), "status_code": e.status_code}
            )

        return ConnectionTestResult(
            success=True,
            message="Successfully connected to Agoda",
            details={
                "hotel_id": credentials["hotelId"],
                "status_code": response.status_code,
                "response_time_ms": response.duration_ms,
            }
        )

    def sync_inventory(self, request: SyncRequest) -> SyncResult:
        failed = self.precheck(request, SyncType.INVENTORY)
        if failed:
            return failed

        credentials = request.credentials

        def push(room: RoomRecord) -> List[str]:
            room_type_id = self.resolve_room_id(request, room.id)
            self._call_checked("room_type_list", self.room_type_envelope(credentials, room_type_id, room))
            rate_plan_id = self.resolve_rate_plan_id(request, room.id, f"{room_type_id}_standard")
            warning = self.create_rate_plan(credentials, room_type_id, rate_plan_id, room)
            return [warning] if warning else []

        return self.run_batch(
            SyncType.INVENTORY,
            self.sanitize_rooms(request.rooms),
            describe=lambda room: f"room {room.room_number}",
            push=push,
            request=request
        )

    def create_rate_plan(self, credentials: Dict[str, Any], room_type_id: str, rate_plan_id: str, room: RoomRecord) -> Optional[str]:
        """Returns a warning instead of failing the room"""
        try:
            self._call_checked("rate_plan", self.rate_plan_envelope(credentials, room_type_id, rate_plan_id, room))
        except (ChannelRejection, TransportError) as e:
            warning = f"Failed to create rate plan for room {room.room_number}: {e}"
            self._log(logging.WARNING, warning)
            return warning
        return None

    def sync_rates(self, request: SyncRequest) -> SyncResult:
        failed = self.precheck(request, SyncType.RATES)
        if failed:
            return failed

        window = self.rate_window()
        currency = self.currency_for(request)

        def push(room: RoomRecord):
            room_type_id = self.resolve_room_id(request, room.id)
            rate_plan_id = self.resolve_rate_plan_id(request, room.id, f"{room_type_id}_standard")
            envelope = self.rate_update_envelope(request.credentials, rate_plan_id, room, window, currency)
            self._call_checked("rate_update", envelope)

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

        grouped = self.group_availability_by_room(request.availability)

        def push(item):
            room_id, records = item
            room_type_id = self.resolve_room_id(request, room_id)
            rate_plan_id = self.resolve_rate_plan_id(request, room_id, f"{room_type_id}_standard")
            envelope = self.availability_envelope(request.credentials, rate_plan_id, records)
            self._call_checked("availability_update", envelope)

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

        body = (
            "<DateRange>"
            f"<CheckInFrom>{self.format_date(date_range.start)}</CheckInFrom>"
            f"<CheckInTo>{self.format_date(date_range.end)}</CheckInTo>"
            "</DateRange>"
        )
        try:
            response = self._call("reservation_list", self.envelope("ReservationListRQ", credentials, body))
            return self.parse_bookings(response.data)
        except Exception as e:
            self._log(logging.ERROR, f"Failed to fetch bookings: {e}")
            return []

    def update_booking(self, credentials: Dict[str, Any], booking_id: str, updates: Dict[str, Any]) -> SyncResult:
        error = self.credential_error(credentials)
        if error:
            return SyncResult.failure(error)

        notes = updates.get("notes")
        body = (
            "<ReservationUpdate>"
            f"<ReservationId>{escape_xml(booking_id)}</ReservationId>"
            f"<Status>{escape_xml(updates.get('status') or 'Confirmed')}</Status>"
            f"{f'<Notes>{escape_xml(notes)}</Notes>' if notes else ''}"
            "</ReservationUpdate>"
        )

        self._log(logging.INFO, f"Updating booking {booking_id}")
        try:
            self._call_checked("reservation_update", self.envelope("ReservationUpdateRQ", credentials, body))
        except (ChannelRejection, TransportError) as e:
            self._log(logging.WARNING, f"Booking {booking_id} update failed: {e}")
            return SyncResult.failure(f"Booking update failed: {e}")

        return SyncResult.ok(f"Booking {booking_id} updated successfully")

    # ==================
    # Envelopes
    # ==================

    @staticmethod
    def envelope(operation: str, credentials: Dict[str, Any], body: str) -> str:
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<soap:Envelope xmlns:soap="{SOAP_ENVELOPE_NS}">'
            "<soap:Header/>"
            "<soap:Body>"
            f'<{operation} xmlns="{AGODA_NS}">'
            "<Authentication>"
            f"<HotelId>{escape_xml(credentials['hotelId'])}</HotelId>"
            f"<UserName>{escape_xml(credentials['username'])}</UserName>"
            f"<Password>{escape_xml(credentials['password'])}</Password>"
            "</Authentication>"
            f"{body}"
            f"</{operation}>"
            "</soap:Body>"
            "</soap:Envelope>"
        )

    def room_type_envelope(self, credentials: Dict[str, Any], room_type_id: str, room: RoomRecord) -> str:
        amenities = "".join(f"<Amenity>{escape_xml(a)}</Amenity>" for a in room.amenities)
        body = (
            "<RoomType>"
            f"<RoomTypeId>{escape_xml(room_type_id)}</RoomTypeId>"
            f"<RoomTypeName>{escape_xml(room.room_type)}</RoomTypeName>"
            f"<RoomTypeDescription>{escape_xml(room.description or room.room_type)}</RoomTypeDescription>"
            f"<MaxOccupancy>{escape_xml(room.max_occupancy)}</MaxOccupancy>"
            f"<RoomSize>{escape_xml(room.size or DEFAULT_ROOM_SIZE)}</RoomSize>"
            f"<Amenities>{amenities}</Amenities>"
            "</RoomType>"
        )
        return self.envelope("RoomTypeListRQ", credentials, body)

    def rate_plan_envelope(self, credentials: Dict[str, Any], room_type_id: str, rate_plan_id: str, room: RoomRecord) -> str:
        body = (
            "<RatePlan>"
            f"<RatePlanId>{escape_xml(rate_plan_id)}</RatePlanId>"
            f"<RoomTypeId>{escape_xml(room_type_id)}</RoomTypeId>"
            f"<RatePlanName>Standard Rate - {escape_xml(room.room_type)}</RatePlanName>"
            "<CancellationPolicy>"
            "<CancellationDeadline>24</CancellationDeadline>"
            "<CancellationFee>0</CancellationFee>"
            "</CancellationPolicy>"
            "</RatePlan>"
        )
        return self.envelope("RatePlanRQ", credentials, body)

    def rate_update_envelope(self, credentials: Dict[str, Any], rate_plan_id: str, room: RoomRecord, window: DateRange, currency: str) -> str:
        body = (
            "<RateUpdate>"
            f"<RatePlanId>{escape_xml(rate_plan_id)}</RatePlanId>"
            f"<DateFrom>{self.format_date(window.start)}</DateFrom>"
            f"<DateTo>{self.format_date(window.end)}</DateTo>"
            "<Rate>"
            f"<Amount>{escape_xml(room.base_rate)}</Amount>"
            f"<Currency>{escape_xml(currency)}</Currency>"
            "</Rate>"
            "</RateUpdate>"
        )
        return self.envelope("RateUpdateRQ", credentials, body)

    def availability_envelope(self, credentials: Dict[str, Any], rate_plan_id: str, records: List[AvailabilityRecord]) -> str:
        items = "".join(
            "<AvailabilityItem>"
            f"<Date>{self.format_date(r.date)}</Date>"
            f"<Available>{'true' if r.available else 'false'}</Available>"
            f"<Inventory>{r.units}</Inventory>"
            "</AvailabilityItem>"
            for r in records
        )
        body = (
            "<AvailabilityUpdate>"
            f"<RatePlanId>{escape_xml(rate_plan_id)}</RatePlanId>"
            f"<Availability>{items}</Availability>"
            "</AvailabilityUpdate>"
        )
        return self.envelope("AvailabilityUpdateRQ", credentials, body)

    def parse_bookings(self, data: Any) -> List[ChannelBooking]:
        if not isinstance(data, str) or not data.strip():
            return []

        root = ElementTree.fromstring(data)
        bookings = []
        for reservation in iter_elements(root, "Reservation"):
            reservation_id = find_text(reservation, "ReservationId")
            if not reservation_id:
                continue

            bookings.append(ChannelBooking(
                id=reservation_id,
                channel_booking_id=reservation_id,
                guest_name=find_text(reservation, "GuestName"),
                email=find_text(reservation, "Email"),
                phone=find_text(reservation, "Phone"),
                check_in=find_text(reservation, "CheckIn"),
                check_out=find_text(reservation, "CheckOut"),
                room_type=find_text(reservation, "RoomTypeName"),
                adults=to_int(find_text(reservation, "Adults")),
                children=to_int(find_text(reservation, "Children")),
                total_amount=to_float(find_text(reservation, "TotalAmount")),
                currency=find_text(reservation, "Currency", self.currency),
                status=find_text(reservation, "Status"),
                source=self.channel_type
            ))
        return bookings
