"""
Expedia Connector

JSON REST (EPC v3) with Basic auth. A 2xx body is accepted unless it carries
an `errors` list. Rates are pushed as one entry per day across the horizon.
"""

import logging
from typing import Any, Dict, List, Optional

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
from .base import ChannelConnector, ChannelRejection

DEFAULT_RATE_PLAN_ID = "default"
DEFAULT_ROOM_AREA = 25


class ExpediaConnector(ChannelConnector):
    channel_type = "expedia"
    display_name = "Expedia"
    required_credentials = ("username", "password")
    default_base_url = "https://services.expediapartnercentral.com"
    default_requests_per_minute = 60

    def _headers(self, credentials: Dict[str, Any]) -> Dict[str, str]:
        return {
            "Authorization": self.basic_auth_header(credentials),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @staticmethod
    def is_success(data: Any) -> bool:
        if isinstance(data, dict):
            return not data.get("errors")
        # 204 / empty bodies carry no errors
        return True

    @staticmethod
    def error_message(data: Any) -> str:
        if isinstance(data, dict):
            errors = data.get("errors") or []
            if errors and isinstance(errors[0], dict):
                return errors[0].get("message") or "Unknown error"
            return str(data.get("message") or "Unknown error")
        return "Unknown error"

    def property_path(self, property_id: str, *segments: str) -> str:
        """/epc/v3/properties/<id>/... with every segment percent-encoded"""
        parts = [self.path_segment(part) for part in (property_id,) + segments]
        return "/epc/v3/properties/" + "/".join(parts)

    def _send(self, path: str, credentials: Dict[str, Any], method: str, payload: Any) -> TransportResponse:
        response = self._request(path, method=method, headers=self._headers(credentials), body=payload)
        if not self.is_success(response.data):
            raise ChannelRejection(self.error_message(response.data))
        return response

    def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        error = self.credential_error(credentials)
        if error:
            return ConnectionTestResult(success=False, message=error, details={"error": error})

        self._log(logging.INFO, "Testing connection")
        try:
            response = self._request("/epc/v3/properties", headers=self._headers(credentials))
        except TransportError as e:
            self._log(logging.ERROR, f"Connection test failed: {e}")
            return ConnectionTestResult(
                success=False,
                message=f"Connection failed: {e}",
                details={"error": str(e), "status_code": e.status_code}
            )

        properties = response.data.get("properties") if isinstance(response.data, dict) else None
        return ConnectionTestResult(
            success=True,
            message="Successfully connected to Expedia",
            details={
                "properties_found": len(properties or []),
                "response_time_ms": response.duration_ms,
            }
        )

    def sync_inventory(self, request: SyncRequest) -> SyncResult:
        failed = self.precheck(request, SyncType.INVENTORY)
        if failed:
            return failed

        property_id = self.external_property_id(request)

        def push(room: RoomRecord) -> List[str]:
            room_type_id = self.resolve_room_id(request, room.id)
            response = self._send(
                self.property_path(property_id, "roomTypes"),
                request.credentials,
                "POST",
                self.room_type_payload(room_type_id, room)
            )
            if isinstance(response.data, dict) and response.data.get("roomTypeId"):
                room_type_id = str(response.data["roomTypeId"])

            rate_plan_id = self.resolve_rate_plan_id(request, room.id, DEFAULT_RATE_PLAN_ID)
            warning = self.create_rate_plan(request.credentials, property_id, room_type_id, rate_plan_id, room)
            return [warning] if warning else []

        return self.run_batch(
            SyncType.INVENTORY,
            self.sanitize_rooms(request.rooms),
            describe=lambda room: f"room {room.room_number}",
            push=push,
            request=request
        )

    def create_rate_plan(
        self,
        credentials: Dict[str, Any],
        property_id: str,
        room_type_id: str,
        rate_plan_id: str,
        room: RoomRecord
    ) -> Optional[str]:
        payload = {
            "ratePlanId": rate_plan_id,
            "name": {"value": f"Standard Rate - {room.room_type}"},
            "description": {"value": f"Standard rate plan for {room.room_type}"},
            "status": "Active",
            "type": "Standalone",
            "pricingModel": "PerDayPricing",
            "occupantsForBaseRate": 2,
            "taxInclusive": False,
            "cancelPolicy": {
                "defaultPenalties": [{"deadline": 86400, "perStayFee": "None", "amount": 0}]
            },
        }
        try:
            self._send(
                self.property_path(property_id, "roomTypes", room_type_id, "ratePlans"),
                credentials,
                "POST",
                payload
            )
        except (ChannelRejection, TransportError) as e:
            warning = f"Failed to create rate plan for room {room.room_number}: {e}"
            self._log(logging.WARNING, warning)
            return warning
        return None

    def sync_rates(self, request: SyncRequest) -> SyncResult:
        failed = self.precheck(request, SyncType.RATES)
        if failed:
            return failed

        property_id = self.external_property_id(request)
        window = self.rate_window()
        currency = self.currency_for(request)

        def push(room: RoomRecord):
            room_type_id = self.resolve_room_id(request, room.id)
            rate_plan_id = self.resolve_rate_plan_id(request, room.id, DEFAULT_RATE_PLAN_ID)
            self._send(
                self.property_path(property_id, "roomTypes", room_type_id, "ratePlans", rate_plan_id, "rates"),
                request.credentials,
                "PUT",
                self.rate_payload(room, window, currency)
            )

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

        property_id = self.external_property_id(request)
        grouped = self.group_availability_by_room(request.availability)

        def push(item):
            room_id, records = item
            room_type_id = self.resolve_room_id(request, room_id)
            rate_plan_id = self.resolve_rate_plan_id(request, room_id, DEFAULT_RATE_PLAN_ID)
            self._send(
                self.property_path(property_id, "roomTypes", room_type_id, "ratePlans", rate_plan_id, "availability"),
                request.credentials,
                "PUT",
                self.availability_payload(records)
            )

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
                "/epc/v3/reservations",
                headers=self._headers(credentials),
                params={
                    "checkin": self.format_date(date_range.start),
                    "checkout": self.format_date(date_range.end),
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

        payload = {"status": updates.get("status") or "Confirmed"}
        if updates.get("notes"):
            payload["specialRequests"] = updates["notes"]

        self._log(logging.INFO, f"Updating booking {booking_id}")
        try:
            self._send(f"/epc/v3/reservations/{self.path_segment(booking_id)}", credentials, "PUT", payload)
        except (ChannelRejection, TransportError) as e:
            self._log(logging.WARNING, f"Booking {booking_id} update failed: {e}")
            return SyncResult.failure(f"Booking update failed: {e}")

        return SyncResult.ok(f"Booking {booking_id} updated successfully")

    # ==================
    # Payloads
    # ==================

    @staticmethod
    def room_type_payload(room_type_id: str, room: RoomRecord) -> Dict[str, Any]:
        return {
            "roomTypeId": room_type_id,
            "name": {"value": room.room_type},
            "description": {"value": room.description or f"{room.room_type} room"},
            "maxOccupancy": {
                "adults": room.max_occupancy,
                "children": 0,
                "total": room.max_occupancy,
            },
            "area": {"squareMeters": room.size or DEFAULT_ROOM_AREA},
            "amenities": list(room.amenities),
            "smokingPreference": "NonSmoking",
        }

    def rate_payload(self, room: RoomRecord, window: DateRange, currency: str) -> Dict[str, Any]:
        amount = float(room.base_rate)
        return {
            "rates": [
                {"date": self.format_date(day), "amount": amount, "currency": currency}
                for day in window.days()
            ]
        }

    def availability_payload(self, records: List[AvailabilityRecord]) -> Dict[str, Any]:
        return {
            "availability": [
                {
                    "date": self.format_date(r.date),
                    "available": r.available,
                    "inventory": r.units,
                }
                for r in records
            ]
        }

    def parse_bookings(self, data: Any) -> List[ChannelBooking]:
        if not isinstance(data, dict):
            return []

        bookings = []
        for reservation in data.get("reservations") or []:
            guest = reservation.get("primaryGuest") or {}
            stay = reservation.get("stayDates") or {}
            room_stay = reservation.get("roomStay") or {}
            occupancy = room_stay.get("occupancy") or {}
            total = (reservation.get("charges") or {}).get("total") or {}

            guest_name = f"{guest.get('firstName', '')} {guest.get('lastName', '')}".strip()

            bookings.append(ChannelBooking(
                id=str(reservation.get("reservationId")),
                channel_booking_id=reservation.get("itineraryId"),
                guest_name=guest_name or None,
                email=guest.get("email"),
                phone=guest.get("phone"),
                check_in=stay.get("checkinDate"),
                check_out=stay.get("checkoutDate"),
                room_type=room_stay.get("roomType"),
                adults=occupancy.get("adults"),
                children=occupancy.get("children"),
                total_amount=total.get("amount"),
                currency=total.get("currency", self.currency),
                status=reservation.get("status"),
                source=self.channel_type
            ))
        return bookings
