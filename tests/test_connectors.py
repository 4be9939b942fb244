"""
Tests for Channel Connectors

Tests cover:
- Credential validation happens before any network call
- Partial / total batch failure semantics and the batch policy
- Throttling before every request
- XML escaping of interpolated values
- Availability grouping by room
- Room / rate mapping resolution
- Vendor specifics: Agoda SOAP + rate plans, Expedia JSON daily rates
- Booking retrieval never raises
"""

import pytest
import json
from datetime import date
from decimal import Decimal
from unittest.mock import Mock

import httpx

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


XML_OK = "<response><ok/></response>"
SOAP_OK = (
    '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
    "<soap:Body><RS><Success/></RS></soap:Body></soap:Envelope>"
)

BOOKING_CREDENTIALS = {"username": "hotel-user", "password": "s3cret"}
AGODA_CREDENTIALS = {"hotelId": "777", "username": "agoda-user", "password": "s3cret"}


def build_connector(connector_cls, handler, max_retries=0, **kwargs):
    """Connector wired to an httpx.MockTransport, with no real sleeping"""
    from channel_sync.services.rate_limiter import RequestThrottle
    from channel_sync.services.transport import ResilientTransport

    client = httpx.Client(transport=httpx.MockTransport(handler))
    transport = ResilientTransport(client=client, sleep=lambda s: None, max_retries=max_retries)
    throttle = RequestThrottle(sleep=lambda s: None)
    return connector_cls(transport=transport, throttle=throttle, base_url="https://channel.test", **kwargs)


def make_rooms(count):
    from channel_sync.services.results import RoomRecord

    return [
        RoomRecord(
            id=f"r{i}",
            room_number=str(i),
            room_type="Deluxe",
            description="Sea view",
            amenities=["wifi"],
            base_rate=Decimal("4500.00")
        )
        for i in range(1, count + 1)
    ]


def make_request(credentials, rooms=None, availability=None, **kwargs):
    from channel_sync.services.results import PropertyRecord, SyncRequest

    return SyncRequest(
        property=PropertyRecord(id="p1", name="Seaside"),
        credentials=dict(credentials),
        rooms=rooms or [],
        availability=availability or [],
        channel_id="c1",
        **kwargs
    )


def xml_ok(request):
    return httpx.Response(200, text=XML_OK, headers={"content-type": "application/xml"})


class TestCredentialValidation:

    @pytest.mark.parametrize("operation", ["sync_inventory", "sync_rates", "sync_availability"])
    def test_missing_credentials_make_no_network_call(self, operation):
        from channel_sync.services.connectors import BookingComConnector
        from channel_sync.services.results import AvailabilityRecord

        transport = Mock()
        throttle = Mock()
        connector = BookingComConnector(transport=transport, throttle=throttle)
        request = make_request(
            {"username": "hotel-user"},
            rooms=make_rooms(2),
            availability=[AvailabilityRecord(room_id="r1", date=date(2024, 5, 1), available=True)]
        )

        result = getattr(connector, operation)(request)

        assert result.success is False
        assert result.errors == ["Missing required credentials: password"]
        transport.request.assert_not_called()
        throttle.throttle.assert_not_called()

    def test_all_missing_fields_are_listed(self):
        from channel_sync.services.connectors import AgodaConnector

        transport = Mock()
        connector = AgodaConnector(transport=transport, throttle=Mock())

        result = connector.test_connection({"username": "agoda-user", "password": ""})

        assert result.success is False
        assert result.message == "Missing required credentials: hotelId, password"
        transport.request.assert_not_called()

    def test_no_rooms_is_a_failure(self):
        from channel_sync.services.connectors import ExpediaConnector

        transport = Mock()
        connector = ExpediaConnector(transport=transport, throttle=Mock())

        result = connector.sync_inventory(make_request(BOOKING_CREDENTIALS, rooms=[]))

        assert result.success is False
        transport.request.assert_not_called()


class TestTestConnection:

    def test_repeated_tests_succeed_without_mutating_requests(self):
        from channel_sync.services.connectors import BookingComConnector

        methods = []

        def handler(request):
            methods.append(request.method)
            assert request.headers["authorization"].startswith("Basic ")
            return xml_ok(request)

        connector = build_connector(BookingComConnector, handler)

        first = connector.test_connection(BOOKING_CREDENTIALS)
        second = connector.test_connection(BOOKING_CREDENTIALS)

        assert first.success is True
        assert second.success is True
        assert methods == ["GET", "GET"]

    def test_auth_failure_is_reported_after_one_attempt(self):
        from channel_sync.services.connectors import ExpediaConnector

        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"message": "bad credentials"})

        connector = build_connector(ExpediaConnector, handler, max_retries=3)

        result = connector.test_connection(BOOKING_CREDENTIALS)

        assert result.success is False
        assert result.details["status_code"] == 401
        assert len(calls) == 1


class TestBatchSemantics:

    def test_rate_sync_continues_past_a_room_that_times_out(self):
        """3 rooms, room 2 times out on every retry: success with 2 rates and one error"""
        from channel_sync.services.connectors import BookingComConnector

        attempts = {"r2": 0}

        def handler(request):
            if b"<room_id>r2</room_id>" in request.content:
                attempts["r2"] += 1
                raise httpx.ReadTimeout("timed out", request=request)
            return xml_ok(request)

        connector = build_connector(BookingComConnector, handler, max_retries=2)

        result = connector.sync_rates(make_request(BOOKING_CREDENTIALS, rooms=make_rooms(3)))

        assert result.success is True
        assert result.synced_rates == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("room 2")
        assert attempts["r2"] == 3

    def test_all_units_failing_fails_the_batch(self):
        from channel_sync.services.connectors import BookingComConnector

        connector = build_connector(BookingComConnector, lambda request: httpx.Response(500))

        result = connector.sync_inventory(make_request(BOOKING_CREDENTIALS, rooms=make_rooms(3)))

        assert result.success is False
        assert len(result.errors) == 3
        assert result.message == "Inventory sync failed completely"

    def test_all_or_nothing_policy_fails_on_any_error(self):
        from channel_sync.services.connectors import BookingComConnector

        def handler(request):
            if b"<id>r1</id>" in request.content:
                return httpx.Response(500)
            return xml_ok(request)

        connector = build_connector(BookingComConnector, handler, batch_policy="all_or_nothing")

        result = connector.sync_inventory(make_request(BOOKING_CREDENTIALS, rooms=make_rooms(3)))

        assert result.success is False
        assert result.synced_rooms == 2
        assert len(result.errors) == 1

    def test_error_payload_in_2xx_counts_as_failure(self):
        from channel_sync.services.connectors import BookingComConnector

        def handler(request):
            return httpx.Response(
                200,
                text="<response><error>Unknown room type</error></response>",
                headers={"content-type": "application/xml"}
            )

        connector = build_connector(BookingComConnector, handler)

        result = connector.sync_inventory(make_request(BOOKING_CREDENTIALS, rooms=make_rooms(1)))

        assert result.success is False
        assert result.errors == ["room 1: Unknown room type"]

    def test_unexpected_exception_is_recorded_and_logged(self, caplog):
        import logging
        from channel_sync.services.connectors import BookingComConnector

        connector = build_connector(BookingComConnector, xml_ok)
        connector.room_xml = Mock(side_effect=[KeyError("boom"), "<request/>"])

        with caplog.at_level(logging.INFO):
            result = connector.sync_inventory(make_request(BOOKING_CREDENTIALS, rooms=make_rooms(2)))

        assert result.success is True
        assert result.synced_rooms == 1
        assert "unexpected error" in result.errors[0]
        levels = {r.levelname for r in caplog.records}
        assert "ERROR" in levels
        assert "INFO" in levels

    def test_every_request_is_throttled_at_channel_ceiling(self):
        from channel_sync.services.connectors import AgodaConnector
        from channel_sync.services.transport import ResilientTransport

        def handler(request):
            return httpx.Response(200, text=SOAP_OK, headers={"content-type": "text/xml"})

        throttle = Mock()
        transport = ResilientTransport(
            client=httpx.Client(transport=httpx.MockTransport(handler)), sleep=lambda s: None
        )
        connector = AgodaConnector(transport=transport, throttle=throttle)

        connector.sync_inventory(make_request(AGODA_CREDENTIALS, rooms=make_rooms(2)))

        # room type + rate plan per room
        assert throttle.throttle.call_count == 4
        throttle.throttle.assert_called_with(30)


class TestAvailabilityGrouping:

    def test_grouping_preserves_first_seen_order(self):
        from channel_sync.services.connectors.base import ChannelConnector
        from channel_sync.services.results import AvailabilityRecord

        records = [
            AvailabilityRecord(room_id="r2", date=date(2024, 5, 1), available=True),
            AvailabilityRecord(room_id="r1", date=date(2024, 5, 1), available=False),
            AvailabilityRecord(room_id="r2", date=date(2024, 5, 2), available=True, inventory=3),
        ]

        grouped = ChannelConnector.group_availability_by_room(records)

        assert list(grouped.keys()) == ["r2", "r1"]
        assert [r.date.day for r in grouped["r2"]] == [1, 2]

    def test_one_push_per_room_counting_records(self):
        from channel_sync.services.connectors import BookingComConnector
        from channel_sync.services.results import AvailabilityRecord

        bodies = []

        def handler(request):
            bodies.append(request.content.decode())
            return xml_ok(request)

        connector = build_connector(BookingComConnector, handler)
        availability = [
            AvailabilityRecord(room_id="r1", date=date(2024, 5, 1), available=True),
            AvailabilityRecord(room_id="r2", date=date(2024, 5, 1), available=False),
            AvailabilityRecord(room_id="r1", date=date(2024, 5, 2), available=True, inventory=4),
        ]

        result = connector.sync_availability(make_request(BOOKING_CREDENTIALS, availability=availability))

        assert result.success is True
        assert result.synced_inventory == 3
        assert len(bodies) == 2
        assert "<room_id>r1</room_id>" in bodies[0]
        assert 'rooms_to_sell="4"' in bodies[0]
        assert "<room_id>r2</room_id>" in bodies[1]
        assert 'available="0"' in bodies[1]


class TestEscapingAndMappings:

    def test_xml_values_are_entity_escaped(self):
        from channel_sync.services.connectors import BookingComConnector
        from channel_sync.services.results import RoomRecord

        room = RoomRecord(
            id="r1",
            room_number="1",
            room_type='Suite <"King"> & Co\'s',
            amenities=["tea & coffee"]
        )

        xml = BookingComConnector.room_xml("h1", "r1", room)

        assert "&lt;&quot;King&quot;&gt; &amp; Co&#x27;s" in xml
        assert "<amenity>tea &amp; coffee</amenity>" in xml
        assert '<"King">' not in xml

    def test_agoda_credentials_are_escaped_in_envelope(self):
        from channel_sync.services.connectors import AgodaConnector

        envelope = AgodaConnector.envelope(
            "PropertyListRQ",
            {"hotelId": "777", "username": "a&b", "password": "<pw>"},
            ""
        )

        assert "<UserName>a&amp;b</UserName>" in envelope
        assert "<Password>&lt;pw&gt;</Password>" in envelope

    def test_active_room_mapping_replaces_internal_id(self):
        from channel_sync.services.connectors import BookingComConnector

        bodies = []

        def handler(request):
            bodies.append(request.content.decode())
            return xml_ok(request)

        connector = build_connector(BookingComConnector, handler)
        request = make_request(
            BOOKING_CREDENTIALS,
            rooms=make_rooms(2),
            room_mappings=[
                {"internal_id": "r1", "channel_id": "BK-101", "is_active": True},
                {"internal_id": "r2", "channel_id": "BK-102", "is_active": False},
            ]
        )

        connector.sync_inventory(request)

        assert "<id>BK-101</id>" in bodies[0]
        assert "<id>r2</id>" in bodies[1]


class TestAgoda:

    def test_inventory_creates_rate_plan_after_each_room_type(self):
        from channel_sync.services.connectors import AgodaConnector

        calls = []

        def handler(request):
            calls.append((request.url.path, request.headers.get("soapaction")))
            return httpx.Response(200, text=SOAP_OK, headers={"content-type": "text/xml"})

        connector = build_connector(AgodaConnector, handler)

        result = connector.sync_inventory(make_request(AGODA_CREDENTIALS, rooms=make_rooms(2)))

        assert result.success is True
        assert result.synced_rooms == 2
        assert [path for path, _ in calls] == [
            "/apxml/room_type_list", "/apxml/rate_plan",
            "/apxml/room_type_list", "/apxml/rate_plan",
        ]
        assert calls[1][1] == "http://www.agoda.com/xmlapi/rate_plan"

    def test_rate_plan_failure_is_a_warning(self):
        from channel_sync.services.connectors import AgodaConnector

        def handler(request):
            if request.url.path == "/apxml/rate_plan":
                return httpx.Response(400, text="<Error>Duplicate rate plan</Error>")
            return httpx.Response(200, text=SOAP_OK, headers={"content-type": "text/xml"})

        connector = build_connector(AgodaConnector, handler)

        result = connector.sync_inventory(make_request(AGODA_CREDENTIALS, rooms=make_rooms(1)))

        assert result.success is True
        assert result.synced_rooms == 1
        assert result.errors == []
        assert len(result.warnings) == 1
        assert "rate plan" in result.warnings[0]

    def test_rates_target_standard_rate_plan(self):
        from channel_sync.services.connectors import AgodaConnector

        bodies = []

        def handler(request):
            bodies.append(request.content.decode())
            return httpx.Response(200, text=SOAP_OK, headers={"content-type": "text/xml"})

        connector = build_connector(AgodaConnector, handler, currency="USD")

        result = connector.sync_rates(make_request(AGODA_CREDENTIALS, rooms=make_rooms(1)))

        assert result.synced_rates == 1
        assert "<RatePlanId>r1_standard</RatePlanId>" in bodies[0]
        assert "<Currency>USD</Currency>" in bodies[0]

    def test_response_without_success_marker_fails(self):
        from channel_sync.services.connectors import AgodaConnector

        def handler(request):
            return httpx.Response(200, text="<soap:Envelope><Error>Auth</Error></soap:Envelope>")

        connector = build_connector(AgodaConnector, handler)

        result = connector.sync_rates(make_request(AGODA_CREDENTIALS, rooms=make_rooms(1)))

        assert result.success is False
        assert result.errors == ["room 1: Auth"]


class TestExpedia:

    def test_rates_are_pushed_as_daily_entries(self):
        from channel_sync.services.connectors import ExpediaConnector

        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={})

        connector = build_connector(ExpediaConnector, handler, horizon_days=2)

        result = connector.sync_rates(make_request(BOOKING_CREDENTIALS, rooms=make_rooms(1)))

        assert result.success is True
        method, path, payload = seen[0]
        assert method == "PUT"
        assert path == "/epc/v3/properties/p1/roomTypes/r1/ratePlans/default/rates"
        assert len(payload["rates"]) == 3
        assert payload["rates"][0] == {"date": date.today().isoformat(), "amount": 4500.0, "currency": "INR"}

    def test_errors_in_body_fail_the_unit(self):
        from channel_sync.services.connectors import ExpediaConnector

        def handler(request):
            return httpx.Response(200, json={"errors": [{"message": "Invalid room type"}]})

        connector = build_connector(ExpediaConnector, handler)

        result = connector.sync_rates(make_request(BOOKING_CREDENTIALS, rooms=make_rooms(1)))

        assert result.success is False
        assert result.errors == ["room 1: Invalid room type"]

    def test_rate_plan_uses_room_type_id_from_response(self):
        from channel_sync.services.connectors import ExpediaConnector

        paths = []

        def handler(request):
            paths.append(request.url.path)
            if request.url.path.endswith("/roomTypes"):
                return httpx.Response(201, json={"roomTypeId": "EXP-RT-9"})
            return httpx.Response(201, json={})

        connector = build_connector(ExpediaConnector, handler)
        request = make_request(BOOKING_CREDENTIALS, rooms=make_rooms(1), configuration={"propertyId": "EXP-1"})

        result = connector.sync_inventory(request)

        assert result.success is True
        assert paths == [
            "/epc/v3/properties/EXP-1/roomTypes",
            "/epc/v3/properties/EXP-1/roomTypes/EXP-RT-9/ratePlans",
        ]

    def test_booking_id_cannot_escape_its_path_segment(self):
        from channel_sync.services.connectors import ExpediaConnector

        seen = []

        def handler(request):
            seen.append((request.method, request.url.raw_path, request.url.query))
            return httpx.Response(200, json={})

        connector = build_connector(ExpediaConnector, handler)

        result = connector.update_booking(BOOKING_CREDENTIALS, "R1/../../properties/999?x=", {"status": "Cancelled"})

        assert result.success is True
        assert seen == [("PUT", b"/epc/v3/reservations/R1%2F..%2F..%2Fproperties%2F999%3Fx%3D", b"")]

    def test_property_and_room_ids_are_escaped(self):
        from channel_sync.services.connectors import ExpediaConnector

        paths = []

        def handler(request):
            paths.append(request.url.raw_path)
            return httpx.Response(200, json={})

        connector = build_connector(ExpediaConnector, handler, horizon_days=1)
        request = make_request(BOOKING_CREDENTIALS, rooms=make_rooms(1), configuration={"propertyId": "EXP 1/2"})

        result = connector.sync_rates(request)

        assert result.success is True
        assert paths == [b"/epc/v3/properties/EXP%201%2F2/roomTypes/r1/ratePlans/default/rates"]

    @pytest.mark.parametrize("value,expected", [
        ("EXP-1", "EXP-1"),
        ("a/b", "a%2Fb"),
        ("..", "%2E%2E"),
        ("v1..2", "v1..2"),
        ("x?y=1#z", "x%3Fy%3D1%23z"),
        (42, "42"),
    ])
    def test_path_segment(self, value, expected):
        from channel_sync.services.connectors.base import ChannelConnector

        assert ChannelConnector.path_segment(value) == expected


class TestBookings:

    def test_booking_com_reservations_are_parsed(self):
        from channel_sync.services.connectors import BookingComConnector
        from channel_sync.services.results import DateRange

        reservations = (
            "<reservations><reservation>"
            "<id>BK-1</id><status>new</status>"
            "<customer><first_name>Asha</first_name><last_name>Rao</last_name>"
            "<email>asha@example.com</email></customer>"
            "<room><arrival_date>2024-05-01</arrival_date><departure_date>2024-05-03</departure_date>"
            "<room_name>Deluxe</room_name><numberofguests>2</numberofguests></room>"
            "<totalprice>9000.00</totalprice><currencycode>INR</currencycode>"
            "</reservation></reservations>"
        )
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, text=reservations, headers={"content-type": "application/xml"})

        connector = build_connector(BookingComConnector, handler)

        bookings = connector.get_bookings(
            BOOKING_CREDENTIALS, DateRange(start=date(2024, 5, 1), end=date(2024, 5, 31))
        )

        assert seen["params"] == {"checkin_from": "2024-05-01", "checkin_to": "2024-05-31"}
        assert len(bookings) == 1
        booking = bookings[0]
        assert booking.id == "BK-1"
        assert booking.guest_name == "Asha Rao"
        assert booking.adults == 2
        assert booking.total_amount == 9000.0
        assert booking.source == "booking-com"

    def test_expedia_reservations_are_parsed(self):
        from channel_sync.services.connectors import ExpediaConnector
        from channel_sync.services.results import DateRange

        payload = {"reservations": [{
            "reservationId": "EX-1",
            "itineraryId": "IT-9",
            "primaryGuest": {"firstName": "Ravi", "lastName": "K", "email": "r@example.com"},
            "stayDates": {"checkinDate": "2024-06-01", "checkoutDate": "2024-06-02"},
            "roomStay": {"roomType": "Suite", "occupancy": {"adults": 2, "children": 1}},
            "charges": {"total": {"amount": 120.5, "currency": "USD"}},
            "status": "Booked",
        }]}

        connector = build_connector(ExpediaConnector, lambda request: httpx.Response(200, json=payload))

        bookings = connector.get_bookings(BOOKING_CREDENTIALS, DateRange.forward(30))

        assert bookings[0].channel_booking_id == "IT-9"
        assert bookings[0].children == 1
        assert bookings[0].currency == "USD"

    @pytest.mark.parametrize("connector_name,credentials", [
        ("BookingComConnector", BOOKING_CREDENTIALS),
        ("AgodaConnector", AGODA_CREDENTIALS),
        ("ExpediaConnector", BOOKING_CREDENTIALS),
    ])
    def test_get_bookings_returns_empty_list_on_error(self, connector_name, credentials):
        from channel_sync.services import connectors
        from channel_sync.services.results import DateRange

        connector = build_connector(getattr(connectors, connector_name), lambda request: httpx.Response(503))

        assert connector.get_bookings(credentials, DateRange.forward(7)) == []

    def test_malformed_xml_returns_empty_list(self):
        from channel_sync.services.connectors import AgodaConnector
        from channel_sync.services.results import DateRange

        connector = build_connector(AgodaConnector, lambda request: httpx.Response(200, text="<broken"))

        assert connector.get_bookings(AGODA_CREDENTIALS, DateRange.forward(7)) == []

    def test_update_booking_escapes_notes(self):
        from channel_sync.services.connectors import BookingComConnector

        bodies = []

        def handler(request):
            bodies.append(request.content.decode())
            return xml_ok(request)

        connector = build_connector(BookingComConnector, handler)

        result = connector.update_booking(BOOKING_CREDENTIALS, "BK-1", {"status": "cancelled", "notes": "late <arrival>"})

        assert result.success is True
        assert "<status>cancelled</status>" in bodies[0]
        assert "<notes>late &lt;arrival&gt;</notes>" in bodies[0]
