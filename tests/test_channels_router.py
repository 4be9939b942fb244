"""
Tests for the Channels API router

The orchestrator dependency is replaced with a mock, so no database or
network is touched.
"""

import pytest
from datetime import date
from unittest.mock import Mock

from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


@pytest.fixture
def orchestrator():
    return Mock()


@pytest.fixture
def client(orchestrator):
    from channel_sync.main import app
    from channel_sync.routers.channels import get_orchestrator

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class TestSyncEndpoints:

    def test_inventory_sync_returns_one_result_per_channel(self, client, orchestrator):
        from channel_sync.services.results import SyncResult, SyncType

        orchestrator.sync_inventory.return_value = [
            SyncResult.ok("Inventory synced", sync_type=SyncType.INVENTORY, count=2, channel_id="c1", property_id="p1"),
            SyncResult.failure("No connector", errors=["connector not implemented"],
                               sync_type=SyncType.INVENTORY, channel_id="c2", property_id="p1"),
        ]

        response = client.post("/api/channels/properties/p1/sync/inventory")

        assert response.status_code == 200
        data = response.json()
        assert data["sync_type"] == "inventory"
        assert [r["channel_id"] for r in data["results"]] == ["c1", "c2"]
        assert data["results"][0]["synced_rooms"] == 2
        assert data["results"][1]["errors"] == ["connector not implemented"]
        orchestrator.sync_inventory.assert_called_once_with("p1", None)

    def test_channel_ids_are_forwarded(self, client, orchestrator):
        orchestrator.sync_rates.return_value = []

        response = client.post("/api/channels/properties/p1/sync/rates", json={"channel_ids": ["c1"]})

        assert response.status_code == 200
        orchestrator.sync_rates.assert_called_once_with("p1", ["c1"])

    def test_unknown_property_is_404(self, client, orchestrator):
        from channel_sync.services.sync_orchestrator import PropertyNotFoundError

        orchestrator.sync_inventory.side_effect = PropertyNotFoundError("missing")

        response = client.post("/api/channels/properties/missing/sync/inventory")

        assert response.status_code == 404
        assert "missing" in response.json()["detail"]

    def test_property_without_rooms_is_400(self, client, orchestrator):
        from channel_sync.services.sync_orchestrator import NoRoomsError

        orchestrator.sync_rates.side_effect = NoRoomsError("p1")

        response = client.post("/api/channels/properties/p1/sync/rates")

        assert response.status_code == 400

    def test_availability_date_range(self, client, orchestrator):
        from channel_sync.services.results import DateRange

        orchestrator.sync_availability.return_value = []

        response = client.post(
            "/api/channels/properties/p1/sync/availability",
            json={"start_date": "2024-05-01", "end_date": "2024-05-31"}
        )

        assert response.status_code == 200
        orchestrator.sync_availability.assert_called_once_with(
            "p1", None, DateRange(start=date(2024, 5, 1), end=date(2024, 5, 31))
        )

    @pytest.mark.parametrize("payload", [
        {"start_date": "2024-05-01"},
        {"start_date": "2024-05-31", "end_date": "2024-05-01"},
    ])
    def test_invalid_availability_range_rejected(self, client, orchestrator, payload):
        response = client.post("/api/channels/properties/p1/sync/availability", json=payload)

        assert response.status_code == 422
        orchestrator.sync_availability.assert_not_called()

    def test_sync_all_groups_by_type(self, client, orchestrator):
        orchestrator.sync_all.return_value = {"inventory": [], "rates": [], "availability": []}

        response = client.post("/api/channels/properties/p1/sync")

        assert response.json() == {"inventory": [], "rates": [], "availability": []}


class TestChannelConfigurationEndpoints:

    def test_credentials_are_never_echoed(self, client, orchestrator):
        orchestrator.update_channel_credentials.return_value = True

        response = client.put(
            "/api/channels/c1/credentials",
            json={"credentials": {"username": "hotel-user", "password": "s3cret"}}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "channel_id": "c1"}
        assert "s3cret" not in response.text
        orchestrator.update_channel_credentials.assert_called_once_with(
            "c1", {"username": "hotel-user", "password": "s3cret"}
        )

    def test_credentials_for_unknown_channel_is_404(self, client, orchestrator):
        orchestrator.update_channel_credentials.return_value = False

        response = client.put("/api/channels/nope/credentials", json={"credentials": {"username": "u"}})

        assert response.status_code == 404

    def test_empty_credentials_rejected(self, client, orchestrator):
        response = client.put("/api/channels/c1/credentials", json={"credentials": {}})

        assert response.status_code == 422

    def test_unknown_status_rejected(self, client, orchestrator):
        response = client.put("/api/channels/c1/status", json={"status": "paused"})

        assert response.status_code == 422
        orchestrator.update_channel_status.assert_not_called()

    def test_status_update_with_configuration(self, client, orchestrator):
        orchestrator.update_channel_status.return_value = True

        response = client.put("/api/channels/c1/status", json={"status": "inactive", "configuration": {"currency": "USD"}})

        assert response.status_code == 200
        assert response.json()["status"] == "inactive"
        orchestrator.update_channel_status.assert_called_once_with("c1", "inactive", configuration={"currency": "USD"})

    def test_connection_test_for_unknown_channel_is_404(self, client, orchestrator):
        orchestrator.channel_store.get_channel_by_id.return_value = None

        response = client.post("/api/channels/nope/test")

        assert response.status_code == 404

    def test_connection_test_with_candidate_credentials(self, client, orchestrator):
        from channel_sync.services.results import ConnectionTestResult

        orchestrator.test_connection.return_value = ConnectionTestResult(success=True, message="Connected")

        response = client.post("/api/channels/c1/test", json={"credentials": {"username": "u", "password": "p"}})

        assert response.status_code == 200
        assert response.json()["success"] is True
        orchestrator.test_connection.assert_called_once_with("c1", {"username": "u", "password": "p"})

    def test_mappings_update(self, client, orchestrator):
        mappings = [{"internal_id": "r1", "channel_id": "BK-101", "is_active": True}]
        orchestrator.update_channel_mappings.return_value = True
        orchestrator.get_channel_mappings.return_value = {"room_mappings": mappings, "rate_mappings": []}

        response = client.put("/api/channels/c1/mappings", json={"room_mappings": [{"internal_id": "r1", "channel_id": "BK-101"}]})

        assert response.status_code == 200
        assert response.json()["room_mappings"] == mappings
        orchestrator.update_channel_mappings.assert_called_once_with("c1", room_mappings=mappings, rate_mappings=None)

    def test_history_limit_is_bounded(self, client, orchestrator):
        response = client.get("/api/channels/c1/history?limit=0")

        assert response.status_code == 422


class TestStatusAndHealth:

    def test_status_view_has_no_credentials(self, client, orchestrator):
        from channel_sync.services.results import ChannelStatusView

        orchestrator.get_sync_status.return_value = {
            "c1": ChannelStatusView(
                channel_id="c1", channel_type="booking-com", name="Booking.com",
                status="active", sync_status="failed", error_message="room 1: timeout"
            )
        }

        response = client.get("/api/channels/properties/p1/status")

        assert response.status_code == 200
        assert response.json()["c1"]["sync_status"] == "failed"
        assert "credentials" not in response.json()["c1"]

    def test_health_echoes_request_id(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc123"})

        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == "abc123"
