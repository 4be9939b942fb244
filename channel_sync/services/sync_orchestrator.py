"""
Sync Orchestrator

Runs one sync type against every configured channel of a property:

    load property data -> resolve channels -> for each channel:
        registry lookup -> mark syncing -> connector call -> record result

Channels are processed sequentially. A missing connector or a crashing
connector turns into a failed result for that channel only; the loop always
continues. Status writes go through the channel store so they are visible
while the call is in flight.
"""

import time
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..config import Settings, settings as default_settings
from ..models import Channel, ChannelStatus
from ..utils.logging_config import get_logger, sync_context
from ..utils.sanitization import mask_credentials
from .registry import ChannelRegistry, get_default_registry
from .results import (
    AvailabilityRecord,
    ChannelBooking,
    ChannelStatusView,
    ConnectionTestResult,
    DateRange,
    PropertyRecord,
    RoomRecord,
    SyncRequest,
    SyncResult,
    SyncType,
)
from .stores import SqlChannelStore, SqlPropertyStore

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

CONNECTOR_NOT_IMPLEMENTED = "connector not implemented"


class SyncPreconditionError(ValueError):
    """The whole sync call cannot start"""


class PropertyNotFoundError(SyncPreconditionError):
    def __init__(self, property_id: str):
        super().__init__(f"Property {property_id} not found")
        self.property_id = property_id


class NoRoomsError(SyncPreconditionError):
    def __init__(self, property_id: str):
        super().__init__(f"Property {property_id} has no rooms to sync")
        self.property_id = property_id


class SyncOrchestrator:
    def __init__(self, property_store, channel_store, registry: ChannelRegistry, config: Optional[Settings] = None):
        self.property_store = property_store
        self.channel_store = channel_store
        self.registry = registry
        self.config = config or default_settings

    # ==================
    # Sync operations
    # ==================

    def sync_inventory(self, property_id: str, channel_ids: Optional[Iterable[str]] = None) -> List[SyncResult]:
        prop = self._load_property(property_id)
        rooms = self._load_rooms(property_id)
        return self._run(SyncType.INVENTORY, prop, channel_ids, rooms=rooms)

    def sync_rates(self, property_id: str, channel_ids: Optional[Iterable[str]] = None) -> List[SyncResult]:
        prop = self._load_property(property_id)
        rooms = self._load_rooms(property_id)
        return self._run(SyncType.RATES, prop, channel_ids, rooms=rooms)

    def sync_availability(
        self,
        property_id: str,
        channel_ids: Optional[Iterable[str]] = None,
        date_range: Optional[DateRange] = None
    ) -> List[SyncResult]:
        prop = self._load_property(property_id)
        date_range = date_range or DateRange.forward(self.config.sync_horizon_days)
        availability = self.property_store.get_availability(property_id, date_range)
        return self._run(
            SyncType.AVAILABILITY,
            prop,
            channel_ids,
            availability=availability,
            date_range=date_range
        )

    def sync_all(self, property_id: str, channel_ids: Optional[Iterable[str]] = None) -> Dict[str, List[SyncResult]]:
        """Inventory, then rates, then availability"""
        channel_ids = list(channel_ids) if channel_ids is not None else None
        operations = [
            (SyncType.INVENTORY, self.sync_inventory),
            (SyncType.RATES, self.sync_rates),
            (SyncType.AVAILABILITY, self.sync_availability),
        ]

        results: Dict[str, List[SyncResult]] = {}
        for sync_type, operation in operations:
            try:
                results[sync_type.value] = operation(property_id, channel_ids)
            except SyncPreconditionError as e:
                logger.warning(f"[property {property_id}] Skipping {sync_type.value} sync: {e}")
                results[sync_type.value] = []
        return results

    # ==================
    # Connections & status
    # ==================

    def test_connection(self, channel_id: str, credentials: Optional[Dict[str, Any]] = None) -> ConnectionTestResult:
        channel = self.channel_store.get_channel_by_id(channel_id)
        if not channel:
            return ConnectionTestResult(success=False, message=f"Channel {channel_id} not found")

        connector = self.registry.get(channel.channel_type)
        if connector is None:
            return ConnectionTestResult(
                success=False,
                message=CONNECTOR_NOT_IMPLEMENTED,
                details={"channel_type": channel.channel_type}
            )

        credentials = credentials if credentials is not None else dict(channel.credentials or {})
        logger.info(
            f"[channel {channel_id}] Testing {channel.channel_type} connection "
            f"with {mask_credentials(credentials)}"
        )
        try:
            return connector.test_connection(credentials)
        except Exception as e:
            logger.error(f"[channel {channel_id}] Connection test crashed: {e}", exc_info=True)
            return ConnectionTestResult(success=False, message=f"Connection failed: {e}", details={"error": str(e)})

    def test_all_connections(self, property_id: str) -> Dict[str, ConnectionTestResult]:
        return {
            channel.id: self.test_connection(channel.id)
            for channel in self._active_channels(property_id)
        }

    def get_sync_status(self, property_id: str) -> Dict[str, ChannelStatusView]:
        return {
            channel.id: ChannelStatusView(
                channel_id=channel.id,
                channel_type=channel.channel_type,
                name=channel.name,
                status=channel.status,
                sync_status=channel.sync_status,
                last_sync=channel.last_sync,
                last_sync_type=channel.last_sync_type,
                error_message=channel.error_message,
                last_result=channel.last_result
            )
            for channel in self.channel_store.list_channels(property_id)
        }

    def get_sync_history(self, channel_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return [
            {
                "id": log.id,
                "sync_type": log.sync_type,
                "success": log.success,
                "message": log.message,
                "synced_rooms": log.synced_rooms,
                "synced_rates": log.synced_rates,
                "synced_inventory": log.synced_inventory,
                "errors": log.errors or [],
                "warnings": log.warnings or [],
                "started_at": log.started_at.isoformat() if log.started_at else None,
                "finished_at": log.finished_at.isoformat() if log.finished_at else None,
                "duration_ms": log.duration_ms,
            }
            for log in self.channel_store.get_sync_history(channel_id, limit=limit)
        ]

    # ==================
    # Channel configuration
    # ==================

    def update_channel_credentials(self, channel_id: str, credentials: Dict[str, Any]) -> bool:
        channel = self.channel_store.get_channel_by_id(channel_id)
        if not channel:
            return False
        self.channel_store.update_credentials(channel, credentials)
        logger.info(f"[channel {channel_id}] Credentials updated: {mask_credentials(credentials)}")
        return True

    def update_channel_status(self, channel_id: str, status: str, configuration: Optional[Dict[str, Any]] = None) -> bool:
        """Set the channel status, replacing its configuration map when one is given"""
        channel = self.channel_store.get_channel_by_id(channel_id)
        if not channel:
            return False
        self.channel_store.update_status(channel, status, configuration=configuration)
        logger.info(f"[channel {channel_id}] Status set to {status}")
        return True

    def get_channel_mappings(self, channel_id: str) -> Optional[Dict[str, List[Dict[str, Any]]]]:
        channel = self.channel_store.get_channel_by_id(channel_id)
        if not channel:
            return None
        return self.channel_store.get_mappings(channel)

    def update_channel_mappings(
        self,
        channel_id: str,
        room_mappings: Optional[List[Dict[str, Any]]] = None,
        rate_mappings: Optional[List[Dict[str, Any]]] = None
    ) -> bool:
        channel = self.channel_store.get_channel_by_id(channel_id)
        if not channel:
            return False
        self.channel_store.update_mappings(channel, room_mappings=room_mappings, rate_mappings=rate_mappings)
        return True

    # ==================
    # Bookings
    # ==================

    def fetch_bookings(
        self,
        property_id: str,
        date_range: Optional[DateRange] = None,
        channel_ids: Optional[Iterable[str]] = None
    ) -> List[ChannelBooking]:
        """Pull bookings from every active channel with a connector, for reconciliation"""
        self._load_property(property_id)
        date_range = date_range or DateRange.forward(self.config.sync_horizon_days)

        bookings: List[ChannelBooking] = []
        for channel in self._target_channels(property_id, channel_ids):
            connector = self.registry.get(channel.channel_type)
            if connector is None:
                logger.warning(f"[channel {channel.id}] No connector for {channel.channel_type}, skipping bookings")
                continue

            with sync_context(property_id, channel.id):
                fetched = connector.get_bookings(dict(channel.credentials or {}), date_range)

            for booking in fetched:
                booking.channel_id = channel.id
                booking.source = booking.source or channel.channel_type
            logger.info(f"[channel {channel.id}] Fetched {len(fetched)} bookings")
            bookings.extend(fetched)

        return bookings

    def update_booking(self, property_id: str, channel_id: str, booking_id: str, updates: Dict[str, Any]) -> SyncResult:
        channel = self.channel_store.get_channel(property_id, channel_id)
        if not channel:
            return SyncResult.failure(f"Channel {channel_id} not found", channel_id=channel_id, property_id=property_id)

        connector = self.registry.get(channel.channel_type)
        if connector is None:
            return SyncResult.failure(
                f"No connector registered for channel type {channel.channel_type}",
                errors=[CONNECTOR_NOT_IMPLEMENTED],
                channel_id=channel_id,
                property_id=property_id
            )

        try:
            result = connector.update_booking(dict(channel.credentials or {}), booking_id, updates)
        except Exception as e:
            logger.error(f"[channel {channel_id}] Booking {booking_id} update crashed: {e}", exc_info=True)
            result = SyncResult.failure(f"Booking update failed: {e}")

        return replace(result, channel_id=channel_id, property_id=property_id)

    # ==================
    # Internals
    # ==================

    def _load_property(self, property_id: str) -> PropertyRecord:
        prop = self.property_store.get_property(property_id)
        if not prop:
            raise PropertyNotFoundError(property_id)
        return prop

    def _load_rooms(self, property_id: str) -> List[RoomRecord]:
        rooms = self.property_store.get_rooms(property_id)
        if not rooms:
            raise NoRoomsError(property_id)
        return rooms

    def _target_channels(self, property_id: str, channel_ids: Optional[Iterable[str]]) -> List[Channel]:
        channels = self._active_channels(property_id)
        if channel_ids is not None:
            wanted = set(channel_ids)
            channels = [c for c in channels if c.id in wanted]
        return channels

    def _active_channels(self, property_id: str) -> List[Channel]:
        return [
            c for c in self.channel_store.list_channels(property_id)
            if c.status != ChannelStatus.INACTIVE.value
        ]

    def _run(
        self,
        sync_type: SyncType,
        prop: PropertyRecord,
        channel_ids: Optional[Iterable[str]],
        rooms: Optional[List[RoomRecord]] = None,
        availability: Optional[List[AvailabilityRecord]] = None,
        date_range: Optional[DateRange] = None
    ) -> List[SyncResult]:
        channels = self._target_channels(prop.id, channel_ids)
        logger.info(f"[property {prop.id}] Starting {sync_type.value} sync for {len(channels)} channels")

        results = []
        for channel in channels:
            with sync_context(prop.id, channel.id):
                results.append(self._sync_channel(channel, sync_type, prop, rooms, availability, date_range))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"[property {prop.id}] {sync_type.value} sync done: {succeeded}/{len(results)} channels succeeded")
        return results

    def _sync_channel(
        self,
        channel: Channel,
        sync_type: SyncType,
        prop: PropertyRecord,
        rooms: Optional[List[RoomRecord]],
        availability: Optional[List[AvailabilityRecord]],
        date_range: Optional[DateRange]
    ) -> SyncResult:
        connector = self.registry.get(channel.channel_type)
        if connector is None:
            logger.warning(f"[channel {channel.id}] No connector registered for {channel.channel_type}")
            return SyncResult.failure(
                f"No connector registered for channel type {channel.channel_type}",
                errors=[CONNECTOR_NOT_IMPLEMENTED],
                sync_type=sync_type,
                channel_id=channel.id,
                property_id=prop.id
            )

        request = SyncRequest(
            property=prop,
            credentials=dict(channel.credentials or {}),
            configuration=dict(channel.configuration or {}),
            # Connectors may fill display defaults on rooms, so each gets its own copies
            rooms=[replace(room) for room in rooms or []],
            availability=list(availability or []),
            date_range=date_range,
            room_mappings=list(channel.room_mappings or []),
            rate_mappings=list(channel.rate_mappings or []),
            channel_id=channel.id
        )
        operations = {
            SyncType.INVENTORY: connector.sync_inventory,
            SyncType.RATES: connector.sync_rates,
            SyncType.AVAILABILITY: connector.sync_availability,
        }

        started_at = datetime.utcnow()
        start_time = time.time()
        self.channel_store.mark_syncing(channel, sync_type.value)

        try:
            result = operations[sync_type](request)
        except Exception as e:
            logger.error(f"[channel {channel.id}] {sync_type.value} sync crashed: {e}", exc_info=True)
            result = SyncResult.failure(f"{sync_type.value.capitalize()} sync failed: {e}", errors=[str(e) or type(e).__name__])

        result = self._tag(result, channel, prop, sync_type)
        self.channel_store.record_result(channel, result, started_at)

        structured_logger.sync_finished(
            channel_id=channel.id,
            sync_type=sync_type.value,
            success=result.success,
            synced=result.synced_count,
            error_count=len(result.errors),
            duration_ms=round((time.time() - start_time) * 1000, 2)
        )
        return result

    @staticmethod
    def _tag(result: SyncResult, channel: Channel, prop: PropertyRecord, sync_type: SyncType) -> SyncResult:
        """Stamp channel, property and sync type onto a connector's result"""
        tagged_type = result.sync_type
        if tagged_type is None and not result.success:
            tagged_type = sync_type
        return replace(result, channel_id=channel.id, property_id=prop.id, sync_type=tagged_type)


def build_orchestrator(db, registry: Optional[ChannelRegistry] = None, config: Optional[Settings] = None) -> SyncOrchestrator:
    """Orchestrator over SQL stores bound to one session"""
    return SyncOrchestrator(
        property_store=SqlPropertyStore(db),
        channel_store=SqlChannelStore(db),
        registry=registry or get_default_registry(),
        config=config
    )
