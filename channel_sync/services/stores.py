"""
SQL-backed Stores

PropertyStore reads the property, room and availability records the sync
engine publishes. ChannelStore owns channel configuration, sync status and
the sync audit log. Both wrap a SQLAlchemy session handed in by the caller.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import Channel, ChannelStatus, ChannelSyncLog, Property, Room, RoomAvailability, SyncStatus
from .results import AvailabilityRecord, DateRange, PropertyRecord, RoomRecord, SyncResult

logger = logging.getLogger(__name__)


class SqlPropertyStore:
    """Read-only access to properties, rooms and availability"""

    def __init__(self, db: Session):
        self.db = db

    def get_property(self, property_id: str) -> Optional[PropertyRecord]:
        prop = self.db.query(Property).filter(Property.id == property_id).first()
        if not prop:
            return None
        return PropertyRecord(id=prop.id, name=prop.name, channel_ids=dict(prop.channel_ids or {}))

    def get_rooms(self, property_id: str) -> List[RoomRecord]:
        rooms = self.db.query(Room).filter(
            Room.property_id == property_id,
            Room.is_active == True
        ).order_by(Room.room_number).all()

        return [
            RoomRecord(
                id=room.id,
                room_number=room.room_number,
                room_type=room.room_type,
                description=room.description,
                max_occupancy=room.max_occupancy or 2,
                size=room.size,
                amenities=list(room.amenities or []),
                base_rate=Decimal(str(room.base_rate or 0))
            )
            for room in rooms
        ]

    def get_availability(self, property_id: str, date_range: DateRange) -> List[AvailabilityRecord]:
        rows = self.db.query(RoomAvailability).join(Room).filter(
            Room.property_id == property_id,
            RoomAvailability.date >= date_range.start,
            RoomAvailability.date <= date_range.end
        ).order_by(Room.room_number, RoomAvailability.date).all()

        return [
            AvailabilityRecord(
                room_id=row.room_id,
                date=row.date,
                available=bool(row.available),
                inventory=row.inventory
            )
            for row in rows
        ]


class SqlChannelStore:
    """Channel configuration, sync status and audit history"""

    def __init__(self, db: Session):
        self.db = db

    # ==================
    # Lookups
    # ==================

    def list_channels(self, property_id: str) -> List[Channel]:
        return self.db.query(Channel).filter(
            Channel.property_id == property_id
        ).order_by(Channel.created_at, Channel.id).all()

    def get_channel(self, property_id: str, channel_id: str) -> Optional[Channel]:
        return self.db.query(Channel).filter(
            Channel.property_id == property_id,
            Channel.id == channel_id
        ).first()

    def get_channel_by_id(self, channel_id: str) -> Optional[Channel]:
        return self.db.query(Channel).filter(Channel.id == channel_id).first()

    def list_property_ids_with_active_channels(self) -> List[str]:
        rows = self.db.query(Channel.property_id).filter(
            Channel.status == ChannelStatus.ACTIVE.value
        ).distinct().all()
        return sorted(row[0] for row in rows)

    # ==================
    # Sync status
    # ==================

    def mark_syncing(self, channel: Channel, sync_type: str) -> None:
        channel.sync_status = SyncStatus.SYNCING.value
        channel.last_sync_type = sync_type
        self.db.commit()

    def record_result(self, channel: Channel, result: SyncResult, started_at: Optional[datetime] = None) -> ChannelSyncLog:
        """Persist the outcome on the channel and append an audit row"""
        finished_at = datetime.utcnow()
        sync_type = result.sync_type.value if result.sync_type else (channel.last_sync_type or "unknown")

        channel.sync_status = SyncStatus.SUCCESS.value if result.success else SyncStatus.FAILED.value
        channel.last_sync = finished_at
        channel.last_sync_type = sync_type
        channel.error_message = None if result.success else "; ".join(result.errors) or result.message
        channel.last_result = result.to_dict()

        log = ChannelSyncLog(
            channel_id=channel.id,
            property_id=channel.property_id,
            sync_type=sync_type,
            success=result.success,
            message=result.message,
            synced_rooms=result.synced_rooms,
            synced_rates=result.synced_rates,
            synced_inventory=result.synced_inventory,
            errors=list(result.errors),
            warnings=list(result.warnings),
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=int((finished_at - started_at).total_seconds() * 1000) if started_at else None
        )
        self.db.add(log)
        self.db.commit()
        return log

    def get_sync_history(self, channel_id: str, limit: int = 50) -> List[ChannelSyncLog]:
        return self.db.query(ChannelSyncLog).filter(
            ChannelSyncLog.channel_id == channel_id
        ).order_by(ChannelSyncLog.finished_at.desc()).limit(limit).all()

    # ==================
    # Configuration
    # ==================

    def update_credentials(self, channel: Channel, credentials: Dict[str, Any]) -> None:
        channel.credentials = dict(credentials)
        self.db.commit()

    def update_status(self, channel: Channel, status: str, configuration: Optional[Dict[str, Any]] = None) -> None:
        channel.status = ChannelStatus(status).value
        if configuration is not None:
            channel.configuration = dict(configuration)
        self.db.commit()

    def get_mappings(self, channel: Channel) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "room_mappings": list(channel.room_mappings or []),
            "rate_mappings": list(channel.rate_mappings or []),
        }

    def update_mappings(
        self,
        channel: Channel,
        room_mappings: Optional[List[Dict[str, Any]]] = None,
        rate_mappings: Optional[List[Dict[str, Any]]] = None
    ) -> None:
        # JSON columns only notice reassignment, not in-place mutation
        if room_mappings is not None:
            channel.room_mappings = [dict(m) for m in room_mappings]
        if rate_mappings is not None:
            channel.rate_mappings = [dict(m) for m in rate_mappings]
        self.db.commit()
