"""
Channel Models

Models for OTA distribution channels configured per property:
- Channel: credentials, configuration, mappings and sync status
- ChannelSyncLog: audit trail of every sync attempt against a channel
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, ForeignKey, DateTime, Integer, Boolean, JSON, Index
from sqlalchemy.orm import relationship
from ..database import Base
import enum


class ChannelStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    TESTING = "testing"


class SyncStatus(str, enum.Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    SUCCESS = "success"
    FAILED = "failed"


class Channel(Base):
    """
    A configured external distribution endpoint for one property.

    `channel_type` selects the connector in the channel registry.
    Credentials and configuration are opaque to the sync engine; each
    connector validates the keys it needs.
    """
    __tablename__ = "channels"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)

    channel_type = Column(String(50), nullable=False)  # "booking-com", "agoda", "expedia"
    name = Column(String(255), nullable=False)

    status = Column(String(20), default=ChannelStatus.ACTIVE.value, nullable=False)

    # Opaque maps (encrypted at rest in production)
    credentials = Column(JSON, nullable=False, default=dict)
    configuration = Column(JSON, nullable=False, default=dict)

    # [{"internal_id": ..., "channel_id": ..., "is_active": true}, ...]
    room_mappings = Column(JSON, nullable=False, default=list)
    rate_mappings = Column(JSON, nullable=False, default=list)

    # Sync status tracking
    last_sync = Column(DateTime, nullable=True)
    sync_status = Column(String(20), default=SyncStatus.PENDING.value, nullable=False)
    last_sync_type = Column(String(20), nullable=True)
    error_message = Column(Text, nullable=True)
    last_result = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    parent_property = relationship("Property", back_populates="channels")
    sync_logs = relationship("ChannelSyncLog", back_populates="channel", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_channel_property", "property_id"),
    )

    def __repr__(self):
        return f"<Channel {self.channel_type} property={self.property_id} sync={self.sync_status}>"


class ChannelSyncLog(Base):
    """
    Audit trail for channel sync operations.

    One row per sync attempt per channel, written by the orchestrator after
    the connector returns (or crashes).
    """
    __tablename__ = "channel_sync_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    channel_id = Column(String(36), ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    property_id = Column(String(36), nullable=False)

    sync_type = Column(String(20), nullable=False)  # inventory / rates / availability
    success = Column(Boolean, default=False, nullable=False)
    message = Column(Text, nullable=True)

    synced_rooms = Column(Integer, nullable=True)
    synced_rates = Column(Integer, nullable=True)
    synced_inventory = Column(Integer, nullable=True)

    errors = Column(JSON, nullable=False, default=list)
    warnings = Column(JSON, nullable=False, default=list)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, default=datetime.utcnow)
    duration_ms = Column(Integer, nullable=True)

    channel = relationship("Channel", back_populates="sync_logs")

    __table_args__ = (
        Index("ix_channel_sync_log_channel", "channel_id"),
        Index("ix_channel_sync_log_finished", "finished_at"),
    )

    def __repr__(self):
        return f"<ChannelSyncLog {self.sync_type} success={self.success}>"
