# Models package
from .property import Property, Room, RoomAvailability
from .channel import Channel, ChannelSyncLog, ChannelStatus, SyncStatus

__all__ = [
    "Property", "Room", "RoomAvailability",
    "Channel", "ChannelSyncLog", "ChannelStatus", "SyncStatus",
]
