# Services package
from .results import (
    SyncType, BatchPolicy, SyncResult, ConnectionTestResult, DateRange,
    PropertyRecord, RoomRecord, AvailabilityRecord, ChannelBooking,
    SyncRequest, ChannelStatusView
)
from .transport import ResilientTransport, TransportResponse, TransportError
from .rate_limiter import RequestThrottle, throttle_delay_ms
from .connectors import ChannelConnector, BookingComConnector, AgodaConnector, ExpediaConnector
from .registry import ChannelRegistry, build_default_registry, close_default_registry, get_default_registry
from .stores import SqlPropertyStore, SqlChannelStore
from .sync_orchestrator import (
    SyncOrchestrator,
    SyncPreconditionError,
    PropertyNotFoundError,
    NoRoomsError,
    build_orchestrator
)

__all__ = [
    "SyncType", "BatchPolicy", "SyncResult", "ConnectionTestResult", "DateRange",
    "PropertyRecord", "RoomRecord", "AvailabilityRecord", "ChannelBooking",
    "SyncRequest", "ChannelStatusView",
    "ResilientTransport", "TransportResponse", "TransportError",
    "RequestThrottle", "throttle_delay_ms",
    "ChannelConnector", "BookingComConnector", "AgodaConnector", "ExpediaConnector",
    "ChannelRegistry", "build_default_registry", "close_default_registry", "get_default_registry",
    "SqlPropertyStore", "SqlChannelStore",
    "SyncOrchestrator", "SyncPreconditionError", "PropertyNotFoundError", "NoRoomsError",
    "build_orchestrator",
]
