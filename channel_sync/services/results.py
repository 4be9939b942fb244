"""
Sync Result Types

Shared value objects passed between the orchestrator and the channel
connectors: sync results, connection test results, the date range being
synced, and the plain domain records connectors translate to wire format.
"""

import enum
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional


class SyncType(str, enum.Enum):
    INVENTORY = "inventory"
    RATES = "rates"
    AVAILABILITY = "availability"


class BatchPolicy(str, enum.Enum):
    """When does a batch of units count as a successful sync"""
    AT_LEAST_ONE = "at_least_one"
    ALL_OR_NOTHING = "all_or_nothing"


# Which count field is populated for each sync type
COUNT_FIELDS = {
    SyncType.INVENTORY: "synced_rooms",
    SyncType.RATES: "synced_rates",
    SyncType.AVAILABILITY: "synced_inventory",
}


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync operation against one channel"""
    success: bool
    message: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    synced_rooms: Optional[int] = None
    synced_rates: Optional[int] = None
    synced_inventory: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    channel_id: Optional[str] = None
    property_id: Optional[str] = None
    sync_type: Optional[SyncType] = None

    def __post_init__(self):
        if not self.success and not self.errors:
            raise ValueError("A failed SyncResult must carry at least one error")
        if self.success and self.sync_type is not None:
            count = getattr(self, COUNT_FIELDS[self.sync_type])
            if count is None or count < 0:
                raise ValueError(
                    f"A successful {self.sync_type.value} SyncResult needs a non-negative "
                    f"{COUNT_FIELDS[self.sync_type]}"
                )

    @classmethod
    def ok(
        cls,
        message: str,
        sync_type: Optional[SyncType] = None,
        count: Optional[int] = None,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
        **context
    ) -> "SyncResult":
        counts = {}
        if sync_type is not None:
            counts[COUNT_FIELDS[sync_type]] = count if count is not None else 0
        return cls(
            success=True,
            message=message,
            errors=list(errors or []),
            warnings=list(warnings or []),
            sync_type=sync_type,
            **counts,
            **context
        )

    @classmethod
    def failure(
        cls,
        message: str,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
        sync_type: Optional[SyncType] = None,
        count: Optional[int] = None,
        **context
    ) -> "SyncResult":
        counts = {}
        if sync_type is not None and count is not None:
            counts[COUNT_FIELDS[sync_type]] = count
        return cls(
            success=False,
            message=message,
            errors=list(errors) if errors else [message],
            warnings=list(warnings or []),
            sync_type=sync_type,
            **counts,
            **context
        )

    @property
    def synced_count(self) -> Optional[int]:
        if self.sync_type is None:
            return None
        return getattr(self, COUNT_FIELDS[self.sync_type])

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["sync_type"] = self.sync_type.value if self.sync_type else None
        return data


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Date range ends before it starts: {self.start} > {self.end}")

    @classmethod
    def forward(cls, days: int, start: Optional[date] = None) -> "DateRange":
        """today (or start) through `days` days ahead, inclusive"""
        start = start or date.today()
        return cls(start=start, end=start + timedelta(days=days))

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def __len__(self) -> int:
        return (self.end - self.start).days + 1


# ==================
# Domain records handed to connectors
# ==================

@dataclass
class PropertyRecord:
    id: str
    name: str
    # External property identifiers keyed by channel type
    channel_ids: Dict[str, str] = field(default_factory=dict)


@dataclass
class RoomRecord:
    id: str
    room_number: str
    room_type: str
    description: Optional[str] = None
    max_occupancy: int = 2
    size: Optional[int] = None
    amenities: List[str] = field(default_factory=list)
    base_rate: Decimal = Decimal("0")


@dataclass
class AvailabilityRecord:
    room_id: str
    date: date
    available: bool
    inventory: Optional[int] = None

    @property
    def units(self) -> int:
        if self.inventory is not None:
            return self.inventory
        return 1 if self.available else 0


@dataclass
class ChannelBooking:
    """A reservation pulled from a channel, normalized"""
    id: str
    channel_booking_id: Optional[str] = None
    guest_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    room_type: Optional[str] = None
    adults: Optional[int] = None
    children: Optional[int] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    source: Optional[str] = None
    channel_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncRequest:
    """Everything a connector needs for one sync call"""
    property: PropertyRecord
    credentials: Dict[str, Any]
    configuration: Dict[str, Any] = field(default_factory=dict)
    rooms: List[RoomRecord] = field(default_factory=list)
    availability: List[AvailabilityRecord] = field(default_factory=list)
    date_range: Optional[DateRange] = None
    room_mappings: List[Dict[str, Any]] = field(default_factory=list)
    rate_mappings: List[Dict[str, Any]] = field(default_factory=list)
    channel_id: Optional[str] = None


@dataclass
class ChannelStatusView:
    """Persisted sync state of one channel, for display"""
    channel_id: str
    channel_type: str
    name: str
    status: str
    sync_status: str
    last_sync: Optional[datetime] = None
    last_sync_type: Optional[str] = None
    error_message: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_sync"] = self.last_sync.isoformat() if self.last_sync else None
        return data
