"""
Channel Connector Contract

Every OTA connector implements the same capability set:
    test_connection, sync_inventory, sync_rates, sync_availability,
    get_bookings, update_booking

The base class carries the rules all connectors share:
- Required credentials are checked before any network call
- Every request is throttled to the channel's requests-per-minute ceiling
- Batches continue past a failed unit; the batch policy decides success
- info per unit success, warning per unit failure, error per unexpected exception
"""

import base64
import logging
import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from urllib.parse import quote, urlencode
from xml.etree import ElementTree
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ...config import Settings, settings as default_settings
from ..rate_limiter import RequestThrottle
from ..results import (
    AvailabilityRecord,
    BatchPolicy,
    ChannelBooking,
    ConnectionTestResult,
    DateRange,
    RoomRecord,
    SyncRequest,
    SyncResult,
    SyncType,
)
from ..transport import ResilientTransport, TransportError, TransportResponse

logger = logging.getLogger(__name__)

SYNC_LABELS = {
    SyncType.INVENTORY: "Inventory",
    SyncType.RATES: "Rate",
    SyncType.AVAILABILITY: "Availability",
}

UNIT_NOUNS = {
    SyncType.INVENTORY: "rooms",
    SyncType.RATES: "room rates",
}


class ChannelRejection(Exception):
    """The channel answered 2xx but its payload reports an error"""


class ChannelConnector(ABC):
    channel_type: str = "base"
    display_name: str = "Base"
    required_credentials: Tuple[str, ...] = ()
    default_base_url: str = ""
    default_requests_per_minute: int = 60

    def __init__(
        self,
        transport: Optional[ResilientTransport] = None,
        throttle: Optional[RequestThrottle] = None,
        base_url: Optional[str] = None,
        requests_per_minute: Optional[int] = None,
        batch_policy: Optional[str] = None,
        horizon_days: Optional[int] = None,
        currency: Optional[str] = None,
        config: Optional[Settings] = None
    ):
        config = config or default_settings
        self.transport = transport or ResilientTransport(config=config)
        self.throttle = throttle or RequestThrottle()
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.requests_per_minute = requests_per_minute or self.default_requests_per_minute
        self.batch_policy = BatchPolicy(batch_policy or config.sync_batch_policy)
        self.horizon_days = horizon_days if horizon_days is not None else config.sync_horizon_days
        self.currency = currency or config.default_currency

    # ==================
    # Capability contract
    # ==================

    @abstractmethod
    def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        """Minimal authenticated, read-only call"""

    @abstractmethod
    def sync_inventory(self, request: SyncRequest) -> SyncResult:
        """Create/update the room type (and rate plan where required) for each room"""

    @abstractmethod
    def sync_rates(self, request: SyncRequest) -> SyncResult:
        """Push each room's base rate across the forward horizon"""

    @abstractmethod
    def sync_availability(self, request: SyncRequest) -> SyncResult:
        """Push availability, one batch per room"""

    @abstractmethod
    def get_bookings(self, credentials: Dict[str, Any], date_range: DateRange) -> List[ChannelBooking]:
        """Read-only; returns [] on any error"""

    @abstractmethod
    def update_booking(self, credentials: Dict[str, Any], booking_id: str, updates: Dict[str, Any]) -> SyncResult:
        """Push a status / notes change for one reservation"""

    # ==================
    # Credentials
    # ==================

    def missing_credentials(self, credentials: Optional[Dict[str, Any]]) -> List[str]:
        credentials = credentials or {}
        return [
            key for key in self.required_credentials
            if credentials.get(key) in (None, "")
        ]

    def credential_error(self, credentials: Optional[Dict[str, Any]]) -> Optional[str]:
        missing = self.missing_credentials(credentials)
        if missing:
            return f"Missing required credentials: {', '.join(missing)}"
        return None

    @staticmethod
    def basic_auth_header(credentials: Dict[str, Any]) -> str:
        token = f"{credentials['username']}:{credentials['password']}".encode("utf-8")
        return f"Basic {base64.b64encode(token).decode('ascii')}"

    # ==================
    # Requests
    # ==================

    def _request(
        self,
        path: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None
    ) -> TransportResponse:
        """Throttle, then send through the resilient transport"""
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"

        self.throttle.throttle(self.requests_per_minute)
        return self.transport.request(url, method=method, headers=headers, body=body)

    def _log(self, level: int, message: str, exc_info: bool = False):
        logger.log(level, f"[{self.channel_type}] {message}", exc_info=exc_info)

    # ==================
    # Batch driver
    # ==================

    def run_batch(
        self,
        sync_type: SyncType,
        units: Sequence[Any],
        describe: Callable[[Any], str],
        push: Callable[[Any], Optional[List[str]]],
        weight: Callable[[Any], int] = lambda unit: 1,
        request: Optional[SyncRequest] = None
    ) -> SyncResult:
        """
        Push units in order, continuing past failures.

        `push` returns optional warnings on success and raises on failure.
        The reported count is the sum of `weight` over successful units.
        """
        label = SYNC_LABELS[sync_type]
        synced = 0
        succeeded_units = 0
        errors: List[str] = []
        warnings: List[str] = []

        for unit in units:
            name = describe(unit)
            try:
                unit_warnings = push(unit)
            except (ChannelRejection, TransportError) as e:
                error = f"{name}: {e}"
                errors.append(error)
                self._log(logging.WARNING, f"{label} sync failed for {error}")
            except Exception as e:
                error = f"{name}: unexpected error: {e}"
                errors.append(error)
                self._log(logging.ERROR, f"{label} sync error for {error}", exc_info=True)
            else:
                synced += weight(unit)
                succeeded_units += 1
                warnings.extend(unit_warnings or [])
                self._log(logging.INFO, f"{label} for {name} synced successfully")

        context = {}
        if request is not None:
            context = {"channel_id": request.channel_id, "property_id": request.property.id}

        if sync_type == SyncType.AVAILABILITY:
            message = f"{label} sync completed. {synced} availability records synced successfully"
        else:
            message = (
                f"{label} sync completed. {succeeded_units}/{len(units)} "
                f"{UNIT_NOUNS[sync_type]} synced successfully"
            )
        self._log(logging.INFO, message)

        if self.batch_failed(succeeded_units, len(errors)):
            return SyncResult.failure(
                f"{label} sync failed completely" if succeeded_units == 0 else f"{label} sync failed",
                errors=errors,
                warnings=warnings,
                sync_type=sync_type,
                count=synced,
                **context
            )

        return SyncResult.ok(
            message,
            sync_type=sync_type,
            count=synced,
            errors=errors,
            warnings=warnings,
            **context
        )

    def batch_failed(self, succeeded: int, failed: int) -> bool:
        if failed == 0:
            return False
        if self.batch_policy == BatchPolicy.ALL_OR_NOTHING:
            return True
        return succeeded == 0

    def precheck(self, request: SyncRequest, sync_type: SyncType) -> Optional[SyncResult]:
        """Credential and input checks shared by every sync operation"""
        context = {"channel_id": request.channel_id, "property_id": request.property.id}

        error = self.credential_error(request.credentials)
        if error:
            self._log(logging.WARNING, error)
            return SyncResult.failure(error, sync_type=sync_type, **context)

        if sync_type == SyncType.AVAILABILITY:
            if not request.availability:
                return SyncResult.failure("No availability data to sync", sync_type=sync_type, **context)
        elif not request.rooms:
            return SyncResult.failure("No rooms to sync", sync_type=sync_type, **context)

        return None

    # ==================
    # Data helpers
    # ==================

    @staticmethod
    def sanitize_rooms(rooms: Sequence[RoomRecord]) -> List[RoomRecord]:
        """Drop rooms without an id and fill display defaults"""
        sanitized = []
        for room in rooms:
            if not room.id:
                continue
            if not room.description:
                room.description = f"{room.room_type} room"
            if room.amenities is None:
                room.amenities = []
            if not room.max_occupancy or room.max_occupancy < 1:
                room.max_occupancy = 1
            sanitized.append(room)
        return sanitized

    @staticmethod
    def group_availability_by_room(records: Sequence[AvailabilityRecord]) -> "OrderedDict[str, List[AvailabilityRecord]]":
        """Group records by room id, preserving first-seen room order and record order"""
        grouped: "OrderedDict[str, List[AvailabilityRecord]]" = OrderedDict()
        for record in records:
            grouped.setdefault(record.room_id, []).append(record)
        return grouped

    def rate_window(self) -> DateRange:
        return DateRange.forward(self.horizon_days)

    @staticmethod
    def _mapped_id(mappings: List[Dict[str, Any]], internal_id: str) -> Optional[str]:
        for mapping in mappings or []:
            if mapping.get("internal_id") == internal_id and mapping.get("is_active", True):
                return mapping.get("channel_id")
        return None

    def resolve_room_id(self, request: SyncRequest, room_id: str) -> str:
        return self._mapped_id(request.room_mappings, room_id) or room_id

    def resolve_rate_plan_id(self, request: SyncRequest, room_id: str, default: str) -> str:
        return self._mapped_id(request.rate_mappings, room_id) or default

    def currency_for(self, request: SyncRequest) -> str:
        return request.configuration.get("currency") or self.currency

    def external_property_id(self, request: SyncRequest) -> str:
        return (
            request.configuration.get("propertyId")
            or request.property.channel_ids.get(self.channel_type)
            or request.property.id
        )

    @staticmethod
    def format_date(value) -> str:
        return value.isoformat()

    @staticmethod
    def path_segment(value) -> str:
        """Percent-encode an id for use as one URL path segment, slashes included"""
        segment = quote(str(value), safe="")
        # bare dot segments would be resolved away by URL normalization
        if segment in (".", ".."):
            return segment.replace(".", "%2E")
        return segment


# ==================
# XML helpers
# ==================

def local_name(tag: str) -> str:
    """Element tag without its {namespace} prefix"""
    return tag.rsplit("}", 1)[-1]


def iter_elements(root: ElementTree.Element, name: str) -> List[ElementTree.Element]:
    return [element for element in root.iter() if local_name(element.tag) == name]


def find_text(element: ElementTree.Element, name: str, default: Optional[str] = None) -> Optional[str]:
    """Text of the first descendant named `name`, ignoring namespaces"""
    for child in element.iter():
        if child is not element and local_name(child.tag) == name:
            text = (child.text or "").strip()
            return text or default
    return default


def to_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except ValueError:
        return None


def to_float(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except ValueError:
        return None


def extract_tag_message(text: str, tags: Sequence[str]) -> str:
    """First `<Tag ...>message</Tag>` found for any of `tags`"""
    for tag in tags:
        match = re.search(rf"<{tag}[^>]*>([^<]+)</{tag}>", text)
        if match:
            return match.group(1).strip()
    return "Unknown error"
