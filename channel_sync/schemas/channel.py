"""
Channel Sync Schemas

Pydantic models for the channel sync admin API requests and responses.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models import ChannelStatus


# ==================
# Sync
# ==================

class SyncTriggerRequest(BaseModel):
    """Restrict a sync to a subset of the property's channels"""
    channel_ids: Optional[List[str]] = Field(default=None, description="Channel ids to sync; all active channels when omitted")


class AvailabilitySyncRequest(SyncTriggerRequest):
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_range(self):
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("start_date and end_date must be given together")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SyncResultResponse(BaseModel):
    success: bool
    message: str
    errors: List[str] = []
    warnings: List[str] = []
    synced_rooms: Optional[int] = None
    synced_rates: Optional[int] = None
    synced_inventory: Optional[int] = None
    timestamp: datetime
    channel_id: Optional[str] = None
    property_id: Optional[str] = None
    sync_type: Optional[str] = None


class SyncBatchResponse(BaseModel):
    property_id: str
    sync_type: str
    results: List[SyncResultResponse]


# ==================
# Channel configuration
# ==================

class ConnectionTestRequest(BaseModel):
    """Credentials to test; the stored ones are used when omitted"""
    credentials: Optional[Dict[str, Any]] = None


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    details: Dict[str, Any] = {}


class CredentialsUpdate(BaseModel):
    credentials: Dict[str, Any] = Field(..., description="Opaque credential map for the channel type")

    @field_validator("credentials")
    @classmethod
    def not_empty(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("credentials must not be empty")
        return v


class ChannelStatusUpdate(BaseModel):
    status: str
    configuration: Optional[Dict[str, Any]] = None

    @field_validator("status")
    @classmethod
    def known_status(cls, v: str) -> str:
        allowed = [s.value for s in ChannelStatus]
        if v not in allowed:
            raise ValueError(f"status must be one of: {', '.join(allowed)}")
        return v


class ChannelMapping(BaseModel):
    internal_id: str
    channel_id: str
    is_active: bool = True


class ChannelMappingsUpdate(BaseModel):
    room_mappings: Optional[List[ChannelMapping]] = None
    rate_mappings: Optional[List[ChannelMapping]] = None


class ChannelMappingsResponse(BaseModel):
    channel_id: str
    room_mappings: List[ChannelMapping]
    rate_mappings: List[ChannelMapping]


class ChannelStatusResponse(BaseModel):
    """Persisted sync state of a channel. Credentials are never included."""
    channel_id: str
    channel_type: str
    name: str
    status: str
    sync_status: str
    last_sync: Optional[datetime] = None
    last_sync_type: Optional[str] = None
    error_message: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None


class SyncLogResponse(BaseModel):
    id: str
    sync_type: str
    success: bool
    message: Optional[str] = None
    synced_rooms: Optional[int] = None
    synced_rates: Optional[int] = None
    synced_inventory: Optional[int] = None
    errors: List[str] = []
    warnings: List[str] = []
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


# ==================
# Bookings
# ==================

class ChannelBookingResponse(BaseModel):
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


class BookingUpdateRequest(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
