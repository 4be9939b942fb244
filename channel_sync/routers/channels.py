"""
Channels API Router

Admin endpoints over the sync orchestrator:
- Sync triggers per property (inventory, rates, availability, all)
- Per-channel connection tests, credentials, status and mappings
- Sync status and audit history
- Booking pull / booking update
- Scheduler status and manual runs

Credentials are accepted but never returned.
"""

import uuid
import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.channel import (
    AvailabilitySyncRequest,
    BookingUpdateRequest,
    ChannelBookingResponse,
    ChannelMappingsResponse,
    ChannelMappingsUpdate,
    ChannelStatusResponse,
    ChannelStatusUpdate,
    ConnectionTestRequest,
    ConnectionTestResponse,
    CredentialsUpdate,
    SyncBatchResponse,
    SyncLogResponse,
    SyncResultResponse,
    SyncTriggerRequest,
)
from ..services import sync_scheduler
from ..services.results import DateRange, SyncResult, SyncType
from ..services.sync_orchestrator import (
    NoRoomsError,
    PropertyNotFoundError,
    SyncOrchestrator,
    build_orchestrator,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/channels", tags=["Channels"])


def get_request_id(request: Request) -> str:
    """Get request_id from request state or generate one"""
    return getattr(request.state, 'request_id', str(uuid.uuid4())[:8])


def get_orchestrator(db: Session = Depends(get_db)) -> SyncOrchestrator:
    return build_orchestrator(db)


def _run_sync(request_id: str, property_id: str, sync_type: str, operation: Callable[[], List[SyncResult]]) -> SyncBatchResponse:
    logger.info(f"[{request_id}] {sync_type} sync requested for property {property_id}")
    try:
        results = operation()
    except PropertyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NoRoomsError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SyncBatchResponse(
        property_id=property_id,
        sync_type=sync_type,
        results=[SyncResultResponse(**r.to_dict()) for r in results]
    )


# ==================
# Scheduler
# ==================

@router.get("/scheduler/status")
def scheduler_status():
    return sync_scheduler.get_scheduler_status()


@router.post("/scheduler/run")
def run_scheduler_now(availability_only: bool = Query(False)):
    """Run the scheduled sync immediately"""
    return sync_scheduler.trigger_manual_sync(availability_only=availability_only)


# ==================
# Property-level sync
# ==================

@router.post("/properties/{property_id}/sync/inventory", response_model=SyncBatchResponse)
def sync_inventory(
    request: Request,
    property_id: str,
    payload: Optional[SyncTriggerRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    channel_ids = payload.channel_ids if payload else None
    return _run_sync(
        get_request_id(request), property_id, SyncType.INVENTORY.value,
        lambda: orchestrator.sync_inventory(property_id, channel_ids)
    )


@router.post("/properties/{property_id}/sync/rates", response_model=SyncBatchResponse)
def sync_rates(
    request: Request,
    property_id: str,
    payload: Optional[SyncTriggerRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    channel_ids = payload.channel_ids if payload else None
    return _run_sync(
        get_request_id(request), property_id, SyncType.RATES.value,
        lambda: orchestrator.sync_rates(property_id, channel_ids)
    )


@router.post("/properties/{property_id}/sync/availability", response_model=SyncBatchResponse)
def sync_availability(
    request: Request,
    property_id: str,
    payload: Optional[AvailabilitySyncRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    channel_ids = payload.channel_ids if payload else None
    date_range = None
    if payload and payload.start_date and payload.end_date:
        date_range = DateRange(start=payload.start_date, end=payload.end_date)

    return _run_sync(
        get_request_id(request), property_id, SyncType.AVAILABILITY.value,
        lambda: orchestrator.sync_availability(property_id, channel_ids, date_range)
    )


@router.post("/properties/{property_id}/sync", response_model=Dict[str, List[SyncResultResponse]])
def sync_all(
    request: Request,
    property_id: str,
    payload: Optional[SyncTriggerRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Inventory, rates and availability in order"""
    request_id = get_request_id(request)
    logger.info(f"[{request_id}] Full sync requested for property {property_id}")

    results = orchestrator.sync_all(property_id, payload.channel_ids if payload else None)
    return {
        sync_type: [SyncResultResponse(**r.to_dict()) for r in channel_results]
        for sync_type, channel_results in results.items()
    }


@router.get("/properties/{property_id}/status", response_model=Dict[str, ChannelStatusResponse])
def get_sync_status(property_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return {
        channel_id: ChannelStatusResponse(**view.to_dict())
        for channel_id, view in orchestrator.get_sync_status(property_id).items()
    }


@router.post("/properties/{property_id}/test-connections", response_model=Dict[str, ConnectionTestResponse])
def test_all_connections(property_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return {
        channel_id: ConnectionTestResponse(**result.to_dict())
        for channel_id, result in orchestrator.test_all_connections(property_id).items()
    }


# ==================
# Bookings
# ==================

@router.get("/properties/{property_id}/bookings", response_model=List[ChannelBookingResponse])
def fetch_bookings(
    property_id: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    date_range = None
    if start_date and end_date:
        if end_date < start_date:
            raise HTTPException(status_code=400, detail="end_date must not be before start_date")
        date_range = DateRange(start=start_date, end=end_date)

    try:
        bookings = orchestrator.fetch_bookings(property_id, date_range=date_range)
    except PropertyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return [ChannelBookingResponse(**b.to_dict()) for b in bookings]


@router.put("/properties/{property_id}/channels/{channel_id}/bookings/{booking_id}", response_model=SyncResultResponse)
def update_booking(
    request: Request,
    property_id: str,
    channel_id: str,
    booking_id: str,
    payload: BookingUpdateRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    request_id = get_request_id(request)
    logger.info(f"[{request_id}] Booking {booking_id} update on channel {channel_id}")

    result = orchestrator.update_booking(
        property_id, channel_id, booking_id, payload.model_dump(exclude_none=True)
    )
    return SyncResultResponse(**result.to_dict())


# ==================
# Channel-level configuration
# ==================

@router.post("/{channel_id}/test", response_model=ConnectionTestResponse)
def test_connection(
    channel_id: str,
    payload: Optional[ConnectionTestRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Test stored credentials, or candidate ones before saving them"""
    if not orchestrator.channel_store.get_channel_by_id(channel_id):
        raise HTTPException(status_code=404, detail="Channel not found")

    result = orchestrator.test_connection(channel_id, payload.credentials if payload else None)
    return ConnectionTestResponse(**result.to_dict())


@router.put("/{channel_id}/credentials")
def update_credentials(
    channel_id: str,
    payload: CredentialsUpdate,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    if not orchestrator.update_channel_credentials(channel_id, payload.credentials):
        raise HTTPException(status_code=404, detail="Channel not found")
    return {"success": True, "channel_id": channel_id}


@router.put("/{channel_id}/status")
def update_status(
    channel_id: str,
    payload: ChannelStatusUpdate,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    if not orchestrator.update_channel_status(channel_id, payload.status, configuration=payload.configuration):
        raise HTTPException(status_code=404, detail="Channel not found")
    return {"success": True, "channel_id": channel_id, "status": payload.status}


@router.get("/{channel_id}/mappings", response_model=ChannelMappingsResponse)
def get_mappings(channel_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    mappings = orchestrator.get_channel_mappings(channel_id)
    if mappings is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return ChannelMappingsResponse(channel_id=channel_id, **mappings)


@router.put("/{channel_id}/mappings", response_model=ChannelMappingsResponse)
def update_mappings(
    channel_id: str,
    payload: ChannelMappingsUpdate,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    room_mappings = [m.model_dump() for m in payload.room_mappings] if payload.room_mappings is not None else None
    rate_mappings = [m.model_dump() for m in payload.rate_mappings] if payload.rate_mappings is not None else None

    if not orchestrator.update_channel_mappings(channel_id, room_mappings=room_mappings, rate_mappings=rate_mappings):
        raise HTTPException(status_code=404, detail="Channel not found")

    return ChannelMappingsResponse(channel_id=channel_id, **orchestrator.get_channel_mappings(channel_id))


@router.get("/{channel_id}/history", response_model=List[SyncLogResponse])
def get_history(
    channel_id: str,
    limit: int = Query(50, ge=1, le=500),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    if not orchestrator.channel_store.get_channel_by_id(channel_id):
        raise HTTPException(status_code=404, detail="Channel not found")
    return orchestrator.get_sync_history(channel_id, limit=limit)
