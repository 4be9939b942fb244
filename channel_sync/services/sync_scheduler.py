"""
Sync Scheduler Service

Keeps channels current without an operator in the loop:
- Daily at SCHEDULER_FULL_SYNC_HOUR: inventory, rates and availability
- Every SCHEDULER_AVAILABILITY_INTERVAL_MINUTES: availability only

Covers every property with at least one active channel. Jobs are plain
functions, so AsyncIOScheduler runs them in its thread pool and the event
loop stays free while connectors sleep through throttle and backoff delays.

Scheduled and manual runs share the connectors and their throttle, so they
hold _sync_lock and never run at the same time.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from .results import SyncType
from .stores import SqlChannelStore
from .sync_orchestrator import SyncOrchestrator, SyncPreconditionError, build_orchestrator

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_last_sync_time: Optional[datetime] = None
_last_sync_result: Optional[Dict] = None

FULL_SYNC_JOB_ID = "channel_full_sync"
AVAILABILITY_JOB_ID = "channel_availability_sync"

# Held for the whole of every scheduled or manual run
_sync_lock = threading.Lock()


def sync_properties(
    db: Session,
    sync_types=(SyncType.INVENTORY, SyncType.RATES, SyncType.AVAILABILITY),
    orchestrator_factory: Callable[[Session], SyncOrchestrator] = build_orchestrator
) -> Dict:
    """
    Run the given sync types for every property with an active channel.

    One property's failure never stops the rest.

    Returns:
        Dict with keys: properties_checked, channels_synced, channels_failed, errors, sync_time
    """
    global _last_sync_time, _last_sync_result

    result = {
        "properties_checked": 0,
        "channels_synced": 0,
        "channels_failed": 0,
        "sync_types": [t.value for t in sync_types],
        "errors": [],
        "sync_time": datetime.utcnow().isoformat()
    }

    orchestrator = orchestrator_factory(db)
    property_ids = SqlChannelStore(db).list_property_ids_with_active_channels()
    result["properties_checked"] = len(property_ids)

    operations = {
        SyncType.INVENTORY: orchestrator.sync_inventory,
        SyncType.RATES: orchestrator.sync_rates,
        SyncType.AVAILABILITY: orchestrator.sync_availability,
    }

    for property_id in property_ids:
        for sync_type in sync_types:
            try:
                channel_results = operations[sync_type](property_id)
            except SyncPreconditionError as e:
                logger.warning(f"[property {property_id}] Skipping scheduled {sync_type.value} sync: {e}")
                continue
            except Exception as e:
                error_msg = f"Property {property_id} {sync_type.value} sync failed: {str(e)}"
                logger.error(error_msg, exc_info=True)
                result["errors"].append(error_msg)
                continue

            for channel_result in channel_results:
                if channel_result.success:
                    result["channels_synced"] += 1
                else:
                    result["channels_failed"] += 1

    _last_sync_time = datetime.utcnow()
    _last_sync_result = result

    logger.info(
        f"Scheduled sync completed: {result['properties_checked']} properties, "
        f"{result['channels_synced']} channel syncs ok, {result['channels_failed']} failed"
    )
    return result


def _run_job(sync_types) -> None:
    """Open a session, run the sync, clean up"""
    with _sync_lock:
        db = SessionLocal()
        try:
            sync_properties(db, sync_types=sync_types)
        except Exception as e:
            logger.error(f"Scheduled channel sync job failed: {e}", exc_info=True)
        finally:
            db.close()


def run_full_sync_job() -> None:
    logger.info("Running scheduled full channel sync...")
    _run_job((SyncType.INVENTORY, SyncType.RATES, SyncType.AVAILABILITY))


def run_availability_sync_job() -> None:
    logger.info("Running scheduled availability sync...")
    _run_job((SyncType.AVAILABILITY,))


def start_sync_scheduler() -> bool:
    """
    Start the scheduler with the daily full sync and the availability interval job.

    Returns:
        True if scheduler started successfully, False otherwise
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Sync scheduler is already running")
        return True

    timezone = settings.scheduler_timezone
    try:
        _scheduler = AsyncIOScheduler(timezone=timezone)

        _scheduler.add_job(
            run_full_sync_job,
            CronTrigger(hour=settings.scheduler_full_sync_hour, minute=0, timezone=timezone),
            id=FULL_SYNC_JOB_ID,
            name=f"Full channel sync at {settings.scheduler_full_sync_hour:02d}:00",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        _scheduler.add_job(
            run_availability_sync_job,
            IntervalTrigger(minutes=settings.scheduler_availability_interval_minutes, timezone=timezone),
            id=AVAILABILITY_JOB_ID,
            name=f"Availability sync every {settings.scheduler_availability_interval_minutes} min",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        _scheduler.start()

        logger.info(
            f"Sync scheduler started (full sync {settings.scheduler_full_sync_hour:02d}:00 {timezone}, "
            f"availability every {settings.scheduler_availability_interval_minutes} min)"
        )
        return True

    except Exception as e:
        logger.error(f"Failed to start sync scheduler: {e}")
        return False


def stop_sync_scheduler() -> bool:
    """
    Stop the scheduler gracefully.

    Returns:
        True if scheduler stopped successfully, False otherwise
    """
    global _scheduler

    if _scheduler is None:
        logger.warning("Sync scheduler is not running")
        return True

    try:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Sync scheduler stopped")
        return True
    except Exception as e:
        logger.error(f"Failed to stop sync scheduler: {e}")
        return False


def get_scheduler_status() -> Dict:
    status = {
        "running": False,
        "timezone": settings.scheduler_timezone,
        "last_sync": None,
        "last_sync_result": None,
        "jobs": []
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        for job in _scheduler.get_jobs():
            status["jobs"].append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            })

    if _last_sync_time:
        status["last_sync"] = _last_sync_time.isoformat()

    if _last_sync_result:
        status["last_sync_result"] = _last_sync_result

    return status


def trigger_manual_sync(availability_only: bool = False) -> Dict:
    """
    Run a scheduled-style sync immediately.

    Used by the API endpoint for manual control. Waits for a scheduled run
    that is already in progress.
    """
    sync_types = (SyncType.AVAILABILITY,) if availability_only else (
        SyncType.INVENTORY, SyncType.RATES, SyncType.AVAILABILITY
    )
    with _sync_lock:
        db = SessionLocal()
        try:
            return sync_properties(db, sync_types=sync_types)
        finally:
            db.close()
