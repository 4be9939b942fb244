"""
Logging for channel-sync

One stdout handler for the whole process. In JSON mode each record is a
single object carrying the property and channel of the sync that emitted it,
so a failed push can be traced back without parsing message text.
"""

import logging
import json
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

property_id_var: ContextVar[str] = ContextVar('property_id', default='')
channel_id_var: ContextVar[str] = ContextVar('channel_id', default='')

# Attributes set through `extra=` that are copied to the JSON object, and the key each lands under
RECORD_FIELDS = (
    ("extra_data", "data"),
    ("duration_ms", "duration_ms"),
    ("entity_type", "entity_type"),
    ("entity_id", "entity_id"),
)

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "apscheduler")


def current_sync_target() -> Dict[str, str]:
    """property_id / channel_id of the enclosing sync_context, empty ones left out"""
    target = {"property_id": property_id_var.get(), "channel_id": channel_id_var.get()}
    return {key: value for key, value in target.items() if value}


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(current_sync_target())
        payload.update(module=record.module, function=record.funcName, line=record.lineno)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for attr, key in RECORD_FIELDS:
            if hasattr(record, attr):
                payload[key] = getattr(record, attr)

        return json.dumps(payload, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """LoggerAdapter whose helpers fill the fields JSONFormatter knows about"""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs['extra'] = {**kwargs.get('extra', {}), **self.extra}
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **extra_data
    ):
        extra: Dict[str, Any] = {}
        if entity_type:
            extra['entity_type'] = entity_type
        if entity_id:
            extra['entity_id'] = entity_id
        if duration_ms is not None:
            extra['duration_ms'] = duration_ms
        if extra_data:
            extra['extra_data'] = extra_data

        self.log(level, msg, extra=extra)

    def sync_finished(
        self,
        channel_id: str,
        sync_type: str,
        success: bool,
        synced: Optional[int],
        error_count: int,
        duration_ms: float
    ):
        """INFO for a successful channel sync, WARNING for a failed one"""
        self.log_with_context(
            logging.INFO if success else logging.WARNING,
            f"Channel {channel_id} {sync_type} sync {'succeeded' if success else 'failed'}",
            entity_type="channel",
            entity_id=channel_id,
            duration_ms=duration_ms,
            sync_type=sync_type,
            synced=synced,
            error_count=error_count
        )


def build_handler(log_level: int, json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT))
    return handler


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Route all logging through a single stdout handler.

    Args:
        level: Level name; unknown names fall back to INFO
        json_format: JSONFormatter when True, a plain one-line format otherwise
        include_uvicorn: Point uvicorn's own loggers at the same handler
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    handler = build_handler(log_level, json_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]
    logging.getLogger("channel_sync").setLevel(log_level)

    if include_uvicorn:
        for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
            logging.getLogger(logger_name).handlers = [handler]

    # Per-request chatter from the HTTP client, SQL echo and job bookkeeping
    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), {})


@contextmanager
def sync_context(property_id: str, channel_id: Optional[str] = None):
    """Tag every log record emitted inside the block with the sync target."""
    property_token = property_id_var.set(property_id or '')
    channel_token = channel_id_var.set(channel_id or '')
    try:
        yield
    finally:
        channel_id_var.reset(channel_token)
        property_id_var.reset(property_token)
