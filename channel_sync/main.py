import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from .config import settings
from .database import create_tables
from .routers import channels
from .services.registry import close_default_registry
from .services.sync_scheduler import start_sync_scheduler, stop_sync_scheduler
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)
    logger.info(f"Starting channel-sync ({settings.environment})")

    create_tables()

    if settings.scheduler_enabled:
        start_sync_scheduler()
    else:
        logger.info("Sync scheduler disabled")

    yield

    logger.info("Shutting down channel-sync")
    if settings.scheduler_enabled:
        stop_sync_scheduler()
    close_default_registry()


app = FastAPI(
    title="Channel Sync API",
    description="Pushes inventory, rates and availability to OTA channels",
    version="1.0.0",
    lifespan=lifespan
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

app.include_router(channels.router)


@app.get("/")
def root():
    return {
        "message": "Channel Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running",
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
