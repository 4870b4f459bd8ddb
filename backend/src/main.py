# pyright: reportMissingTypeStubs=false
"""
Hospital Scheduling Backend API

A FastAPI application exposing the appointment, availability and billing
services of the hospital scheduling system.

Features:
- Appointment booking, rescheduling and lifecycle transitions
- Doctor slot availability checks
- Event-driven billing with cancellation and no-show fees
- SQLAlchemy ORM with an event outbox relayed to billing and notifications
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api import appointments, availability, billing
from api.dependencies import get_service_clients, resolve_correlation_id
from core.config import EVENT_RELAY_ENABLED
from core.constants import CORRELATION_ID_HEADER
from core.database import create_tables
from core.exceptions import ServiceError
from services.event_relay_scheduler import start_event_relay_scheduler, stop_event_relay_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("🏥 Hospital Scheduling API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("🚀 Starting Hospital Scheduling Backend API")

    create_tables()

    # Note: Database sessions are created fresh for each relay run
    if EVENT_RELAY_ENABLED:
        try:
            await start_event_relay_scheduler(get_service_clients())
            logger.info("✅ Event relay scheduler started")
        except Exception as e:
            logger.exception(f"❌ Failed to start event relay scheduler: {e}")

    yield

    if EVENT_RELAY_ENABLED:
        try:
            await stop_event_relay_scheduler()
            logger.info("🛑 Event relay scheduler stopped")
        except Exception as e:
            logger.exception(f"❌ Error stopping event relay scheduler: {e}")

    logger.info("🛑 Shutting down Hospital Scheduling Backend API")


# Create FastAPI application
app = FastAPI(
    title="Hospital Scheduling Backend",
    description="Appointment booking, availability and billing services",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
)

# Include API routers
app.include_router(
    appointments.router,
    prefix="/v1",
    tags=["appointments"],
    responses={
        400: {"description": "Validation error"},
        404: {"description": "Resource not found"},
        409: {"description": "Business rule conflict"},
        503: {"description": "Dependency unavailable"},
    },
)
app.include_router(
    availability.router,
    prefix="/v1",
    tags=["availability"],
    responses={
        404: {"description": "Doctor not found"},
        503: {"description": "Dependency unavailable"},
    },
)
app.include_router(
    billing.router,
    prefix="/v1",
    tags=["billing"],
    responses={
        400: {"description": "Validation error"},
        404: {"description": "Resource not found"},
        409: {"description": "Invalid state or conflict"},
    },
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Resolve the correlation id once per request and echo it on the response."""
    correlation_id = resolve_correlation_id(request)
    response = await call_next(request)
    response.headers[CORRELATION_ID_HEADER] = correlation_id
    return response


def _error_response(request: Request, status_code: int, code: str, message: str,
                    correlation_id: Optional[str] = None) -> JSONResponse:
    correlation_id = correlation_id or resolve_correlation_id(request)
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message, "correlationId": correlation_id},
        headers={CORRELATION_ID_HEADER: correlation_id},
    )


# Global exception handlers
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render business errors with their stable code."""
    logger.warning(f"[{exc.correlation_id or resolve_correlation_id(request)}] {exc.code}: {exc.message}")
    return _error_response(request, exc.status_code, exc.code, exc.message, exc.correlation_id)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies and parameters."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    logger.warning(f"[{resolve_correlation_id(request)}] Request validation failed: {message}")
    return _error_response(request, 400, "VALIDATION_ERROR", message)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"[{resolve_correlation_id(request)}] Unhandled exception: {exc}")
    return _error_response(request, 500, "INTERNAL_ERROR", "Internal server error")
