"""
Request-scoped dependencies for FastAPI routes.

Provides the request's correlation id, the remote service clients and the
post-commit event dispatcher. Tests replace the last two through
``app.dependency_overrides``.
"""

import logging
import uuid
from typing import Callable, Optional

from fastapi import Request

from core.constants import CORRELATION_ID_HEADER
from services.event_relay_service import dispatch_pending_events
from services.service_clients import ServiceClients, build_service_clients

logger = logging.getLogger(__name__)

EventDispatcher = Callable[[ServiceClients], int]

_service_clients: Optional[ServiceClients] = None


def resolve_correlation_id(request: Request) -> str:
    """Return the id stored by the middleware, else the header, else a new uuid4."""
    existing = getattr(request.state, "correlation_id", None)
    if existing:
        return existing

    correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    return correlation_id


def get_correlation_id(request: Request) -> str:
    """FastAPI dependency for the current request's correlation id."""
    return resolve_correlation_id(request)


def get_service_clients() -> ServiceClients:
    """FastAPI dependency for the shared remote clients (built on first use)."""
    global _service_clients
    if _service_clients is None:
        _service_clients = build_service_clients()
    return _service_clients


def get_event_dispatcher() -> EventDispatcher:
    """FastAPI dependency for the function that relays pending outbox events."""
    return dispatch_pending_events
