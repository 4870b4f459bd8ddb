"""
Event relay scheduler for retrying undelivered appointment events.

Events are normally delivered right after the request that produced them. This
scheduler runs on a fixed interval and picks up whatever is still pending
(billing service down, timeouts, process restarts).
"""

import asyncio
import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore

from core.config import EVENT_RELAY_INTERVAL_SECONDS
from core.constants import EVENT_RELAY_MAX_INSTANCES
from services.event_relay_service import dispatch_pending_events
from services.service_clients import ServiceClients
from utils.datetime_utils import CLINIC_TZ

logger = logging.getLogger(__name__)


class EventRelayScheduler:
    """
    Interval scheduler for the outbox relay.

    Database sessions are created fresh for each run by dispatch_pending_events.
    """

    def __init__(self, clients: ServiceClients, interval_seconds: int = EVENT_RELAY_INTERVAL_SECONDS):
        self.clients = clients
        self.interval_seconds = interval_seconds
        self.scheduler = AsyncIOScheduler(timezone=CLINIC_TZ)
        self._is_started = False

    async def start_scheduler(self) -> None:
        """
        Start the background relay.

        This should be called during application startup.
        """
        if self._is_started:
            logger.warning("Event relay scheduler is already started")
            return

        self.scheduler.add_job(  # type: ignore
            self._relay_pending_events,
            IntervalTrigger(seconds=self.interval_seconds),
            id="relay_appointment_events",
            name="Relay pending appointment events",
            max_instances=EVENT_RELAY_MAX_INSTANCES,  # Prevent overlapping runs
            replace_existing=True
        )

        self.scheduler.start()
        self._is_started = True
        logger.info(f"Event relay scheduler started (every {self.interval_seconds}s)")

    async def stop_scheduler(self) -> None:
        """
        Stop the background relay.

        This should be called during application shutdown.
        """
        if self._is_started:
            self.scheduler.shutdown(wait=True)
            self._is_started = False
            logger.info("Event relay scheduler stopped")

    async def _relay_pending_events(self) -> None:
        # Remote calls are blocking; keep them off the event loop
        try:
            await asyncio.to_thread(dispatch_pending_events, self.clients)
        except Exception as e:
            logger.exception(f"Error relaying pending appointment events: {e}")


# Global scheduler instance
_event_relay_scheduler: Optional[EventRelayScheduler] = None


async def start_event_relay_scheduler(clients: ServiceClients) -> None:
    """
    Start the global event relay scheduler.

    This should be called during application startup.
    """
    global _event_relay_scheduler
    if _event_relay_scheduler is None:
        _event_relay_scheduler = EventRelayScheduler(clients)
    await _event_relay_scheduler.start_scheduler()


async def stop_event_relay_scheduler() -> None:
    """
    Stop the global event relay scheduler.

    This should be called during application shutdown.
    """
    global _event_relay_scheduler
    if _event_relay_scheduler:
        await _event_relay_scheduler.stop_scheduler()
        _event_relay_scheduler = None
