"""
Relay for the appointment event outbox.

Pending outbox rows are delivered after the appointment change commits:
billing-relevant events to the billing service, every event to the
notification sink. Billing delivery is at-least-once: a failed delivery leaves
the row pending for the next relay run, and the billing service deduplicates by
idempotency key. Notifications are best-effort and attempted once per event.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from core.constants import EVENT_RELAY_BATCH_SIZE, EVENT_RELAY_MAX_ATTEMPTS
from core.database import get_db_context
from models import AppointmentEvent, LifecycleEventType
from models.appointment_event import BILLING_EVENT_TYPES
from services.service_clients import ServiceClients
from utils.datetime_utils import clinic_now

logger = logging.getLogger(__name__)


class EventRelayService:
    """Delivers pending AppointmentEvent rows."""

    @staticmethod
    def billing_payload(event: AppointmentEvent) -> Dict[str, Any]:
        return {
            "appointmentId": event.appointment_id,
            "patientId": event.patient_id,
            "eventType": event.event_type,
            "correlationId": event.correlation_id,
            "idempotencyKey": event.idempotency_key,
            "occurredAt": event.created_at.isoformat(),
        }

    @staticmethod
    def notification_payload(event: AppointmentEvent) -> Dict[str, Any]:
        return {
            "appointmentId": event.appointment_id,
            "patientId": event.patient_id,
            "doctorId": event.doctor_id,
            "eventType": event.event_type,
            "slotStart": event.slot_start.isoformat(),
            "slotEnd": event.slot_end.isoformat(),
            "correlationId": event.correlation_id,
        }

    @staticmethod
    def dispatch_pending(
        db: Session,
        clients: ServiceClients,
        limit: int = EVENT_RELAY_BATCH_SIZE,
        now: Optional[datetime] = None
    ) -> int:
        """
        Deliver up to ``limit`` pending events, oldest first.

        Events are claimed one row at a time with SELECT FOR UPDATE SKIP LOCKED,
        so concurrent relay runs never deliver the same event, and each event
        is committed on its own so one failing sink does not hold back the
        rest of the batch. Events whose billing delivery has failed
        ``EVENT_RELAY_MAX_ATTEMPTS`` times are no longer picked up.

        Returns:
            Number of events marked dispatched
        """
        dispatched = 0
        processed = 0
        last_id = 0
        while processed < limit:
            event = (
                db.query(AppointmentEvent)
                .filter(
                    AppointmentEvent.dispatched_at.is_(None),
                    AppointmentEvent.attempts < EVENT_RELAY_MAX_ATTEMPTS,
                    AppointmentEvent.id > last_id
                )
                .order_by(AppointmentEvent.id)
                .with_for_update(skip_locked=True)
                .first()
            )
            if event is None:
                break

            last_id = event.id
            processed += 1
            if EventRelayService._deliver(event, clients, now):
                dispatched += 1
            db.commit()

        if processed:
            logger.info(f"Relayed {dispatched}/{processed} pending appointment events")
        return dispatched

    @staticmethod
    def _deliver(event: AppointmentEvent, clients: ServiceClients, now: Optional[datetime]) -> bool:
        cid = event.correlation_id
        first_attempt = event.attempts == 0
        event.attempts += 1

        if first_attempt:
            try:
                clients.events.publish_notification(EventRelayService.notification_payload(event), cid)
            except httpx.HTTPError as e:
                logger.warning(f"[{cid}] Notification for event {event.idempotency_key} dropped: {e}")

        if LifecycleEventType(event.event_type) in BILLING_EVENT_TYPES:
            try:
                clients.events.publish_billing_event(EventRelayService.billing_payload(event), cid)
            except httpx.HTTPError as e:
                event.last_error = str(e)[:500]
                if event.attempts >= EVENT_RELAY_MAX_ATTEMPTS:
                    logger.error(
                        f"[{cid}] Billing delivery of {event.idempotency_key} failed "
                        f"{event.attempts} times, giving up: {e}"
                    )
                else:
                    logger.warning(
                        f"[{cid}] Billing delivery of {event.idempotency_key} failed "
                        f"(attempt {event.attempts}), will retry: {e}"
                    )
                return False

        event.dispatched_at = now or clinic_now()
        event.last_error = None
        return True


def dispatch_pending_events(clients: ServiceClients) -> int:
    """Background-task entry point: relay pending events with a fresh session."""
    with get_db_context() as db:
        return EventRelayService.dispatch_pending(db, clients)
