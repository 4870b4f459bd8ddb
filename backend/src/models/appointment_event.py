"""
Outbox of appointment lifecycle events.

Each lifecycle mutation writes one row here in the same transaction as the
appointment change. The relay delivers pending rows to the billing service and
the notification sink, so an event is never lost when the appointment commit
succeeds but delivery fails.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base
from models.base import ClinicDateTime


class LifecycleEventType(str, Enum):
    """Events emitted by the appointment lifecycle."""

    BOOKED = "BOOKED"
    RESCHEDULED = "RESCHEDULED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


# Event types the billing service reacts to
BILLING_EVENT_TYPES = frozenset({
    LifecycleEventType.COMPLETED,
    LifecycleEventType.CANCELLED,
    LifecycleEventType.NO_SHOW,
})


class AppointmentEvent(Base):
    """Pending or dispatched lifecycle event."""

    __tablename__ = "appointment_events"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    idempotency_key: Mapped[str] = mapped_column(String(100), unique=True)
    """
    Deduplication key shared with the billing service.

    "{appointment_id}:{event_type}" for terminal events and BOOKED;
    RESCHEDULED keys carry the reschedule ordinal.
    """

    appointment_id: Mapped[int] = mapped_column(Integer)
    patient_id: Mapped[int] = mapped_column(Integer)
    doctor_id: Mapped[int] = mapped_column(Integer)
    event_type: Mapped[str] = mapped_column(String(20))

    slot_start: Mapped[datetime] = mapped_column(ClinicDateTime)
    """Slot start at the time of the event (billing uses it for fee tiering)."""

    slot_end: Mapped[datetime] = mapped_column(ClinicDateTime)

    correlation_id: Mapped[str] = mapped_column(String(64))
    """Correlation id of the request that produced the event."""

    created_at: Mapped[datetime] = mapped_column(ClinicDateTime)

    dispatched_at: Mapped[Optional[datetime]] = mapped_column(ClinicDateTime, nullable=True)
    """NULL until every sink accepted the event."""

    attempts: Mapped[int] = mapped_column(Integer, default=0)

    last_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        Index('idx_appointment_events_pending', 'dispatched_at', 'id'),
        Index('idx_appointment_events_appointment', 'appointment_id'),
    )

    @staticmethod
    def build_idempotency_key(appointment_id: int, event_type: LifecycleEventType, ordinal: Optional[int] = None) -> str:
        if ordinal is None:
            return f"{appointment_id}:{event_type.value}"
        return f"{appointment_id}:{event_type.value}:{ordinal}"
