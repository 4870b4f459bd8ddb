"""
Ledger of billing events already applied, keyed by idempotency key.

The appointment outbox delivers at least once; the billing service records
every key it has applied so a redelivered event is acknowledged without
touching bills a second time.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base
from models.base import ClinicDateTime


class ProcessedBillingEvent(Base):
    """One applied billing event."""

    __tablename__ = "processed_billing_events"

    idempotency_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    """"{appointment_id}:{event_type}" as produced by the appointment outbox."""

    appointment_id: Mapped[int] = mapped_column(Integer, index=True)
    event_type: Mapped[str] = mapped_column(String(20))

    bill_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Bill created or changed by the event, NULL when the event was a no-op."""

    correlation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(ClinicDateTime)
