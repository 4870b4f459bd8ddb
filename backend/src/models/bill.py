"""
Bill model owned by the billing service.

Bills are created and mutated only in reaction to appointment lifecycle events
or explicit bill-management calls (void, mark paid, refund). The appointment is
referenced by id only; appointments live in a different store.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base
from models.base import ClinicDateTime


class BillStatus(str, Enum):
    """Bill states. OPEN is initial; VOID and REFUNDED are terminal."""

    OPEN = "OPEN"
    PAID = "PAID"
    VOID = "VOID"
    REFUNDED = "REFUNDED"


class Bill(Base):
    """
    Bill entity.

    Invariants:
    - tax_amount is 5% of consultation_fee + medication_fee, half-up to cents
      (fee-only bills from cancellations and no-shows carry no tax)
    - refund_amount, when set, never exceeds total_amount
    - REFUNDED is reachable only from PAID through a full refund
    """

    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the bill."""

    patient_id: Mapped[int] = mapped_column(Integer)
    """Patient being billed."""

    appointment_id: Mapped[int] = mapped_column(Integer)
    """Appointment that triggered the bill."""

    consultation_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    medication_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    status: Mapped[str] = mapped_column(String(20), default=BillStatus.OPEN.value)
    """Current status. Valid values: OPEN, PAID, VOID, REFUNDED."""

    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    """Amount refunded so far (partial refunds keep the bill PAID)."""

    refund_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(ClinicDateTime)

    __table_args__ = (
        Index('idx_bills_appointment', 'appointment_id'),
        Index('idx_bills_patient', 'patient_id'),
    )

    @property
    def status_enum(self) -> BillStatus:
        return BillStatus(self.status)
