"""
Appointment model representing a booked slot between a patient and a doctor.

Appointments are owned exclusively by the appointment service. Patients and
doctors live in other services, so they are referenced by id only.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet

from sqlalchemy import String, Integer, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base
from models.base import ClinicDateTime


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment."""

    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


# Explicit transition table. Terminal states have no outgoing transitions.
APPOINTMENT_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


class Appointment(Base):
    """
    Appointment entity.

    Invariants:
    - slot_end is strictly after slot_start
    - non-cancelled appointments of one doctor (and of one patient) never overlap
      under half-open [slot_start, slot_end) semantics
    - reschedule_count never exceeds 2

    ``version`` is SQLAlchemy's optimistic concurrency token: every UPDATE checks
    and increments it, and a mismatch raises StaleDataError at flush time.
    """

    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the appointment."""

    patient_id: Mapped[int] = mapped_column(Integer)
    """Patient id in the patient service."""

    doctor_id: Mapped[int] = mapped_column(Integer)
    """Doctor id in the doctor directory."""

    department: Mapped[str] = mapped_column(String(100))
    """Department the appointment was booked under (validated against the doctor)."""

    slot_start: Mapped[datetime] = mapped_column(ClinicDateTime)
    """Inclusive start of the slot."""

    slot_end: Mapped[datetime] = mapped_column(ClinicDateTime)
    """Exclusive end of the slot."""

    status: Mapped[str] = mapped_column(String(20), default=AppointmentStatus.SCHEDULED.value)
    """Current status. Valid values: SCHEDULED, CANCELLED, COMPLETED, NO_SHOW."""

    created_at: Mapped[datetime] = mapped_column(ClinicDateTime)
    """Timestamp when the appointment was booked."""

    reschedule_count: Mapped[int] = mapped_column(Integer, default=0)
    """Number of successful reschedules (0..2)."""

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    """Optimistic concurrency version, managed by SQLAlchemy."""

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint('slot_end > slot_start', name='check_appointment_slot_order'),
        CheckConstraint('reschedule_count >= 0 AND reschedule_count <= 2', name='check_reschedule_count'),
        # Overlap detection scans one owner's appointments ordered by start
        Index('idx_appointments_doctor_slot', 'doctor_id', 'slot_start'),
        Index('idx_appointments_patient_slot', 'patient_id', 'slot_start'),
        Index('idx_appointments_status', 'status'),
    )

    @property
    def status_enum(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)

    def can_transition_to(self, target: AppointmentStatus) -> bool:
        """Check the transition table for a move from the current status."""
        return target in APPOINTMENT_TRANSITIONS[self.status_enum]
