"""
Utility functions for consistent appointment queries.

This module holds the overlap detector and the daily count used by the
availability checker, so every caller applies the same status filters and
half-open interval semantics.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Appointment, AppointmentStatus
from utils.datetime_utils import day_bounds


class OwnerKind(str, Enum):
    """Whose schedule a query or lock applies to."""

    DOCTOR = "doctor"
    PATIENT = "patient"


# Statuses counted against a doctor's daily cap
DAILY_CAP_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.COMPLETED.value)


def find_overlapping_appointment_ids(
    db: Session,
    owner_kind: OwnerKind,
    owner_id: int,
    window_start: datetime,
    window_end: datetime,
    exclude_appointment_id: Optional[int] = None
) -> Set[int]:
    """
    Return ids of non-cancelled appointments whose slot intersects the window.

    Two slots intersect iff ``existing.start < window_end and existing.end > window_start``,
    so slots that only share a boundary instant do not conflict.

    Args:
        db: Database session
        owner_kind: Query the doctor's or the patient's schedule
        owner_id: Doctor or patient id
        window_start: Inclusive window start
        window_end: Exclusive window end
        exclude_appointment_id: Appointment to ignore (the one being rescheduled)

    Returns:
        Set of conflicting appointment ids (empty when the window is free)
    """
    owner_column = Appointment.doctor_id if owner_kind == OwnerKind.DOCTOR else Appointment.patient_id

    query = db.query(Appointment.id).filter(
        owner_column == owner_id,
        Appointment.status != AppointmentStatus.CANCELLED.value,
        Appointment.slot_start < window_end,
        Appointment.slot_end > window_start
    )

    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return {appointment_id for (appointment_id,) in query.all()}


def count_appointments_for_doctor_on_date(db: Session, doctor_id: int, day: date) -> int:
    """
    Count a doctor's SCHEDULED and COMPLETED appointments starting on a calendar date.

    The date is interpreted in the clinic timezone: slots starting in
    [day 00:00, day+1 00:00) are counted.
    """
    day_start, day_end = day_bounds(day)

    count = db.query(func.count(Appointment.id)).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.slot_start >= day_start,
        Appointment.slot_start < day_end,
        Appointment.status.in_(DAILY_CAP_STATUSES)
    ).scalar()

    return int(count or 0)
