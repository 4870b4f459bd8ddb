"""
Appointment service for the booking lifecycle.

This module owns every state change of an appointment: booking, rescheduling,
cancellation, completion and no-show. Each mutation commits the appointment
change together with one row in the event outbox; delivery to billing and
notifications happens after commit (see EventRelayService).

Booking and rescheduling serialise on per-doctor and per-patient lock rows, so
the overlap re-check and the write that follows cannot interleave with another
booking for the same doctor or patient.
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from core.constants import MAX_RESCHEDULES, RESCHEDULE_CUTOFF, MIN_BOOKING_LEAD_TIME, MAX_PAGE_SIZE
from core.database import commit_or_conflict
from core.exceptions import (
    ValidationError, NotFoundError, SlotUnavailableError, SlotConflictError,
    LimitExceededError, CutoffViolationError, LeadTimeViolationError,
    InvalidStateError, ConflictError
)
from models import Appointment, AppointmentStatus, AppointmentEvent, LifecycleEventType
from services.service_clients import ServiceClients
from utils.appointment_queries import (
    OwnerKind, find_overlapping_appointment_ids, count_appointments_for_doctor_on_date
)
from utils.datetime_utils import clinic_now, ensure_clinic_tz
from utils.schedule_locks import lock_schedules

logger = logging.getLogger(__name__)


# Lifecycle event recorded for each terminal transition
_TRANSITION_EVENTS = {
    AppointmentStatus.CANCELLED: LifecycleEventType.CANCELLED,
    AppointmentStatus.COMPLETED: LifecycleEventType.COMPLETED,
    AppointmentStatus.NO_SHOW: LifecycleEventType.NO_SHOW,
}


def _normalize_slot(slot_start: datetime, slot_end: datetime, correlation_id: str) -> Tuple[datetime, datetime]:
    start = ensure_clinic_tz(slot_start)
    end = ensure_clinic_tz(slot_end)
    if start is None or end is None:
        raise ValidationError("slotStart and slotEnd are required", correlation_id)
    if end <= start:
        raise ValidationError("slotEnd must be after slotStart", correlation_id)
    return start, end


class AppointmentService:
    """
    Service class for appointment operations.

    All methods are static and take the request's database session. Methods
    that talk to other services also take the ServiceClients bundle and the
    correlation id to forward.
    """

    @staticmethod
    def book_appointment(
        db: Session,
        clients: ServiceClients,
        patient_id: int,
        doctor_id: int,
        department: str,
        slot_start: datetime,
        slot_end: datetime,
        correlation_id: str
    ) -> Appointment:
        """
        Book a new SCHEDULED appointment.

        Validation order: slot ordering, patient exists and is active, doctor
        exists, department matches, remote availability check, then the doctor
        and patient overlap checks under the schedule locks.

        Returns:
            The persisted appointment (rescheduleCount 0)

        Raises:
            ValidationError: slotEnd <= slotStart or department mismatch
            NotFoundError: Unknown or inactive patient, unknown doctor
            SlotUnavailableError: Availability check rejected the slot
            SlotConflictError: Doctor or patient already has an overlapping appointment
            DependencyUnavailableError: Patient, doctor or availability service unreachable
            ConflictError: Lost a concurrent write
        """
        start, end = _normalize_slot(slot_start, slot_end, correlation_id)

        patient = clients.patients.get_patient(patient_id, correlation_id)
        if patient is None or not patient.active:
            raise NotFoundError(f"Patient {patient_id} not found or inactive", correlation_id)

        doctor = clients.doctors.get_doctor(doctor_id, correlation_id)
        if doctor is None:
            raise NotFoundError(f"Doctor {doctor_id} not found", correlation_id)

        if department != doctor.department:
            raise ValidationError(
                f"Department mismatch: doctor {doctor_id} belongs to {doctor.department}",
                correlation_id
            )

        availability = clients.availability.check(doctor_id, department, start, end, correlation_id)
        if not availability.available:
            raise SlotUnavailableError(availability.reason, correlation_id)

        lock_schedules(db, [(OwnerKind.DOCTOR, doctor_id), (OwnerKind.PATIENT, patient_id)])
        AppointmentService._ensure_no_overlap(db, doctor_id, patient_id, start, end, correlation_id)

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            department=department,
            slot_start=start,
            slot_end=end,
            status=AppointmentStatus.SCHEDULED.value,
            reschedule_count=0
        )
        db.add(appointment)
        db.flush()

        AppointmentService._record_event(db, appointment, LifecycleEventType.BOOKED, correlation_id)
        commit_or_conflict(db, correlation_id)

        logger.info(
            f"[{correlation_id}] Booked appointment {appointment.id} for patient {patient_id} "
            f"with doctor {doctor_id} at {start.isoformat()}"
        )
        return appointment

    @staticmethod
    def reschedule_appointment(
        db: Session,
        clients: ServiceClients,
        appointment_id: int,
        new_slot_start: datetime,
        new_slot_end: datetime,
        correlation_id: str,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Appointment:
        """
        Move a SCHEDULED appointment to a new slot.

        Checks, in order: appointment exists, it is SCHEDULED, version matches
        (when given), reschedule limit, cutoff before the current start, lead
        time before the new start, slot ordering, availability, overlaps with
        the appointment itself excluded.

        Raises:
            NotFoundError, InvalidStateError, ConflictError, LimitExceededError,
            CutoffViolationError, LeadTimeViolationError, ValidationError,
            SlotUnavailableError, SlotConflictError, DependencyUnavailableError
        """
        appointment = AppointmentService.get_appointment(db, appointment_id, correlation_id)

        if appointment.status_enum != AppointmentStatus.SCHEDULED:
            raise InvalidStateError(
                f"Cannot reschedule appointment in status {appointment.status}", correlation_id
            )
        AppointmentService._check_version(appointment, expected_version, correlation_id)

        if appointment.reschedule_count >= MAX_RESCHEDULES:
            raise LimitExceededError(
                f"Appointment has already been rescheduled {MAX_RESCHEDULES} times", correlation_id
            )

        current = ensure_clinic_tz(now) or clinic_now()
        if appointment.slot_start - current < RESCHEDULE_CUTOFF:
            raise CutoffViolationError(
                "Appointment starts too soon to be rescheduled", correlation_id
            )

        new_start = ensure_clinic_tz(new_slot_start)
        if new_start is None:
            raise ValidationError("newSlotStart is required", correlation_id)
        if new_start - current < MIN_BOOKING_LEAD_TIME:
            raise LeadTimeViolationError(
                "New slot does not satisfy the minimum booking lead time", correlation_id
            )

        start, end = _normalize_slot(new_start, new_slot_end, correlation_id)

        # Department is not re-validated on reschedule
        availability = clients.availability.check(appointment.doctor_id, None, start, end, correlation_id)
        if not availability.available:
            raise SlotUnavailableError(availability.reason, correlation_id)

        lock_schedules(db, [
            (OwnerKind.DOCTOR, appointment.doctor_id),
            (OwnerKind.PATIENT, appointment.patient_id),
        ])
        AppointmentService._ensure_no_overlap(
            db, appointment.doctor_id, appointment.patient_id, start, end, correlation_id,
            exclude_appointment_id=appointment.id
        )

        old_start = appointment.slot_start
        appointment.slot_start = start
        appointment.slot_end = end
        appointment.reschedule_count += 1

        AppointmentService._record_event(
            db, appointment, LifecycleEventType.RESCHEDULED, correlation_id,
            ordinal=appointment.reschedule_count
        )
        commit_or_conflict(db, correlation_id)

        logger.info(
            f"[{correlation_id}] Rescheduled appointment {appointment.id} from {old_start.isoformat()} "
            f"to {start.isoformat()} ({appointment.reschedule_count}/{MAX_RESCHEDULES})"
        )
        return appointment

    @staticmethod
    def cancel_appointment(
        db: Session, appointment_id: int, correlation_id: str, expected_version: Optional[int] = None
    ) -> Appointment:
        """Cancel a SCHEDULED appointment. Cancelled slots no longer count as overlaps."""
        return AppointmentService._transition(
            db, appointment_id, AppointmentStatus.CANCELLED, correlation_id, expected_version
        )

    @staticmethod
    def complete_appointment(
        db: Session, appointment_id: int, correlation_id: str, expected_version: Optional[int] = None
    ) -> Appointment:
        """Mark a SCHEDULED appointment as COMPLETED (triggers billing)."""
        return AppointmentService._transition(
            db, appointment_id, AppointmentStatus.COMPLETED, correlation_id, expected_version
        )

    @staticmethod
    def mark_no_show(
        db: Session, appointment_id: int, correlation_id: str, expected_version: Optional[int] = None
    ) -> Appointment:
        """Mark a SCHEDULED appointment as NO_SHOW (triggers the no-show fee)."""
        return AppointmentService._transition(
            db, appointment_id, AppointmentStatus.NO_SHOW, correlation_id, expected_version
        )

    @staticmethod
    def get_appointment(db: Session, appointment_id: int, correlation_id: Optional[str] = None) -> Appointment:
        appointment = db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found", correlation_id)
        return appointment

    @staticmethod
    def list_appointments(
        db: Session,
        patient_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        status: Optional[AppointmentStatus] = None,
        page: int = 1,
        limit: int = 20,
        correlation_id: Optional[str] = None
    ) -> Tuple[List[Appointment], int]:
        """
        List appointments ordered by slot start, with optional filters.

        Args:
            page: 1-based page number
            limit: Page size (1..MAX_PAGE_SIZE)

        Returns:
            Tuple of (appointments on the page, total matching count)
        """
        if page < 1:
            raise ValidationError("page must be at least 1", correlation_id)
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", correlation_id)

        query = db.query(Appointment)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if status is not None:
            query = query.filter(Appointment.status == status.value)

        total = query.count()
        appointments = (
            query.order_by(Appointment.slot_start, Appointment.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return appointments, total

    @staticmethod
    def count_for_doctor_on_date(db: Session, doctor_id: int, day: date) -> int:
        """Daily count used by the availability checker's cap."""
        return count_appointments_for_doctor_on_date(db, doctor_id, day)

    @staticmethod
    def _transition(
        db: Session,
        appointment_id: int,
        target: AppointmentStatus,
        correlation_id: str,
        expected_version: Optional[int]
    ) -> Appointment:
        appointment = AppointmentService.get_appointment(db, appointment_id, correlation_id)
        AppointmentService._check_version(appointment, expected_version, correlation_id)

        if not appointment.can_transition_to(target):
            raise InvalidStateError(
                f"Cannot move appointment from {appointment.status} to {target.value}", correlation_id
            )

        appointment.status = target.value
        AppointmentService._record_event(db, appointment, _TRANSITION_EVENTS[target], correlation_id)
        commit_or_conflict(db, correlation_id)

        logger.info(f"[{correlation_id}] Appointment {appointment.id} is now {target.value}")
        return appointment

    @staticmethod
    def _check_version(appointment: Appointment, expected_version: Optional[int], correlation_id: str) -> None:
        if expected_version is not None and appointment.version != expected_version:
            raise ConflictError(
                f"Appointment {appointment.id} was modified (version {appointment.version}, "
                f"expected {expected_version})",
                correlation_id
            )

    @staticmethod
    def _ensure_no_overlap(
        db: Session,
        doctor_id: int,
        patient_id: int,
        start: datetime,
        end: datetime,
        correlation_id: str,
        exclude_appointment_id: Optional[int] = None
    ) -> None:
        conflict: Optional[str] = None
        if find_overlapping_appointment_ids(db, OwnerKind.DOCTOR, doctor_id, start, end, exclude_appointment_id):
            conflict = "Doctor already has an appointment in this slot"
        elif find_overlapping_appointment_ids(db, OwnerKind.PATIENT, patient_id, start, end, exclude_appointment_id):
            conflict = "Patient already has an appointment in this slot"

        if conflict is not None:
            # Release the schedule locks taken by the caller
            db.rollback()
            raise SlotConflictError(conflict, correlation_id)

    @staticmethod
    def _record_event(
        db: Session,
        appointment: Appointment,
        event_type: LifecycleEventType,
        correlation_id: str,
        ordinal: Optional[int] = None
    ) -> AppointmentEvent:
        """Add an outbox row for the event; it commits with the appointment change."""
        event = AppointmentEvent(
            idempotency_key=AppointmentEvent.build_idempotency_key(appointment.id, event_type, ordinal),
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            event_type=event_type.value,
            slot_start=appointment.slot_start,
            slot_end=appointment.slot_end,
            correlation_id=correlation_id,
            attempts=0
        )
        db.add(event)
        return event
