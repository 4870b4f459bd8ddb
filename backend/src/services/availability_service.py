"""
Availability service for validating a requested slot for a doctor.

Checks run in a fixed order and the first failure wins:

1. the doctor exists (NotFoundError otherwise)
2. the department matches the doctor's, when one was requested
3. the start time-of-day lies within clinic hours (inclusive bounds)
4. the start is at least the minimum lead time away
5. the doctor's daily cap is not reached

The daily count is a best-effort lookup: if the appointment service cannot be
reached, the cap check is skipped and a warning is logged.
"""

import logging
from datetime import datetime
from typing import Optional

from core.config import DOCTOR_DAILY_CAP
from core.constants import CLINIC_OPEN_TIME, CLINIC_CLOSE_TIME, MIN_BOOKING_LEAD_TIME
from core.exceptions import NotFoundError, ValidationError
from services.service_clients import AvailabilityResult, ServiceClients
from utils.datetime_utils import clinic_now, ensure_clinic_tz

logger = logging.getLogger(__name__)

# Stable reason prefixes; detail may follow after a colon
REASON_AVAILABLE = "available"
REASON_DEPARTMENT_MISMATCH = "department mismatch"
REASON_OUTSIDE_CLINIC_HOURS = "outside clinic hours"
REASON_INSUFFICIENT_LEAD_TIME = "insufficient lead time"
REASON_DAILY_CAP_REACHED = "daily cap reached"


class AvailabilityService:
    """Stateless slot validation for the doctor directory."""

    @staticmethod
    def check_availability(
        clients: ServiceClients,
        doctor_id: int,
        department: Optional[str],
        slot_start: datetime,
        slot_end: datetime,
        correlation_id: str,
        now: Optional[datetime] = None,
        daily_cap: int = DOCTOR_DAILY_CAP
    ) -> AvailabilityResult:
        """
        Decide whether a doctor can take the requested slot.

        Args:
            clients: Remote collaborators (doctor directory, appointment counts)
            doctor_id: Doctor to check
            department: Requested department, or None to skip the department check
            slot_start: Requested start
            slot_end: Requested end (must be after start)
            correlation_id: Forwarded on remote calls and attached to errors
            now: Override of the current clinic time
            daily_cap: Maximum SCHEDULED/COMPLETED appointments per calendar date

        Returns:
            AvailabilityResult with ``reason`` set to the first failed check

        Raises:
            NotFoundError: Doctor does not exist
            ValidationError: slot_end is not after slot_start
            DependencyUnavailableError: Doctor directory unreachable
        """
        start = ensure_clinic_tz(slot_start)
        end = ensure_clinic_tz(slot_end)
        if start is None or end is None:
            raise ValidationError("slotStart and slotEnd are required", correlation_id)

        doctor = clients.doctors.get_doctor(doctor_id, correlation_id)
        if doctor is None:
            raise NotFoundError(f"Doctor {doctor_id} not found", correlation_id)

        if end <= start:
            raise ValidationError("slotEnd must be after slotStart", correlation_id)

        if department is not None and department != doctor.department:
            return AvailabilityResult(
                available=False,
                reason=f"{REASON_DEPARTMENT_MISMATCH}: doctor belongs to {doctor.department}"
            )

        start_time = start.time().replace(tzinfo=None)
        if start_time < CLINIC_OPEN_TIME or start_time > CLINIC_CLOSE_TIME:
            return AvailabilityResult(
                available=False,
                reason=(
                    f"{REASON_OUTSIDE_CLINIC_HOURS}: clinic hours are "
                    f"{CLINIC_OPEN_TIME.strftime('%H:%M')}-{CLINIC_CLOSE_TIME.strftime('%H:%M')}"
                )
            )

        current = ensure_clinic_tz(now) or clinic_now()
        if start - current < MIN_BOOKING_LEAD_TIME:
            hours = int(MIN_BOOKING_LEAD_TIME.total_seconds() // 3600)
            return AvailabilityResult(
                available=False,
                reason=f"{REASON_INSUFFICIENT_LEAD_TIME}: book at least {hours} hours in advance"
            )

        count = clients.appointments.count_for_date(doctor_id, start.date(), correlation_id)
        if not count.ok:
            logger.warning(
                f"[{correlation_id}] Skipping daily cap check for doctor {doctor_id}: {count.error}"
            )
        elif count.value is not None and count.value >= daily_cap:
            return AvailabilityResult(
                available=False,
                reason=f"{REASON_DAILY_CAP_REACHED} ({daily_cap} appointments/day)"
            )

        return AvailabilityResult(available=True, reason=REASON_AVAILABLE)
