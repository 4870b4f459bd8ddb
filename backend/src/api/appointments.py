# pyright: reportMissingTypeStubs=false
"""
Appointment API endpoints.

Every mutation commits the appointment change with its outbox event and then
schedules a background task that relays pending events to billing and
notifications.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from api.dependencies import EventDispatcher, get_correlation_id, get_event_dispatcher, get_service_clients
from api.responses import (
    AppointmentCountResponse, AppointmentPageResponse, AppointmentResponse,
    BookAppointmentRequest, RescheduleAppointmentRequest
)
from core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from core.database import get_db
from core.exceptions import ValidationError
from models import AppointmentStatus
from services import AppointmentService
from services.service_clients import ServiceClients
from utils.datetime_utils import parse_date_string

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/appointments",
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
def book_appointment(
    request: BookAppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    clients: ServiceClients = Depends(get_service_clients),
    dispatch_events: EventDispatcher = Depends(get_event_dispatcher),
    correlation_id: str = Depends(get_correlation_id),
) -> AppointmentResponse:
    appointment = AppointmentService.book_appointment(
        db, clients,
        patient_id=request.patient_id,
        doctor_id=request.doctor_id,
        department=request.department,
        slot_start=request.slot_start,
        slot_end=request.slot_end,
        correlation_id=correlation_id,
    )
    background_tasks.add_task(dispatch_events, clients)
    return AppointmentResponse.model_validate(appointment)


@router.get("/appointments", summary="List appointments")
def list_appointments(
    patient_id: Optional[int] = Query(None, alias="patientId"),
    doctor_id: Optional[int] = Query(None, alias="doctorId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    correlation_id: str = Depends(get_correlation_id),
) -> AppointmentPageResponse:
    appointment_status: Optional[AppointmentStatus] = None
    if status_filter:
        try:
            appointment_status = AppointmentStatus(status_filter.upper())
        except ValueError:
            # Unknown status values are ignored rather than rejected
            logger.debug(f"[{correlation_id}] Ignoring unknown status filter {status_filter!r}")

    appointments, total = AppointmentService.list_appointments(
        db,
        patient_id=patient_id,
        doctor_id=doctor_id,
        status=appointment_status,
        page=page,
        limit=limit,
        correlation_id=correlation_id,
    )
    return AppointmentPageResponse(
        items=[AppointmentResponse.model_validate(a) for a in appointments],
        page=page,
        limit=limit,
        total=total,
    )


@router.get("/appointments/doctor/{doctor_id}/count", summary="Count a doctor's appointments on a date")
def count_appointments_for_doctor(
    doctor_id: int,
    date: str = Query(..., description="YYYY-MM-DD or ISO datetime"),
    db: Session = Depends(get_db),
    correlation_id: str = Depends(get_correlation_id),
) -> AppointmentCountResponse:
    try:
        day = parse_date_string(date)
    except ValueError as e:
        raise ValidationError(str(e), correlation_id) from e

    count = AppointmentService.count_for_doctor_on_date(db, doctor_id, day)
    return AppointmentCountResponse(doctor_id=doctor_id, date=day, count=count)


@router.get("/appointments/{appointment_id}", summary="Get an appointment")
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    correlation_id: str = Depends(get_correlation_id),
) -> AppointmentResponse:
    appointment = AppointmentService.get_appointment(db, appointment_id, correlation_id)
    return AppointmentResponse.model_validate(appointment)


@router.put("/appointments/{appointment_id}/reschedule", summary="Reschedule an appointment")
def reschedule_appointment(
    appointment_id: int,
    request: RescheduleAppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    clients: ServiceClients = Depends(get_service_clients),
    dispatch_events: EventDispatcher = Depends(get_event_dispatcher),
    correlation_id: str = Depends(get_correlation_id),
) -> AppointmentResponse:
    appointment = AppointmentService.reschedule_appointment(
        db, clients,
        appointment_id=appointment_id,
        new_slot_start=request.new_slot_start,
        new_slot_end=request.new_slot_end,
        correlation_id=correlation_id,
        expected_version=request.version,
    )
    background_tasks.add_task(dispatch_events, clients)
    return AppointmentResponse.model_validate(appointment)


@router.put("/appointments/{appointment_id}/cancel", summary="Cancel an appointment")
def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    version: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    clients: ServiceClients = Depends(get_service_clients),
    dispatch_events: EventDispatcher = Depends(get_event_dispatcher),
    correlation_id: str = Depends(get_correlation_id),
) -> AppointmentResponse:
    appointment = AppointmentService.cancel_appointment(db, appointment_id, correlation_id, version)
    background_tasks.add_task(dispatch_events, clients)
    return AppointmentResponse.model_validate(appointment)


@router.put("/appointments/{appointment_id}/complete", summary="Mark an appointment completed")
def complete_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    version: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    clients: ServiceClients = Depends(get_service_clients),
    dispatch_events: EventDispatcher = Depends(get_event_dispatcher),
    correlation_id: str = Depends(get_correlation_id),
) -> AppointmentResponse:
    appointment = AppointmentService.complete_appointment(db, appointment_id, correlation_id, version)
    background_tasks.add_task(dispatch_events, clients)
    return AppointmentResponse.model_validate(appointment)


@router.put("/appointments/{appointment_id}/no-show", summary="Mark an appointment as no-show")
def mark_no_show(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    version: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    clients: ServiceClients = Depends(get_service_clients),
    dispatch_events: EventDispatcher = Depends(get_event_dispatcher),
    correlation_id: str = Depends(get_correlation_id),
) -> AppointmentResponse:
    appointment = AppointmentService.mark_no_show(db, appointment_id, correlation_id, version)
    background_tasks.add_task(dispatch_events, clients)
    return AppointmentResponse.model_validate(appointment)
