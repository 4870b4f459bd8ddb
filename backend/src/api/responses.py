"""
Shared request and response models for API endpoints.

Field names are snake_case in Python and camelCase on the wire; both are
accepted on input.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising to camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ErrorResponse(CamelModel):
    """Body of every error response."""
    code: str
    message: str
    correlation_id: str


# ===== Appointments =====

class BookAppointmentRequest(CamelModel):
    patient_id: int
    doctor_id: int
    department: str = Field(..., min_length=1, max_length=100)
    slot_start: datetime
    slot_end: datetime


class RescheduleAppointmentRequest(CamelModel):
    new_slot_start: datetime
    new_slot_end: datetime
    version: Optional[int] = None  # Optimistic concurrency check when supplied


class AppointmentResponse(CamelModel):
    """Response model for an appointment."""
    id: int
    patient_id: int
    doctor_id: int
    department: str
    slot_start: datetime
    slot_end: datetime
    status: str
    created_at: datetime
    reschedule_count: int
    version: int


class AppointmentPageResponse(CamelModel):
    """Response model for a page of appointments."""
    items: List[AppointmentResponse]
    page: int
    limit: int
    total: int


class AppointmentCountResponse(CamelModel):
    doctor_id: int
    date: date
    count: int


# ===== Availability =====

class AvailabilityCheckRequest(CamelModel):
    department: Optional[str] = None  # Skips the department check when omitted
    slot_start: datetime
    slot_end: datetime


class AvailabilityCheckResponse(CamelModel):
    available: bool
    reason: str


# ===== Billing =====

class BillingEventRequest(CamelModel):
    """Lifecycle event delivered by the appointment service."""
    appointment_id: int
    patient_id: int
    event_type: str
    correlation_id: Optional[str] = None
    idempotency_key: Optional[str] = None  # Defaults to "{appointmentId}:{eventType}"
    occurred_at: Optional[datetime] = None  # When the appointment changed; fee tiers are measured from it


class RefundRequest(CamelModel):
    refund_amount: Decimal = Field(..., decimal_places=2)
    reason: Optional[str] = Field(None, max_length=255)


class BillResponse(CamelModel):
    """Response model for a bill. Money fields serialise as decimal strings."""
    id: int
    patient_id: int
    appointment_id: int
    consultation_fee: Decimal
    medication_fee: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: str
    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    created_at: datetime


class BillingEventResponse(CamelModel):
    processed: bool  # False for redeliveries and ignored event types
    bill: Optional[BillResponse] = None


class BillPageResponse(CamelModel):
    items: List[BillResponse]
    page: int
    limit: int
    total: int


class BillListResponse(CamelModel):
    bills: List[BillResponse]
