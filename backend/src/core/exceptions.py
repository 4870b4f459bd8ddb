"""
Domain exceptions shared by the appointment, availability and billing services.

Every exception carries a stable error code and the HTTP status it maps to.
The FastAPI exception handlers in main.py render them as
``{"code", "message", "correlationId"}``.
"""

from typing import Optional


class ServiceError(Exception):
    """Base class for business errors surfaced to the caller."""

    code = "SERVICE_ERROR"
    status_code = 400

    def __init__(self, message: str, correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id


class ValidationError(ServiceError):
    """Malformed input: bad time ordering, missing fields, bad amounts."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(ServiceError):
    """Referenced patient, doctor, appointment or bill does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class SlotUnavailableError(ServiceError):
    """Availability check rejected the slot (clinic hours, lead time, daily cap)."""

    code = "SLOT_UNAVAILABLE"
    status_code = 409


class SlotConflictError(ServiceError):
    """Slot overlaps an existing non-cancelled appointment."""

    code = "SLOT_CONFLICT"
    status_code = 409


class LimitExceededError(ServiceError):
    """Appointment has already been rescheduled the maximum number of times."""

    code = "LIMIT_EXCEEDED"
    status_code = 409


class CutoffViolationError(ServiceError):
    """Appointment is too close to its current start to be rescheduled."""

    code = "CUTOFF_VIOLATION"
    status_code = 409


class LeadTimeViolationError(ServiceError):
    """Requested slot starts too soon."""

    code = "LEAD_TIME_VIOLATION"
    status_code = 409


class InvalidStateError(ServiceError):
    """Illegal appointment or bill state transition."""

    code = "INVALID_STATE"
    status_code = 409


class ConflictError(ServiceError):
    """Duplicate bill, optimistic-lock mismatch or concurrent write."""

    code = "CONFLICT"
    status_code = 409


class DependencyUnavailableError(ServiceError):
    """A required remote collaborator could not be reached."""

    code = "DEPENDENCY_UNAVAILABLE"
    status_code = 503
