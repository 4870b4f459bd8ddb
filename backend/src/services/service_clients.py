"""
HTTP clients for the collaborating services.

Every remote call is synchronous with a short timeout and forwards the caller's
correlation id. Two failure styles are used on purpose:

- Required lookups (patient, doctor, availability) raise: a 404 becomes
  NotFoundError or ``None``, anything else DependencyUnavailableError, and the
  calling operation aborts.
- Best-effort lookups (daily count, slot start, medication fee) never raise;
  they return a DependencyResult and the caller decides on the fallback.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Generic, Optional, TypeVar

import httpx

from core.config import (
    PATIENT_SERVICE_URL, DOCTOR_SERVICE_URL, AVAILABILITY_SERVICE_URL,
    APPOINTMENT_SERVICE_URL, BILLING_SERVICE_URL, NOTIFICATION_SERVICE_URL,
    REMOTE_CALL_TIMEOUT_SECONDS, STUB_MEDICATION_FEE
)
from core.constants import CORRELATION_ID_HEADER
from core.exceptions import DependencyUnavailableError, NotFoundError
from utils.datetime_utils import parse_datetime_to_clinic

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DependencyResult(Generic[T]):
    """Outcome of a best-effort remote lookup: either a value or an error description."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "DependencyResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "DependencyResult[T]":
        return cls(error=error)


@dataclass(frozen=True)
class PatientInfo:
    id: int
    active: bool


@dataclass(frozen=True)
class DoctorInfo:
    id: int
    department: str
    specialization: Optional[str] = None


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: str


class RemoteServiceClient:
    """Base class holding the base URL, timeout and optional test transport."""

    service_name = "remote"

    def __init__(
        self,
        base_url: str,
        timeout: float = REMOTE_CALL_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _request(self, method: str, path: str, correlation_id: str, **kwargs: Any) -> httpx.Response:
        headers = {CORRELATION_ID_HEADER: correlation_id}
        with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            return client.request(method, path, headers=headers, **kwargs)

    def _unavailable(self, exc: Exception, correlation_id: str) -> DependencyUnavailableError:
        logger.warning(f"[{correlation_id}] {self.service_name} call failed: {exc}")
        return DependencyUnavailableError(f"{self.service_name} unavailable", correlation_id)


class PatientDirectoryClient(RemoteServiceClient):
    """``GET /v1/patients/{id}`` on the patient service."""

    service_name = "patient service"

    def get_patient(self, patient_id: int, correlation_id: str) -> Optional[PatientInfo]:
        """Return the patient, or None if the patient service does not know the id."""
        try:
            response = self._request("GET", f"/v1/patients/{patient_id}", correlation_id)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            body: Dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise self._unavailable(e, correlation_id) from e

        active = body.get("active")
        return PatientInfo(id=patient_id, active=True if active is None else bool(active))


class DoctorDirectoryClient(RemoteServiceClient):
    """``GET /v1/doctors/{id}`` on the doctor directory."""

    service_name = "doctor service"

    def get_doctor(self, doctor_id: int, correlation_id: str) -> Optional[DoctorInfo]:
        """Return the doctor, or None if the directory does not know the id."""
        try:
            response = self._request("GET", f"/v1/doctors/{doctor_id}", correlation_id)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            body: Dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise self._unavailable(e, correlation_id) from e

        return DoctorInfo(
            id=doctor_id,
            department=str(body.get("department", "")),
            specialization=body.get("specialization")
        )


class AvailabilityClient(RemoteServiceClient):
    """``POST /v1/doctors/{id}/check-availability``."""

    service_name = "availability service"

    def check(
        self,
        doctor_id: int,
        department: Optional[str],
        slot_start: datetime,
        slot_end: datetime,
        correlation_id: str
    ) -> AvailabilityResult:
        payload: Dict[str, Any] = {
            "slotStart": slot_start.isoformat(),
            "slotEnd": slot_end.isoformat(),
        }
        if department is not None:
            payload["department"] = department

        try:
            response = self._request(
                "POST", f"/v1/doctors/{doctor_id}/check-availability", correlation_id, json=payload
            )
            if response.status_code == 404:
                raise NotFoundError("Doctor not found", correlation_id)
            response.raise_for_status()
            body: Dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise self._unavailable(e, correlation_id) from e

        return AvailabilityResult(
            available=bool(body.get("available")),
            reason=str(body.get("reason") or body.get("message") or "slot not available")
        )


class AppointmentServiceClient(RemoteServiceClient):
    """Read-only calls into the appointment service."""

    service_name = "appointment service"

    def count_for_date(self, doctor_id: int, day: date, correlation_id: str) -> DependencyResult[int]:
        """``GET /v1/appointments/doctor/{id}/count?date=YYYY-MM-DD``."""
        try:
            response = self._request(
                "GET", f"/v1/appointments/doctor/{doctor_id}/count", correlation_id,
                params={"date": day.isoformat()}
            )
            response.raise_for_status()
            return DependencyResult.success(int(response.json()["count"]))
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            return DependencyResult.failure(f"appointment count lookup failed: {e}")

    def get_slot_start(self, appointment_id: int, correlation_id: str) -> DependencyResult[datetime]:
        """``GET /v1/appointments/{id}`` and extract ``slotStart``."""
        try:
            response = self._request("GET", f"/v1/appointments/{appointment_id}", correlation_id)
            response.raise_for_status()
            return DependencyResult.success(parse_datetime_to_clinic(response.json()["slotStart"]))
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            return DependencyResult.failure(f"appointment slot lookup failed: {e}")


class MedicationFeeClient:
    """
    Medication charges for an appointment.

    The prescription service is not integrated yet, so every appointment is
    charged the configured flat medication fee.
    """

    def __init__(self, flat_fee: Decimal = STUB_MEDICATION_FEE):
        self.flat_fee = flat_fee

    def fee_for_appointment(self, appointment_id: int, correlation_id: str) -> DependencyResult[Decimal]:
        return DependencyResult.success(self.flat_fee)


class EventSinkClient:
    """Delivers lifecycle events to the billing service and the notification sink."""

    def __init__(
        self,
        billing: RemoteServiceClient,
        notifications: RemoteServiceClient
    ):
        self.billing = billing
        self.notifications = notifications

    def publish_billing_event(self, payload: Dict[str, Any], correlation_id: str) -> None:
        """POST to ``/v1/billing-events``. Raises httpx.HTTPError on any failure."""
        response = self.billing._request("POST", "/v1/billing-events", correlation_id, json=payload)
        response.raise_for_status()

    def publish_notification(self, payload: Dict[str, Any], correlation_id: str) -> None:
        """POST to ``/v1/notifications``. Raises httpx.HTTPError on any failure."""
        response = self.notifications._request("POST", "/v1/notifications", correlation_id, json=payload)
        response.raise_for_status()


@dataclass
class ServiceClients:
    """Bundle of every remote collaborator the services need."""

    patients: PatientDirectoryClient
    doctors: DoctorDirectoryClient
    availability: AvailabilityClient
    appointments: AppointmentServiceClient
    medication: MedicationFeeClient
    events: EventSinkClient


def build_service_clients(transport: Optional[httpx.BaseTransport] = None) -> ServiceClients:
    """Build clients pointed at the configured service URLs."""
    billing = RemoteServiceClient(BILLING_SERVICE_URL, transport=transport)
    billing.service_name = "billing service"
    notifications = RemoteServiceClient(NOTIFICATION_SERVICE_URL, transport=transport)
    notifications.service_name = "notification service"

    return ServiceClients(
        patients=PatientDirectoryClient(PATIENT_SERVICE_URL, transport=transport),
        doctors=DoctorDirectoryClient(DOCTOR_SERVICE_URL, transport=transport),
        availability=AvailabilityClient(AVAILABILITY_SERVICE_URL, transport=transport),
        appointments=AppointmentServiceClient(APPOINTMENT_SERVICE_URL, transport=transport),
        medication=MedicationFeeClient(),
        events=EventSinkClient(billing, notifications),
    )
