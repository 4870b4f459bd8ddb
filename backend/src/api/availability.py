# pyright: reportMissingTypeStubs=false
"""
Availability API endpoint served by the doctor directory.
"""

import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_correlation_id, get_service_clients
from api.responses import AvailabilityCheckRequest, AvailabilityCheckResponse
from services import AvailabilityService
from services.service_clients import ServiceClients

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/doctors/{doctor_id}/check-availability", summary="Check whether a doctor can take a slot")
def check_availability(
    doctor_id: int,
    request: AvailabilityCheckRequest,
    clients: ServiceClients = Depends(get_service_clients),
    correlation_id: str = Depends(get_correlation_id),
) -> AvailabilityCheckResponse:
    """
    Run the availability rules for a slot.

    A negative answer is a normal 200 response with ``available=false`` and the
    reason; only an unknown doctor (404) or an unreachable directory (503) fails.
    """
    result = AvailabilityService.check_availability(
        clients,
        doctor_id=doctor_id,
        department=request.department,
        slot_start=request.slot_start,
        slot_end=request.slot_end,
        correlation_id=correlation_id,
    )
    return AvailabilityCheckResponse(available=result.available, reason=result.reason)
