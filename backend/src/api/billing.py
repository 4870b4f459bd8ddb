# pyright: reportMissingTypeStubs=false
"""
Billing API endpoints.

Lifecycle events arrive from the appointment outbox on ``/billing-events``;
bills are managed through the ``/bills`` endpoints. BillingService only
flushes, so each endpoint commits once.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.dependencies import get_correlation_id, get_service_clients
from api.responses import (
    BillingEventRequest, BillingEventResponse, BillListResponse, BillPageResponse,
    BillResponse, RefundRequest
)
from core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from core.database import commit_or_conflict, get_db
from services import BillingService
from services.service_clients import ServiceClients

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/billing-events", summary="Apply an appointment lifecycle event")
def ingest_billing_event(
    event: BillingEventRequest,
    db: Session = Depends(get_db),
    clients: ServiceClients = Depends(get_service_clients),
    request_correlation_id: str = Depends(get_correlation_id),
) -> BillingEventResponse:
    correlation_id = event.correlation_id or request_correlation_id
    logger.info(
        f"[{correlation_id}] Received {event.event_type} event for appointment {event.appointment_id}"
    )

    bill, applied = BillingService.process_billing_event(
        db, clients,
        appointment_id=event.appointment_id,
        patient_id=event.patient_id,
        event_type=event.event_type,
        correlation_id=correlation_id,
        idempotency_key=event.idempotency_key,
        now=event.occurred_at,
    )
    commit_or_conflict(db, correlation_id)

    return BillingEventResponse(
        processed=applied,
        bill=BillResponse.model_validate(bill) if bill is not None else None,
    )


@router.get("/bills", summary="List bills")
def list_bills(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    correlation_id: str = Depends(get_correlation_id),
) -> BillPageResponse:
    bills, total = BillingService.list_bills(db, page=page, limit=limit, correlation_id=correlation_id)
    return BillPageResponse(
        items=[BillResponse.model_validate(b) for b in bills],
        page=page,
        limit=limit,
        total=total,
    )


@router.get("/bills/patient/{patient_id}", summary="List a patient's bills")
def list_bills_for_patient(
    patient_id: int,
    db: Session = Depends(get_db),
) -> BillListResponse:
    bills = BillingService.list_bills_for_patient(db, patient_id)
    return BillListResponse(bills=[BillResponse.model_validate(b) for b in bills])


@router.get("/bills/{bill_id}", summary="Get a bill")
def get_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    correlation_id: str = Depends(get_correlation_id),
) -> BillResponse:
    return BillResponse.model_validate(BillingService.get_bill(db, bill_id, correlation_id))


@router.put("/bills/{bill_id}/void", summary="Void an OPEN bill")
def void_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    correlation_id: str = Depends(get_correlation_id),
) -> BillResponse:
    bill = BillingService.void_bill(db, bill_id, correlation_id)
    commit_or_conflict(db, correlation_id)
    return BillResponse.model_validate(bill)


@router.put("/bills/{bill_id}/paid", summary="Mark an OPEN bill as paid")
def mark_bill_paid(
    bill_id: int,
    db: Session = Depends(get_db),
    correlation_id: str = Depends(get_correlation_id),
) -> BillResponse:
    bill = BillingService.mark_paid(db, bill_id, correlation_id)
    commit_or_conflict(db, correlation_id)
    return BillResponse.model_validate(bill)


@router.post("/bills/{bill_id}/refund", summary="Refund a PAID bill")
def refund_bill(
    bill_id: int,
    request: RefundRequest,
    db: Session = Depends(get_db),
    correlation_id: str = Depends(get_correlation_id),
) -> BillResponse:
    bill = BillingService.process_refund(
        db, bill_id, request.refund_amount, request.reason, correlation_id
    )
    commit_or_conflict(db, correlation_id)
    return BillResponse.model_validate(bill)
