"""
Service for managing bills.

Reacts to appointment lifecycle events (COMPLETED, CANCELLED, NO_SHOW) and
implements the bill state machine: OPEN -> PAID | VOID, PAID -> REFUNDED via a
full refund. All amounts are Decimal rounded half-up to cents.

Methods flush but never commit; the API layer commits once per request so an
event's bill changes and its idempotency record land atomically.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from core.config import CONSULTATION_FEE, FALLBACK_MEDICATION_FEE
from core.constants import (
    TAX_RATE, CANCELLATION_FEE_RATE, NO_SHOW_FEE_RATE, FREE_CANCELLATION_WINDOW,
    MONEY_QUANTUM, UNKNOWN_SLOT_START_OFFSET, MAX_PAGE_SIZE
)
from core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import Bill, BillStatus, LifecycleEventType, ProcessedBillingEvent
from services.service_clients import ServiceClients
from utils.datetime_utils import clinic_now, ensure_clinic_tz

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

REFUND_REASON_EARLY_CANCELLATION = "cancellation >2h before start"
REFUND_REASON_LATE_CANCELLATION = "cancellation ≤2h — 50% fee applied"


def round_money(amount: Decimal) -> Decimal:
    """Round half-up to cents."""
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class BillingService:
    """Service for bill operations."""

    @staticmethod
    def calculate_tax(consultation_fee: Decimal, medication_fee: Decimal) -> Decimal:
        """Tax on the bill subtotal, e.g. (500.00 + 200.00) * 0.05 = 35.00."""
        return round_money((consultation_fee + medication_fee) * TAX_RATE)

    @staticmethod
    def process_billing_event(
        db: Session,
        clients: ServiceClients,
        appointment_id: int,
        patient_id: int,
        event_type: str,
        correlation_id: str,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[Optional[Bill], bool]:
        """
        Apply one lifecycle event to the bills of an appointment.

        Args:
            idempotency_key: Key sent by the appointment outbox; defaults to
                "{appointment_id}:{event_type}"
            now: When the lifecycle change happened. Cancellation fee tiers are
                measured from it so a delayed delivery charges the same fee; defaults
                to the current clinic time

        Returns:
            Tuple of (bill created or changed, or None; whether the event was applied).
            A redelivered key returns the bill recorded the first time and False.
        """
        key = idempotency_key or f"{appointment_id}:{event_type}"

        processed = db.get(ProcessedBillingEvent, key)
        if processed is not None:
            logger.info(f"[{correlation_id}] Billing event {key} already processed, acknowledging")
            previous = db.get(Bill, processed.bill_id) if processed.bill_id is not None else None
            return previous, False

        try:
            lifecycle_event = LifecycleEventType(event_type)
        except ValueError:
            lifecycle_event = None

        if lifecycle_event == LifecycleEventType.COMPLETED:
            bill: Optional[Bill] = BillingService.create_bill_for_completed_appointment(
                db, clients, appointment_id, patient_id, correlation_id
            )
        elif lifecycle_event == LifecycleEventType.CANCELLED:
            bill = BillingService.handle_cancellation(
                db, clients, appointment_id, patient_id, correlation_id, now=now
            )
        elif lifecycle_event == LifecycleEventType.NO_SHOW:
            bill = BillingService.handle_no_show(db, appointment_id, patient_id, correlation_id)
        else:
            logger.warning(f"[{correlation_id}] Ignoring unknown billing event type {event_type!r}")
            return None, False

        db.add(ProcessedBillingEvent(
            idempotency_key=key,
            appointment_id=appointment_id,
            event_type=lifecycle_event.value,
            bill_id=bill.id if bill is not None else None,
            correlation_id=correlation_id
        ))
        db.flush()
        return bill, True

    @staticmethod
    def create_bill_for_completed_appointment(
        db: Session,
        clients: ServiceClients,
        appointment_id: int,
        patient_id: int,
        correlation_id: str
    ) -> Bill:
        """
        Create the OPEN bill for a completed appointment.

        Raises:
            ConflictError: A bill already exists for the appointment
        """
        existing = BillingService._latest_bill_for_appointment(db, appointment_id)
        if existing is not None:
            raise ConflictError(f"Bill already exists for appointment {appointment_id}", correlation_id)

        medication = clients.medication.fee_for_appointment(appointment_id, correlation_id)
        if medication.ok and medication.value is not None:
            medication_fee = round_money(medication.value)
        else:
            logger.warning(
                f"[{correlation_id}] Medication fee lookup failed for appointment {appointment_id}, "
                f"using fallback {FALLBACK_MEDICATION_FEE}: {medication.error}"
            )
            medication_fee = round_money(FALLBACK_MEDICATION_FEE)

        consultation_fee = round_money(CONSULTATION_FEE)
        tax = BillingService.calculate_tax(consultation_fee, medication_fee)

        bill = Bill(
            patient_id=patient_id,
            appointment_id=appointment_id,
            consultation_fee=consultation_fee,
            medication_fee=medication_fee,
            tax_amount=tax,
            total_amount=consultation_fee + medication_fee + tax,
            status=BillStatus.OPEN.value
        )
        db.add(bill)
        db.flush()

        logger.info(f"[{correlation_id}] Created bill {bill.id} for appointment {appointment_id}: {bill.total_amount}")
        return bill

    @staticmethod
    def handle_cancellation(
        db: Session,
        clients: ServiceClients,
        appointment_id: int,
        patient_id: int,
        correlation_id: str,
        now: Optional[datetime] = None
    ) -> Optional[Bill]:
        """
        Apply cancellation fee tiering to the appointment's latest bill.

        More than two hours before start the cancellation is free: an OPEN bill
        is voided and a PAID bill fully refunded. Within two hours half the
        consultation fee is charged.
        """
        current = ensure_clinic_tz(now) or clinic_now()

        slot = clients.appointments.get_slot_start(appointment_id, correlation_id)
        if slot.ok and slot.value is not None:
            slot_start = slot.value
        else:
            slot_start = current + UNKNOWN_SLOT_START_OFFSET
            logger.warning(
                f"[{correlation_id}] Slot lookup failed for appointment {appointment_id}, "
                f"assuming it starts at {slot_start.isoformat()}: {slot.error}"
            )

        existing = BillingService._latest_bill_for_appointment(db, appointment_id)

        if slot_start - current > FREE_CANCELLATION_WINDOW:
            if existing is None:
                return None
            if existing.status_enum == BillStatus.OPEN:
                existing.status = BillStatus.VOID.value
                db.flush()
                logger.info(f"[{correlation_id}] Voided bill {existing.id} after early cancellation")
                return existing
            if existing.status_enum == BillStatus.PAID:
                return BillingService.process_refund(
                    db, existing.id, existing.total_amount, REFUND_REASON_EARLY_CANCELLATION, correlation_id
                )
            return None

        fee = round_money(CONSULTATION_FEE * CANCELLATION_FEE_RATE)

        if existing is not None and existing.status_enum == BillStatus.OPEN:
            existing.consultation_fee = fee
            existing.medication_fee = ZERO
            existing.tax_amount = ZERO
            existing.total_amount = fee
            db.flush()
            logger.info(f"[{correlation_id}] Replaced bill {existing.id} with late cancellation fee {fee}")
            return existing

        if existing is not None and existing.status_enum == BillStatus.PAID:
            refund = existing.total_amount - fee
            if refund > ZERO:
                return BillingService.process_refund(
                    db, existing.id, refund, REFUND_REASON_LATE_CANCELLATION, correlation_id
                )

        return BillingService._create_fee_bill(db, appointment_id, patient_id, fee, correlation_id)

    @staticmethod
    def handle_no_show(db: Session, appointment_id: int, patient_id: int, correlation_id: str) -> Bill:
        """Charge the full no-show fee as a new OPEN bill, regardless of prior bills."""
        fee = round_money(CONSULTATION_FEE * NO_SHOW_FEE_RATE)
        return BillingService._create_fee_bill(db, appointment_id, patient_id, fee, correlation_id)

    @staticmethod
    def void_bill(db: Session, bill_id: int, correlation_id: Optional[str] = None) -> Bill:
        bill = BillingService.get_bill(db, bill_id, correlation_id, for_update=True)
        if bill.status_enum != BillStatus.OPEN:
            raise InvalidStateError(f"Only OPEN bills can be voided (bill is {bill.status})", correlation_id)

        bill.status = BillStatus.VOID.value
        db.flush()
        logger.info(f"[{correlation_id}] Voided bill {bill.id}")
        return bill

    @staticmethod
    def mark_paid(db: Session, bill_id: int, correlation_id: Optional[str] = None) -> Bill:
        bill = BillingService.get_bill(db, bill_id, correlation_id, for_update=True)
        if bill.status_enum != BillStatus.OPEN:
            raise InvalidStateError(
                f"Only OPEN bills can be marked paid (bill is {bill.status})", correlation_id
            )

        bill.status = BillStatus.PAID.value
        db.flush()
        logger.info(f"[{correlation_id}] Bill {bill.id} paid")
        return bill

    @staticmethod
    def process_refund(
        db: Session,
        bill_id: int,
        amount: Optional[Decimal],
        reason: Optional[str],
        correlation_id: Optional[str] = None
    ) -> Bill:
        """
        Refund part or all of a PAID bill.

        A refund equal to the total moves the bill to REFUNDED; a partial refund
        is recorded and the bill stays PAID. Invalid amounts leave the bill untouched.

        Raises:
            NotFoundError: Unknown bill
            InvalidStateError: Bill is not PAID
            ValidationError: amount <= 0 or amount > total
        """
        bill = BillingService.get_bill(db, bill_id, correlation_id, for_update=True)
        if bill.status_enum != BillStatus.PAID:
            raise InvalidStateError(f"Only PAID bills can be refunded (bill is {bill.status})", correlation_id)

        if amount is None or amount <= ZERO:
            raise ValidationError("Refund amount must be positive", correlation_id)
        if amount > bill.total_amount:
            raise ValidationError(
                f"Refund amount {amount} exceeds bill total {bill.total_amount}", correlation_id
            )
        refund = round_money(amount)
        if refund != amount:
            raise ValidationError("Refund amount must not have more than 2 decimal places", correlation_id)

        bill.refund_amount = refund
        bill.refund_reason = reason
        if refund == bill.total_amount:
            bill.status = BillStatus.REFUNDED.value
        db.flush()

        logger.info(f"[{correlation_id}] Refunded {refund} on bill {bill.id} ({bill.status}): {reason}")
        return bill

    @staticmethod
    def get_bill(
        db: Session, bill_id: int, correlation_id: Optional[str] = None, for_update: bool = False
    ) -> Bill:
        query = db.query(Bill).filter(Bill.id == bill_id)
        if for_update:
            query = query.with_for_update()
        bill = query.first()
        if bill is None:
            raise NotFoundError(f"Bill {bill_id} not found", correlation_id)
        return bill

    @staticmethod
    def list_bills(
        db: Session, page: int = 1, limit: int = 20, correlation_id: Optional[str] = None
    ) -> Tuple[List[Bill], int]:
        """Return (bills on the 1-based page, newest first; total count)."""
        if page < 1:
            raise ValidationError("page must be at least 1", correlation_id)
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", correlation_id)

        query = db.query(Bill)
        total = query.count()
        bills = query.order_by(Bill.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return bills, total

    @staticmethod
    def list_bills_for_patient(db: Session, patient_id: int) -> List[Bill]:
        return db.query(Bill).filter(Bill.patient_id == patient_id).order_by(Bill.id.desc()).all()

    @staticmethod
    def _latest_bill_for_appointment(db: Session, appointment_id: int) -> Optional[Bill]:
        return (
            db.query(Bill)
            .filter(Bill.appointment_id == appointment_id)
            .order_by(Bill.id.desc())
            .with_for_update()
            .first()
        )

    @staticmethod
    def _create_fee_bill(
        db: Session, appointment_id: int, patient_id: int, fee: Decimal, correlation_id: Optional[str]
    ) -> Bill:
        bill = Bill(
            patient_id=patient_id,
            appointment_id=appointment_id,
            consultation_fee=fee,
            medication_fee=ZERO,
            tax_amount=ZERO,
            total_amount=fee,
            status=BillStatus.OPEN.value
        )
        db.add(bill)
        db.flush()
        logger.info(f"[{correlation_id}] Created fee bill {bill.id} for appointment {appointment_id}: {fee}")
        return bill
