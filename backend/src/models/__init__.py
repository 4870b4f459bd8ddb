# Package initialization
# Import all models so they are registered on Base.metadata
from .appointment import Appointment, AppointmentStatus
from .appointment_event import AppointmentEvent, LifecycleEventType
from .schedule_lock import ScheduleLock
from .bill import Bill, BillStatus
from .processed_billing_event import ProcessedBillingEvent

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "AppointmentEvent",
    "LifecycleEventType",
    "ScheduleLock",
    "Bill",
    "BillStatus",
    "ProcessedBillingEvent",
]
