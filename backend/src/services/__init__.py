"""
Services package for shared business logic.

This package contains service classes that encapsulate business logic
shared across multiple API endpoints.
"""

from .appointment_service import AppointmentService
from .availability_service import AvailabilityService
from .billing_service import BillingService
from .event_relay_service import EventRelayService

__all__ = [
    "AppointmentService",
    "AvailabilityService",
    "BillingService",
    "EventRelayService",
]
