"""Application constants and configuration values."""

from datetime import time, timedelta
from decimal import Decimal

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# Clinic hours (inclusive on both ends, applied to the slot start time)
CLINIC_OPEN_TIME = time(9, 0)
CLINIC_CLOSE_TIME = time(18, 0)

# Booking and rescheduling windows
MIN_BOOKING_LEAD_TIME = timedelta(hours=2)
RESCHEDULE_CUTOFF = timedelta(hours=1)  # Measured against the current slot start
MAX_RESCHEDULES = 2

# Billing
TAX_RATE = Decimal("0.05")
CANCELLATION_FEE_RATE = Decimal("0.50")
NO_SHOW_FEE_RATE = Decimal("1.00")
FREE_CANCELLATION_WINDOW = timedelta(hours=2)  # Cancel earlier than this before start: no fee
MONEY_QUANTUM = Decimal("0.01")

# Slot-start assumption used when the appointment service cannot be reached
# during cancellation handling: treat the slot as starting inside the fee window.
UNKNOWN_SLOT_START_OFFSET = timedelta(hours=1)

# Pagination
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Outbox relay
EVENT_RELAY_BATCH_SIZE = 50
EVENT_RELAY_MAX_ATTEMPTS = 10  # Billing deliveries before an event is left for manual replay
EVENT_RELAY_MAX_INSTANCES = 1  # Prevent overlapping relay runs

# Correlation header shared by all services
CORRELATION_ID_HEADER = "X-Correlation-ID"
