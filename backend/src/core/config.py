"""
Application configuration using python-dotenv.

This module loads environment variables from .env file into os.environ
for use throughout the application.
"""

import os
import pathlib
from decimal import Decimal
from dotenv import load_dotenv


# Determine if we're running in a test environment
# Don't load .env file during testing to ensure predictable test behavior
is_testing = os.getenv("PYTEST_VERSION") is not None or any("pytest" in str(frame) for frame in __import__('inspect').stack(0))

# Load .env file into os.environ (only outside of testing)
if not is_testing:
    # Try multiple possible locations for .env file
    possible_paths = [
        pathlib.Path(__file__).parent.parent.parent / ".env",  # backend/.env (when run from backend/src)
        pathlib.Path(__file__).parent.parent.parent.parent / ".env",  # .env (when run from src)
        pathlib.Path.cwd() / ".env",  # .env in current directory
        pathlib.Path.cwd().parent / ".env",  # .env in parent directory
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Configuration constants with defaults
# These match the environment variables defined in .env.example
def get_database_url():
    """Get the database URL from environment."""
    return os.getenv(
        "DATABASE_URL",
        "sqlite:///./hospital_dev.db"
    )

DATABASE_URL = get_database_url()

# Base URLs of the collaborating services. Each deployment points these at the
# instance that owns the corresponding data.
PATIENT_SERVICE_URL = os.getenv("PATIENT_SERVICE_URL", "http://patient-service:8001")
DOCTOR_SERVICE_URL = os.getenv("DOCTOR_SERVICE_URL", "http://doctor-service:8002")
AVAILABILITY_SERVICE_URL = os.getenv("AVAILABILITY_SERVICE_URL", DOCTOR_SERVICE_URL)
APPOINTMENT_SERVICE_URL = os.getenv("APPOINTMENT_SERVICE_URL", "http://appointment-service:8003")
BILLING_SERVICE_URL = os.getenv("BILLING_SERVICE_URL", "http://billing-service:8004")
NOTIFICATION_SERVICE_URL = os.getenv("NOTIFICATION_SERVICE_URL", "http://notification-service:8007")

REMOTE_CALL_TIMEOUT_SECONDS = float(os.getenv("REMOTE_CALL_TIMEOUT_SECONDS", "2.0"))

# Scheduling
DOCTOR_DAILY_CAP = int(os.getenv("DOCTOR_DAILY_CAP", "20"))
CLINIC_UTC_OFFSET_HOURS = int(os.getenv("CLINIC_UTC_OFFSET_HOURS", "0"))

# Billing
CONSULTATION_FEE = Decimal(os.getenv("CONSULTATION_FEE", "500.00"))
STUB_MEDICATION_FEE = Decimal(os.getenv("STUB_MEDICATION_FEE", "200.00"))
FALLBACK_MEDICATION_FEE = Decimal(os.getenv("FALLBACK_MEDICATION_FEE", "0.00"))

# Outbox relay
EVENT_RELAY_ENABLED = _get_bool("EVENT_RELAY_ENABLED", True)
EVENT_RELAY_INTERVAL_SECONDS = int(os.getenv("EVENT_RELAY_INTERVAL_SECONDS", "30"))
