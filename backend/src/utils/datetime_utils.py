"""
Datetime utilities for consistent timezone handling across the application.

This module provides utilities to ensure all datetime operations use timezone-aware
datetimes consistently. All business logic (clinic hours, lead times, calendar
dates for the daily cap) runs in the clinic timezone, configured as a fixed UTC
offset via CLINIC_UTC_OFFSET_HOURS.

Datetimes are normalised to the clinic timezone before they are stored or used in
queries, so backends that drop tzinfo on storage (SQLite) still compare correctly.
"""

import logging
from datetime import datetime, timezone, timedelta, date
from typing import Optional, Tuple

from core.config import CLINIC_UTC_OFFSET_HOURS

logger = logging.getLogger(__name__)

# Clinic timezone constant
CLINIC_TZ = timezone(timedelta(hours=CLINIC_UTC_OFFSET_HOURS))


def clinic_now() -> datetime:
    """
    Get current clinic datetime.

    Returns:
        Current datetime with clinic timezone
    """
    return datetime.now(CLINIC_TZ)


def ensure_clinic_tz(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in the clinic timezone.

    Args:
        dt: Datetime to normalise

    Returns:
        Timezone-aware datetime in clinic timezone, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # If naive, assume it's already in clinic time and localize it
        return dt.replace(tzinfo=CLINIC_TZ)
    else:
        # If already timezone-aware, convert to clinic timezone
        return dt.astimezone(CLINIC_TZ)


def parse_datetime_to_clinic(v: str | datetime) -> datetime:
    """
    Parse datetime from an ISO string or datetime, ensuring clinic timezone.

    Handles:
    - ISO format with offset (e.g., "2024-01-01T09:00:00+08:00")
    - ISO format with Z (UTC) (e.g., "2024-01-01T01:00:00Z")
    - ISO format without offset (assumed to be clinic time)

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(v, str):
        try:
            dt = datetime.fromisoformat(v.strip().replace('Z', '+00:00'))
        except ValueError as e:
            raise ValueError(f"Invalid datetime string format: {v}") from e
    else:
        dt = v
    result = ensure_clinic_tz(dt)
    if result is None:
        raise ValueError("Cannot parse None datetime")
    return result


def parse_date_string(date_str: str) -> date:
    """
    Parse a calendar date from either YYYY-MM-DD or a full ISO datetime.

    The count endpoint historically receives the slot start datetime as its
    ``date`` parameter, so both forms are accepted; only the calendar date is kept.

    Raises:
        ValueError: If the string cannot be parsed
    """
    if not date_str or not date_str.strip():
        raise ValueError("Date string cannot be empty")

    date_str = date_str.strip()
    if 'T' in date_str or ' ' in date_str:
        return parse_datetime_to_clinic(date_str).date()

    try:
        return datetime.strptime(date_str, '%Y-%m-%d').date()
    except ValueError as e:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD): {date_str}") from e


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Return the half-open [00:00, next day 00:00) range of a clinic calendar date."""
    start = datetime(day.year, day.month, day.day, tzinfo=CLINIC_TZ)
    return start, start + timedelta(days=1)
