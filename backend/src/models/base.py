"""
Database base models and utilities.

This module provides the base SQLAlchemy model class and the column types
shared by the appointment and billing tables.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

# Re-export Base from core.database for backward compatibility
from core.database import Base  # type: ignore[reportUnusedImport]
from utils.datetime_utils import ensure_clinic_tz


class ClinicDateTime(TypeDecorator[datetime]):
    """
    Timezone-aware datetime column normalised to the clinic timezone.

    Values are converted to clinic time before binding and re-localised when
    loaded, so range comparisons behave the same on PostgreSQL and SQLite.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:  # type: ignore[override]
        return ensure_clinic_tz(value)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:  # type: ignore[override]
        return ensure_clinic_tz(value)
