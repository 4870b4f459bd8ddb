"""
Per-owner lock rows that serialise writes to one doctor's or one patient's schedule.

Booking and rescheduling bump the lock row of the doctor and of the patient
before re-checking overlaps. The UPDATE takes a row lock (PostgreSQL) or the
database write lock (SQLite), so a concurrent booking for the same owner waits
until the first transaction commits and then sees its appointment.
"""

from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


class ScheduleLock(Base):
    """Lock row keyed by (owner_kind, owner_id)."""

    __tablename__ = "schedule_locks"

    owner_kind: Mapped[str] = mapped_column(String(20), primary_key=True)
    """'doctor' or 'patient'."""

    owner_id: Mapped[int] = mapped_column(Integer, primary_key=True)

    lock_version: Mapped[int] = mapped_column(Integer, default=0)
    """Bumped on every write to the owner's schedule."""
