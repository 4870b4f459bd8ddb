"""
Write serialisation for doctor and patient schedules.

The overlap check and the insert/update that follows it must not interleave
with another booking for the same doctor or patient. ``lock_schedules`` bumps
one lock row per owner inside the caller's transaction; the lock is held until
the transaction commits or rolls back.
"""

import logging
from typing import Iterable, List, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import ScheduleLock
from utils.appointment_queries import OwnerKind

logger = logging.getLogger(__name__)


def _bump(db: Session, owner_kind: OwnerKind, owner_id: int) -> int:
    result = db.execute(
        update(ScheduleLock)
        .where(ScheduleLock.owner_kind == owner_kind.value, ScheduleLock.owner_id == owner_id)
        .values(lock_version=ScheduleLock.lock_version + 1)
    )
    return result.rowcount  # type: ignore[attr-defined]


def lock_schedule(db: Session, owner_kind: OwnerKind, owner_id: int) -> None:
    """Acquire the write lock for one owner's schedule, creating the lock row on first use."""
    if _bump(db, owner_kind, owner_id):
        return

    # First write for this owner: insert the row under a savepoint. A concurrent
    # first write for the same owner makes the insert fail; bumping afterwards
    # waits for that transaction like any other holder.
    try:
        with db.begin_nested():
            db.add(ScheduleLock(owner_kind=owner_kind.value, owner_id=owner_id, lock_version=1))
    except IntegrityError:
        logger.debug(f"Lock row for {owner_kind.value} {owner_id} created concurrently")
        _bump(db, owner_kind, owner_id)


def lock_schedules(db: Session, owners: Iterable[Tuple[OwnerKind, int]]) -> None:
    """
    Lock several schedules in a stable order.

    Ordering by (kind, id) keeps two transactions that need the same pair of
    locks from deadlocking.
    """
    ordered: List[Tuple[OwnerKind, int]] = sorted(set(owners), key=lambda o: (o[0].value, o[1]))
    for owner_kind, owner_id in ordered:
        lock_schedule(db, owner_kind, owner_id)
