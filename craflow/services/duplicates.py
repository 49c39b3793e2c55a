"""
Duplicate entry detection.
HARD STOP rule: at most one active entry per (report, mission, date).

``check_duplicate`` is the early, friendly check. The ``cra_entry_slots``
unique constraint is what actually holds under concurrent writers; the slot
helpers below keep it in step with entry writes.
"""
import uuid
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ..models.models import CraEntry, CraEntryCra, CraEntryMission, CraEntrySlot


# Markers identifying a slot constraint violation (PostgreSQL name, SQLite table)
SLOT_CONSTRAINT_MARKERS = ("uq_cra_entry_slot", "cra_entry_slots.")


def find_duplicate(
    db: Session,
    cra_id: uuid.UUID,
    mission_id: Optional[uuid.UUID],
    date_val: date,
    exclude_entry_id: Optional[uuid.UUID] = None,
) -> Optional[CraEntry]:
    """
    Return the active entry already billed on (cra, mission, date), if any.

    Args:
        db: Database session (the caller's write transaction)
        cra_id: Report ID
        mission_id: Mission ID; entries without a mission never collide
        date_val: Entry date
        exclude_entry_id: Entry being updated, ignored by the check
    """
    if mission_id is None:
        return None

    query = (
        db.query(CraEntry)
        .join(CraEntryCra, CraEntryCra.cra_entry_id == CraEntry.id)
        .join(CraEntryMission, CraEntryMission.cra_entry_id == CraEntry.id)
        .filter(
            CraEntryCra.cra_id == cra_id,
            CraEntryMission.mission_id == mission_id,
            CraEntry.date == date_val,
            CraEntry.deleted_at.is_(None),
        )
    )

    if exclude_entry_id:
        query = query.filter(CraEntry.id != exclude_entry_id)

    return query.first()


def check_duplicate(
    db: Session,
    cra_id: uuid.UUID,
    mission_id: Optional[uuid.UUID],
    date_val: date,
    exclude_entry_id: Optional[uuid.UUID] = None,
) -> bool:
    return find_duplicate(db, cra_id, mission_id, date_val, exclude_entry_id) is not None


def reserve_slot(db: Session, cra_id: uuid.UUID, mission_id: uuid.UUID, date_val: date, entry_id: uuid.UUID) -> CraEntrySlot:
    slot = CraEntrySlot(cra_id=cra_id, mission_id=mission_id, date=date_val, cra_entry_id=entry_id)
    db.add(slot)
    return slot


def move_slot(db: Session, cra_id: uuid.UUID, mission_id: uuid.UUID, date_val: date, entry_id: uuid.UUID) -> CraEntrySlot:
    """Point the entry's slot at a new (mission, date); an entry without one gets one."""
    slot = db.query(CraEntrySlot).filter(CraEntrySlot.cra_entry_id == entry_id).first()
    if slot is None:
        return reserve_slot(db, cra_id, mission_id, date_val, entry_id)
    slot.mission_id = mission_id
    slot.date = date_val
    return slot


def release_slot(db: Session, entry_id: uuid.UUID) -> None:
    slot = db.query(CraEntrySlot).filter(CraEntrySlot.cra_entry_id == entry_id).first()
    if slot:
        db.delete(slot)
