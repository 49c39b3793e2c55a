from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from craflow.models.models import CraEntrySlot
from craflow.result import ErrorCode, Severity
from craflow.services import duplicates
from craflow.services.entries import delete_entry, update_entry


def test_check_duplicate_matches_exact_triple(db, draft_cra, add_entry, mission):
    created = add_entry(draft_cra.id, day=10)

    assert duplicates.check_duplicate(db, draft_cra.id, mission.id, date(2025, 1, 10))
    assert not duplicates.check_duplicate(db, draft_cra.id, mission.id, date(2025, 1, 11))
    assert not duplicates.check_duplicate(db, draft_cra.id, mission.id, date(2025, 1, 10),
                                          exclude_entry_id=created.data.id)
    assert not duplicates.check_duplicate(db, draft_cra.id, None, date(2025, 1, 10))


def test_second_entry_on_same_triple_is_refused(draft_cra, add_entry):
    assert add_entry(draft_cra.id, day=10).ok

    result = add_entry(draft_cra.id, day=10)
    assert result.status == Severity.conflict
    assert result.error_code == ErrorCode.duplicate_entry
    assert "existing_entry_id" in result.details


def test_entries_without_mission_never_collide(draft_cra, add_entry):
    assert add_entry(draft_cra.id, day=10, with_mission=False).ok
    assert add_entry(draft_cra.id, day=10, with_mission=False).ok


def test_soft_deleted_entry_frees_its_slot(db, draft_cra, add_entry, freelancer):
    first = add_entry(draft_cra.id, day=10)
    assert delete_entry(db, freelancer, draft_cra.id, first.data.id).ok
    assert db.query(CraEntrySlot).count() == 0

    assert add_entry(draft_cra.id, day=10).ok


def test_date_change_onto_taken_slot_is_refused(db, draft_cra, add_entry, freelancer):
    add_entry(draft_cra.id, day=10)
    other = add_entry(draft_cra.id, day=11)

    result = update_entry(db, freelancer, draft_cra.id, other.data.id, date=date(2025, 1, 10))
    assert result.error_code == ErrorCode.duplicate_entry

    moved = update_entry(db, freelancer, draft_cra.id, other.data.id, date=date(2025, 1, 12))
    assert moved.ok
    slot = db.query(CraEntrySlot).filter(CraEntrySlot.cra_entry_id == other.data.id).one()
    assert slot.date == date(2025, 1, 12)


def test_slot_constraint_rejects_second_row(db, draft_cra, add_entry, mission):
    created = add_entry(draft_cra.id, day=10)
    other = add_entry(draft_cra.id, day=11, with_mission=False)

    duplicates.reserve_slot(db, draft_cra.id, mission.id, date(2025, 1, 10), other.data.id)
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()
    assert created.ok


def test_race_past_the_early_check_still_fails_cleanly(db, draft_cra, add_entry, monkeypatch):
    # a concurrent writer committed between the check and the write
    assert add_entry(draft_cra.id, day=10).ok
    monkeypatch.setattr(duplicates, "find_duplicate", lambda *args, **kwargs: None)

    result = add_entry(draft_cra.id, day=10)
    assert result.status == Severity.conflict
    assert result.error_code == ErrorCode.duplicate_entry
    assert result.resource_type == "cra_entry"
