from decimal import Decimal

import pytest

from craflow.models.models import CraLockSnapshot, ImmutableRecordError
from craflow.services import ledger
from craflow.services.entries import delete_entry
from craflow.services.lifecycle import lock_cra, submit_cra


@pytest.fixture
def locked(db, draft_cra, add_entry, freelancer):
    add_entry(draft_cra.id, day=12, quantity=Decimal("0.5"), unit_price=60000)
    add_entry(draft_cra.id, day=10)
    gone = add_entry(draft_cra.id, day=11).data
    delete_entry(db, freelancer, draft_cra.id, gone.id)
    submit_cra(db, freelancer, draft_cra.id)
    result = lock_cra(db, freelancer, draft_cra.id)
    assert result.ok
    return ledger.get_snapshot(db, draft_cra.id)


def test_snapshot_payload(locked, draft_cra, freelancer, mission):
    payload = locked.payload
    assert payload["cra_id"] == str(draft_cra.id)
    assert payload["status"] == "locked"
    assert payload["locked_at"]
    assert payload["created_by_user_id"] == str(freelancer.id)
    assert payload["missions"] == [str(mission.id)]
    assert [e["date"] for e in payload["entries"]] == ["2025-01-10", "2025-01-12"]
    assert payload["totals"] == {"total_days": "1.50", "total_amount": 80000}
    assert locked.locked_by_user_id == freelancer.id


def test_snapshot_verifies(locked):
    assert ledger.verify_snapshot(locked)
    assert not ledger.verify_snapshot(locked, secret="another-secret")


def test_tampered_payload_fails_verification(locked):
    tampered = dict(locked.payload, totals={"total_days": "9.00", "total_amount": 1})
    assert ledger.compute_integrity_hash(tampered) != locked.integrity_hash


def test_canonical_json_is_key_order_independent():
    assert ledger.canonical_json({"b": 1, "a": 2}) == ledger.canonical_json({"a": 2, "b": 1})


def test_snapshot_rows_are_append_only(db, locked):
    locked.integrity_hash = "0" * 64
    with pytest.raises(ImmutableRecordError):
        db.flush()
    db.rollback()

    snapshot = db.query(CraLockSnapshot).one()
    db.delete(snapshot)
    with pytest.raises(ImmutableRecordError):
        db.flush()
    db.rollback()
