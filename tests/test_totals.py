from decimal import Decimal

from craflow.models.models import Cra
from craflow.services.entries import delete_entry, update_entry
from craflow.services.totals import compute_totals, count_active_entries, recalculate


def _cra(db, cra_id):
    return db.query(Cra).filter(Cra.id == cra_id).one()


def test_compute_totals_rounds_once_at_the_end():
    total_days, total_amount = compute_totals([
        (Decimal("0.33"), 101),
        (Decimal("0.33"), 101),
        (Decimal("0.34"), 101),
    ])
    assert total_days == Decimal("1.00")
    assert total_amount == 101


def test_compute_totals_half_up():
    assert compute_totals([(Decimal("0.5"), 1)]) == (Decimal("0.50"), 1)
    assert compute_totals([]) == (Decimal("0.00"), 0)


def test_totals_follow_entry_writes(db, draft_cra, add_entry, freelancer):
    first = add_entry(draft_cra.id, day=10, quantity=Decimal("1"), unit_price=50000)
    add_entry(draft_cra.id, day=11, quantity=Decimal("0.5"), unit_price=60000)

    cra = _cra(db, draft_cra.id)
    assert cra.total_days == Decimal("1.50")
    assert cra.total_amount == 80000

    update_entry(db, freelancer, draft_cra.id, first.data.id, quantity="2")
    cra = _cra(db, draft_cra.id)
    assert cra.total_days == Decimal("2.50")
    assert cra.total_amount == 130000

    delete_entry(db, freelancer, draft_cra.id, first.data.id)
    cra = _cra(db, draft_cra.id)
    assert cra.total_days == Decimal("0.50")
    assert cra.total_amount == 30000
    assert count_active_entries(db, cra.id) == 1


def test_recalculate_is_idempotent(db, draft_cra, add_entry):
    add_entry(draft_cra.id, day=10, quantity=Decimal("1.25"), unit_price=45000)
    cra = _cra(db, draft_cra.id)

    recalculate(db, cra)
    first = (cra.total_days, cra.total_amount)
    recalculate(db, cra)
    assert (cra.total_days, cra.total_amount) == first == (Decimal("1.25"), 56250)


def test_recalculate_repairs_drifted_totals(db, draft_cra, add_entry):
    add_entry(draft_cra.id, day=10)
    cra = _cra(db, draft_cra.id)
    cra.total_days = Decimal("99")
    cra.total_amount = 1
    db.flush()

    recalculate(db, cra)
    assert cra.total_days == Decimal("1.00")
    assert cra.total_amount == 50000
