import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from craflow.db import get_db, init_db, integrity_error_matches
from craflow.models.models import Company, User, UserCompany
from craflow.services.duplicates import SLOT_CONSTRAINT_MARKERS


def test_init_db_creates_every_table():
    engine = create_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    tables = set(inspect(engine).get_table_names())
    assert {
        "users",
        "companies",
        "user_companies",
        "missions",
        "mission_companies",
        "cras",
        "cra_entries",
        "cra_missions",
        "cra_entry_cras",
        "cra_entry_missions",
        "cra_entry_slots",
        "cra_lock_snapshots",
    } <= tables
    engine.dispose()


def test_integrity_error_matches_constraint(db):
    user = User(email="dup@example.com")
    company = Company(name="Acme")
    db.add_all([user, company])
    db.flush()
    db.add(UserCompany(user_id=user.id, company_id=company.id, role="client"))
    db.flush()
    db.add(UserCompany(user_id=user.id, company_id=company.id, role="client"))

    with pytest.raises(IntegrityError) as excinfo:
        db.flush()
    db.rollback()

    assert integrity_error_matches(excinfo.value, "uq_user_company_role", "user_companies.user_id")
    assert not integrity_error_matches(excinfo.value, *SLOT_CONSTRAINT_MARKERS)


def test_get_db_closes_session():
    gen = get_db()
    session = next(gen)
    assert session.is_active
    gen.close()
