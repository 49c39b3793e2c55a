import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from craflow.db import Base
from craflow.logging import setup_logging
from craflow.models import models  # noqa: F401
from craflow.models.models import (
    ROLE_CLIENT,
    ROLE_INDEPENDENT,
    Company,
    Mission,
    MissionCompany,
    User,
    UserCompany,
)
from craflow.services.cras import create_cra
from craflow.services.entries import create_entry


TODAY = date(2025, 1, 31)

setup_logging("DEBUG")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    yield session
    session.close()


@pytest.fixture
def make_company(db):
    def _make(name="Acme"):
        company = Company(name=name)
        db.add(company)
        db.commit()
        return company
    return _make


@pytest.fixture
def make_user(db):
    def _make(company=None, role=None, email=None):
        user = User(email=email or f"{uuid.uuid4().hex[:10]}@example.com")
        db.add(user)
        db.flush()
        if company is not None and role is not None:
            db.add(UserCompany(user_id=user.id, company_id=company.id, role=role))
        db.commit()
        return user
    return _make


@pytest.fixture
def make_mission(db):
    def _make(*links, name="Platform rebuild"):
        """links: (company, role) pairs the mission belongs to."""
        mission = Mission(
            name=name,
            mission_type="time_based",
            status="in_progress",
            daily_rate=50000,
            currency="EUR",
            start_date=date(2024, 1, 1),
        )
        db.add(mission)
        db.flush()
        for company, role in links:
            db.add(MissionCompany(mission_id=mission.id, company_id=company.id, role=role))
        db.commit()
        return mission
    return _make


@pytest.fixture
def freelance_company(make_company):
    return make_company("Freelance SAS")


@pytest.fixture
def client_company(make_company):
    return make_company("Client Corp")


@pytest.fixture
def freelancer(make_user, freelance_company):
    return make_user(freelance_company, ROLE_INDEPENDENT, email="freelancer@example.com")


@pytest.fixture
def client_user(make_user, client_company):
    return make_user(client_company, ROLE_CLIENT, email="client@example.com")


@pytest.fixture
def outsider(make_user, make_company):
    return make_user(make_company("Elsewhere"), ROLE_INDEPENDENT, email="outsider@example.com")


@pytest.fixture
def mission(make_mission, freelance_company, client_company):
    return make_mission((freelance_company, ROLE_INDEPENDENT), (client_company, ROLE_CLIENT))


@pytest.fixture
def draft_cra(db, freelancer):
    result = create_cra(db, freelancer, 1, 2025, "EUR", today=TODAY)
    assert result.ok, result
    return result.data


@pytest.fixture
def add_entry(db, freelancer, mission):
    def _add(cra_id, day=10, quantity=Decimal("1"), unit_price=50000, with_mission=True, actor=None, **kwargs):
        return create_entry(
            db,
            actor or freelancer,
            cra_id,
            date(2025, 1, day),
            quantity,
            unit_price,
            mission_id=mission.id if with_mission else None,
            today=TODAY,
            **kwargs,
        )
    return _add
