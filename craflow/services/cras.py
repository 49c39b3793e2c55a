"""
Report (CRA) service: creation, header updates and reads.
"""
from datetime import date
from typing import Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import integrity_error_matches
from ..models.models import CRA_STATUSES, ROLE_INDEPENDENT, Cra, CraEntry, CraEntryCra
from ..result import ErrorCode, Result, Success, bad_request, conflict, forbidden, service_operation
from ..schemas.cras import CraDetail, CraEntryRead, CraRead
from .access import AccessControl
from .lifecycle import load_cra, load_cra_for_update
from .paging import paginate
from .time_rules import local_today
from .validation import (
    ValidationPolicy,
    validate_currency,
    validate_description,
    validate_month,
    validate_year,
)


logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = ("month", "year", "currency", "description")

# PostgreSQL index name, SQLite column list
PERIOD_CONSTRAINT_MARKERS = ("uq_cras_creator_period", "cras.created_by_user_id")


def _period_taken(db: Session, creator_id, month: int, year: int, exclude_cra_id=None) -> bool:
    query = db.query(Cra.id).filter(
        Cra.created_by_user_id == creator_id,
        Cra.month == month,
        Cra.year == year,
        Cra.deleted_at.is_(None),
    )
    if exclude_cra_id:
        query = query.filter(Cra.id != exclude_cra_id)
    return query.first() is not None


def _period_conflict(month: int, year: int):
    return conflict(
        ErrorCode.cra_already_exists,
        f"A CRA already exists for {month:02d}/{year}",
        details={"month": month, "year": year},
    )


@service_operation("cra")
def create_cra(
    db: Session,
    actor,
    month,
    year,
    currency=None,
    description=None,
    today: Optional[date] = None,
) -> Result:
    """Open a draft report for (month, year). The actor needs an independent company role."""
    access = AccessControl(db, actor)
    if not access.has_role(ROLE_INDEPENDENT):
        return forbidden("Only independent users can create CRAs")

    policy = ValidationPolicy.from_settings(today=today or local_today())
    checks = (
        validate_month(month),
        validate_year(year, policy),
        validate_currency(currency or settings.default_currency, policy),
        validate_description(description, policy.report_description_max),
    )
    for checked in checks:
        if not checked.ok:
            return checked
    month, year, currency, description = (checked.data for checked in checks)

    if _period_taken(db, actor.id, month, year):
        return _period_conflict(month, year)

    cra = Cra(
        month=month,
        year=year,
        currency=currency,
        description=description,
        created_by_user_id=actor.id,
    )
    db.add(cra)
    try:
        db.flush()
    except IntegrityError as e:
        if integrity_error_matches(e, *PERIOD_CONSTRAINT_MARKERS):
            return _period_conflict(month, year)
        raise

    logger.info("cra_created", cra_id=str(cra.id), month=month, year=year, currency=currency)
    return Success(data=CraRead.model_validate(cra), message="CRA created")


@service_operation("cra")
def update_cra(db: Session, actor, cra_id, today: Optional[date] = None, **fields) -> Result:
    """
    Change header fields of a draft report.

    Only month, year, currency and description are accepted; status moves
    through the lifecycle operations only.
    """
    changes = {key: value for key, value in fields.items() if key in UPDATABLE_FIELDS}
    if not changes:
        return bad_request(
            ErrorCode.no_valid_attributes,
            f"No valid attributes to update (allowed: {', '.join(UPDATABLE_FIELDS)})",
        )

    cra, failure = load_cra_for_update(db, cra_id)
    if failure:
        return failure

    access = AccessControl(db, actor)
    checked = access.authorize_access(cra)
    if not checked.ok:
        return checked
    checked = access.authorize_modification(cra)
    if not checked.ok:
        return checked

    policy = ValidationPolicy.from_settings(today=today or local_today())
    validators = {
        "month": validate_month,
        "year": lambda value: validate_year(value, policy),
        "currency": lambda value: validate_currency(value, policy),
        "description": lambda value: validate_description(value, policy.report_description_max),
    }
    values = {}
    for key, value in changes.items():
        checked = validators[key](value)
        if not checked.ok:
            return checked
        values[key] = checked.data

    month = values.get("month", cra.month)
    year = values.get("year", cra.year)
    if (month, year) != (cra.month, cra.year) and _period_taken(db, cra.created_by_user_id, month, year, cra.id):
        return _period_conflict(month, year)

    for key, value in values.items():
        setattr(cra, key, value)
    try:
        db.flush()
    except IntegrityError as e:
        if integrity_error_matches(e, *PERIOD_CONSTRAINT_MARKERS):
            return _period_conflict(month, year)
        raise

    logger.info("cra_updated", cra_id=str(cra.id), fields=sorted(values))
    return Success(data=CraRead.model_validate(cra), message="CRA updated")


@service_operation("cra", readonly=True)
def get_cra(db: Session, actor, cra_id) -> Result:
    cra, failure = load_cra(db, cra_id)
    if failure:
        return failure

    checked = AccessControl(db, actor).authorize_access(cra)
    if not checked.ok:
        return checked

    entries = (
        db.query(CraEntry)
        .join(CraEntryCra, CraEntryCra.cra_entry_id == CraEntry.id)
        .filter(CraEntryCra.cra_id == cra.id, CraEntry.deleted_at.is_(None))
        .order_by(CraEntry.date.asc(), CraEntry.created_at.asc())
        .all()
    )
    detail = CraDetail(
        **CraRead.model_validate(cra).model_dump(),
        entries=[CraEntryRead.model_validate(entry) for entry in entries],
    )
    return Success(data=detail)


@service_operation("cra", readonly=True)
def list_cras(
    db: Session,
    actor,
    status: Optional[str] = None,
    month=None,
    year=None,
    page=1,
    per_page=None,
) -> Result:
    """Reports the actor created or reaches through a company role, newest period first."""
    access = AccessControl(db, actor)
    query = db.query(Cra).filter(
        Cra.deleted_at.is_(None),
        or_(
            Cra.created_by_user_id == actor.id,
            Cra.id.in_(list(access.accessible_report_ids())),
        ),
    )

    if status is not None:
        if status not in CRA_STATUSES:
            return bad_request(ErrorCode.invalid_format,
                               f"Status must be one of: {', '.join(CRA_STATUSES)}",
                               details={"field": "status"})
        query = query.filter(Cra.status == status)
    if month is not None:
        checked = validate_month(month)
        if not checked.ok:
            return checked
        query = query.filter(Cra.month == checked.data)
    if year is not None:
        checked = validate_year(year, ValidationPolicy.from_settings(today=local_today()))
        if not checked.ok:
            return checked
        query = query.filter(Cra.year == checked.data)

    query = query.order_by(Cra.year.desc(), Cra.month.desc(), Cra.created_at.desc())
    result = paginate(query, page, per_page, CraRead.model_validate)
    return Success(data=result.items, meta=result.meta())
