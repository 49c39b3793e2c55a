"""
Entry service.

Every write runs: report row lock -> access -> draft guard -> validation ->
duplicate check -> write -> totals, inside the operation's transaction.
"""
from datetime import date
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import integrity_error_matches
from ..models.models import (
    Cra,
    CraEntry,
    CraEntryCra,
    CraEntryMission,
    CraMission,
    Mission,
)
from ..result import ErrorCode, Result, Success, bad_request, conflict, not_found, service_operation
from ..schemas.cras import CraEntryRead
from . import duplicates
from .access import AccessControl
from .lifecycle import load_cra, load_cra_for_update, require_draft_for_entry
from .paging import paginate
from .time_rules import local_today, utcnow
from .totals import recalculate
from .validation import (
    ValidationPolicy,
    validate_date,
    validate_description,
    validate_entry_fields,
    validate_quantity,
    validate_unit_price,
    validate_uuid,
)


logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = ("date", "quantity", "unit_price", "description", "mission_id")


def _duplicate_failure(mission_id, date_val: date, existing_entry_id=None):
    details = {"mission_id": str(mission_id), "date": date_val.isoformat()}
    if existing_entry_id:
        details["existing_entry_id"] = str(existing_entry_id)
    return conflict(
        ErrorCode.duplicate_entry,
        "An entry already exists for this mission and date",
        details=details,
    )


def _authorize_entry_write(db: Session, actor, cra: Cra, action: str):
    access = AccessControl(db, actor)
    checked = access.authorize_access(cra)
    if checked.ok:
        checked = access.require_creator(cra, "Only the CRA creator can modify its entries")
    if checked.ok:
        checked = require_draft_for_entry(cra, action)
    return access, None if checked.ok else checked


def _entry_query(db: Session, cra: Cra, include_deleted: bool = False):
    query = (
        db.query(CraEntry)
        .join(CraEntryCra, CraEntryCra.cra_entry_id == CraEntry.id)
        .filter(CraEntryCra.cra_id == cra.id)
    )
    if not include_deleted:
        query = query.filter(CraEntry.deleted_at.is_(None))
    return query


def _load_entry(db: Session, cra: Cra, entry_id, include_deleted: bool = False):
    checked = validate_uuid(entry_id, "entry_id")
    if not checked.ok:
        return None, checked
    entry = _entry_query(db, cra, include_deleted).filter(CraEntry.id == checked.data).first()
    if entry is None:
        return None, not_found("cra_entry", "Entry not found")
    return entry, None


def _resolve_mission(db: Session, access: AccessControl, mission_id):
    """Mission the actor may bill against; anything else reads as not found."""
    checked = validate_uuid(mission_id, "mission_id")
    if not checked.ok:
        return None, checked
    mission = db.query(Mission).filter(Mission.id == checked.data, Mission.deleted_at.is_(None)).first()
    if mission is None or mission.id not in access.accessible_mission_ids():
        return None, not_found("mission", "Mission not found")
    return mission, None


def _link_mission(cra: Cra, mission: Mission) -> None:
    if mission.id not in cra.mission_ids:
        cra.mission_links.append(CraMission(mission_id=mission.id))


@service_operation("cra_entry")
def create_entry(
    db: Session,
    actor,
    cra_id,
    date,
    quantity,
    unit_price,
    description=None,
    mission_id=None,
    today: Optional[date] = None,
) -> Result:
    cra, failure = load_cra_for_update(db, cra_id)
    if failure:
        return failure
    access, failure = _authorize_entry_write(db, actor, cra, "create")
    if failure:
        return failure

    today = today or local_today()
    checked = validate_entry_fields(
        ValidationPolicy.from_settings(today=today),
        date_value=date,
        quantity=quantity,
        unit_price=unit_price,
        description=description,
        today=today,
        allow_future=False,
    )
    if not checked.ok:
        return checked
    values = checked.data

    mission = None
    if mission_id is not None:
        mission, failure = _resolve_mission(db, access, mission_id)
        if failure:
            return failure
        existing = duplicates.find_duplicate(db, cra.id, mission.id, values["date"])
        if existing is not None:
            logger.warning("cra_entry_duplicate", cra_id=str(cra.id), mission_id=str(mission.id),
                           date=values["date"].isoformat())
            return _duplicate_failure(mission.id, values["date"], existing.id)

    # a failed flush expires every instance; the except branch only reads these
    mission_id = mission.id if mission is not None else None
    entry_date = values["date"]

    entry = CraEntry(**values)
    entry.cra_links.append(CraEntryCra(cra_id=cra.id))
    if mission is not None:
        entry.mission_links.append(CraEntryMission(mission_id=mission_id))
        _link_mission(cra, mission)

    try:
        db.add(entry)
        db.flush()
        if mission_id is not None:
            duplicates.reserve_slot(db, cra.id, mission_id, entry_date, entry.id)
            db.flush()
    except IntegrityError as e:
        if integrity_error_matches(e, *duplicates.SLOT_CONSTRAINT_MARKERS):
            logger.warning("cra_entry_slot_taken", cra_id=str(cra_id), date=entry_date.isoformat())
            return _duplicate_failure(mission_id, entry_date)
        raise

    recalculate(db, cra)
    logger.info("cra_entry_created", cra_id=str(cra.id), entry_id=str(entry.id),
                mission_id=str(mission_id) if mission_id else None)
    return Success(data=CraEntryRead.model_validate(entry), message="Entry created")


@service_operation("cra_entry")
def update_entry(db: Session, actor, cra_id, entry_id, today: Optional[date] = None, **fields) -> Result:
    """
    Partial update of date, quantity, unit_price, description and mission_id.

    A date or mission change re-checks the (report, mission, date) slot,
    ignoring the entry itself. A ``mission_id`` of None leaves the mission
    as it is. Past or future dates are both accepted here.
    """
    changes = {
        key: value for key, value in fields.items()
        if key in UPDATABLE_FIELDS and (key != "mission_id" or value is not None)
    }
    if not changes:
        return bad_request(
            ErrorCode.no_valid_attributes,
            f"No valid attributes to update (allowed: {', '.join(UPDATABLE_FIELDS)})",
        )

    cra, failure = load_cra_for_update(db, cra_id)
    if failure:
        return failure
    access, failure = _authorize_entry_write(db, actor, cra, "update")
    if failure:
        return failure
    entry, failure = _load_entry(db, cra, entry_id)
    if failure:
        return failure

    policy = ValidationPolicy.from_settings(today=today or local_today())
    validators = {
        "date": lambda value: validate_date(value, allow_future=True),
        "quantity": lambda value: validate_quantity(value, policy),
        "unit_price": lambda value: validate_unit_price(value, policy),
        "description": lambda value: validate_description(value, policy.entry_description_max),
        "mission_id": lambda value: validate_uuid(value, "mission_id"),
    }
    values = {}
    for key, value in changes.items():
        checked = validators[key](value)
        if not checked.ok:
            return checked
        values[key] = checked.data

    mission = None
    if "mission_id" in values:
        mission, failure = _resolve_mission(db, access, values.pop("mission_id"))
        if failure:
            return failure

    # a failed flush expires every instance; the except branch only reads these
    current_mission_id = entry.mission_id
    mission_id = mission.id if mission is not None else current_mission_id
    new_date = values.get("date", entry.date)
    slot_changed = mission_id is not None and (new_date != entry.date or mission_id != current_mission_id)

    if slot_changed:
        existing = duplicates.find_duplicate(db, cra.id, mission_id, new_date, exclude_entry_id=entry.id)
        if existing is not None:
            logger.warning("cra_entry_duplicate", cra_id=str(cra.id), mission_id=str(mission_id),
                           date=new_date.isoformat())
            return _duplicate_failure(mission_id, new_date, existing.id)

    for key, value in values.items():
        setattr(entry, key, value)
    if mission_id != current_mission_id:
        entry.mission_links.clear()
        entry.mission_links.append(CraEntryMission(mission_id=mission_id))
        _link_mission(cra, mission)
    try:
        if slot_changed:
            duplicates.move_slot(db, cra.id, mission_id, new_date, entry.id)
        db.flush()
    except IntegrityError as e:
        if integrity_error_matches(e, *duplicates.SLOT_CONSTRAINT_MARKERS):
            logger.warning("cra_entry_slot_taken", cra_id=str(cra_id), date=new_date.isoformat())
            return _duplicate_failure(mission_id, new_date)
        raise

    recalculate(db, cra)
    logger.info("cra_entry_updated", cra_id=str(cra.id), entry_id=str(entry.id), fields=sorted(changes))
    return Success(data=CraEntryRead.model_validate(entry), message="Entry updated")


@service_operation("cra_entry")
def delete_entry(db: Session, actor, cra_id, entry_id) -> Result:
    """Soft delete: the row stays for audit, its slot and its share of the totals go."""
    cra, failure = load_cra_for_update(db, cra_id)
    if failure:
        return failure
    _, failure = _authorize_entry_write(db, actor, cra, "delete")
    if failure:
        return failure
    entry, failure = _load_entry(db, cra, entry_id)
    if failure:
        return failure

    entry.deleted_at = utcnow()
    duplicates.release_slot(db, entry.id)
    db.flush()

    recalculate(db, cra)
    logger.info("cra_entry_deleted", cra_id=str(cra.id), entry_id=str(entry.id))
    return Success(data=CraEntryRead.model_validate(entry), message="Entry deleted")


@service_operation("cra_entry", readonly=True)
def get_entry(db: Session, actor, cra_id, entry_id) -> Result:
    """Fetch one entry by id, soft-deleted ones included."""
    cra, failure = load_cra(db, cra_id)
    if failure:
        return failure
    checked = AccessControl(db, actor).authorize_access(cra)
    if not checked.ok:
        return checked
    entry, failure = _load_entry(db, cra, entry_id, include_deleted=True)
    if failure:
        return failure
    return Success(data=CraEntryRead.model_validate(entry))


@service_operation("cra_entry", readonly=True)
def list_entries(
    db: Session,
    actor,
    cra_id,
    start_date=None,
    end_date=None,
    mission_id=None,
    include_deleted: bool = False,
    page=1,
    per_page=None,
) -> Result:
    cra, failure = load_cra(db, cra_id)
    if failure:
        return failure
    checked = AccessControl(db, actor).authorize_access(cra)
    if not checked.ok:
        return checked

    query = _entry_query(db, cra, include_deleted)

    bounds = {}
    for key, value in (("start_date", start_date), ("end_date", end_date)):
        if value is None:
            continue
        checked = validate_date(value)
        if not checked.ok:
            return checked
        bounds[key] = checked.data
    if "start_date" in bounds and "end_date" in bounds and bounds["start_date"] > bounds["end_date"]:
        return bad_request(ErrorCode.invalid_format, "start_date must be before or equal to end_date",
                           details={"field": "start_date"})
    if "start_date" in bounds:
        query = query.filter(CraEntry.date >= bounds["start_date"])
    if "end_date" in bounds:
        query = query.filter(CraEntry.date <= bounds["end_date"])

    if mission_id is not None:
        checked = validate_uuid(mission_id, "mission_id")
        if not checked.ok:
            return checked
        query = query.join(CraEntryMission, CraEntryMission.cra_entry_id == CraEntry.id).filter(
            CraEntryMission.mission_id == checked.data
        )

    query = query.order_by(CraEntry.date.asc(), CraEntry.created_at.asc())
    result = paginate(query, page, per_page, CraEntryRead.model_validate)
    return Success(data=result.items, meta=result.meta())
