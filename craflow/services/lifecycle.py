"""
CRA lifecycle state machine.

draft -> submitted -> locked. Transitions only advance one step; locked is
terminal. Entries may change only while the report is a draft.
"""
from typing import Dict, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..models.models import CRA_DRAFT, CRA_LOCKED, CRA_SUBMITTED, Cra
from ..result import ErrorCode, Result, Success, bad_request, conflict, not_found, service_operation
from ..schemas.cras import CraRead, LockSnapshotRead
from . import ledger
from .access import AccessControl
from .time_rules import utcnow
from .totals import count_active_entries, recalculate
from .validation import validate_uuid


logger = structlog.get_logger(__name__)

VALID_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    CRA_DRAFT: (CRA_SUBMITTED,),
    CRA_SUBMITTED: (CRA_LOCKED,),
    CRA_LOCKED: (),
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, ())


def check_transition(cra: Cra, to_status: str) -> Result:
    if can_transition(cra.status, to_status):
        return Success()
    return conflict(
        ErrorCode.invalid_transition,
        f"Invalid transition from {cra.status} to {to_status}",
        details={"from": cra.status, "to": to_status},
    )


def _active_cra_query(db: Session, cra_id):
    return db.query(Cra).filter(Cra.id == cra_id, Cra.deleted_at.is_(None))


def load_cra(db: Session, cra_id, for_update: bool = False) -> Tuple[Optional[Cra], Optional[Result]]:
    """
    Fetch a live report by id.

    Write paths pass ``for_update=True`` so the row stays locked until the
    operation's transaction ends. Returns ``(cra, None)`` or ``(None, failure)``.
    """
    checked = validate_uuid(cra_id, "cra_id")
    if not checked.ok:
        return None, checked
    query = _active_cra_query(db, checked.data)
    if for_update:
        query = query.with_for_update()
    cra = query.first()
    if cra is None:
        return None, not_found("cra", "CRA not found")
    return cra, None


def load_cra_for_update(db: Session, cra_id) -> Tuple[Optional[Cra], Optional[Result]]:
    return load_cra(db, cra_id, for_update=True)


def require_draft_for_entry(cra: Cra, action: str) -> Result:
    """
    Gate entry writes on the draft status.

    Creation on a non-draft report is an invalid state; update and delete
    would move a frozen report backwards, so they are invalid transitions.
    """
    if cra.status == CRA_DRAFT:
        return Success()
    error_code = ErrorCode.invalid_cra_state if action == "create" else ErrorCode.invalid_transition
    logger.warning("cra_entry_write_refused", cra_id=str(cra.id), status=cra.status, action=action)
    return conflict(
        error_code,
        f"Cannot {action} entries on a {cra.status} CRA",
        details={"status": cra.status},
    )


@service_operation("cra")
def submit_cra(db: Session, actor, cra_id) -> Result:
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

    if count_active_entries(db, cra.id) == 0:
        return bad_request(ErrorCode.cra_has_no_entries, "CRA must have at least one entry to be submitted")

    checked = check_transition(cra, CRA_SUBMITTED)
    if not checked.ok:
        return checked

    recalculate(db, cra)
    cra.status = CRA_SUBMITTED
    db.flush()

    logger.info("cra_submitted", cra_id=str(cra.id), total_days=str(cra.total_days), total_amount=cra.total_amount)
    return Success(data=CraRead.model_validate(cra), message="CRA submitted")


@service_operation("cra")
def lock_cra(db: Session, actor, cra_id) -> Result:
    """
    submitted -> locked.

    Totals are recomputed, locked_at is stamped and the ledger snapshot is
    appended in the same transaction.
    """
    cra, failure = load_cra_for_update(db, cra_id)
    if failure:
        return failure

    access = AccessControl(db, actor)
    checked = access.authorize_access(cra)
    if not checked.ok:
        return checked

    if cra.status != CRA_SUBMITTED:
        logger.warning("cra_lock_refused", cra_id=str(cra.id), status=cra.status)
        return conflict(
            ErrorCode.invalid_transition,
            f"Only submitted CRAs can be locked (current status: {cra.status})",
            details={"from": cra.status, "to": CRA_LOCKED},
        )

    checked = access.require_creator(cra, "Only the CRA creator can lock it")
    if not checked.ok:
        return checked

    recalculate(db, cra)
    cra.status = CRA_LOCKED
    cra.locked_at = utcnow()
    db.flush()
    snapshot = ledger.create_lock_snapshot(db, cra, actor)

    logger.info("cra_locked", cra_id=str(cra.id), snapshot_id=str(snapshot.id))
    return Success(
        data=CraRead.model_validate(cra),
        message="CRA locked",
        meta={"snapshot_id": str(snapshot.id), "integrity_hash": snapshot.integrity_hash},
    )


@service_operation("cra")
def destroy_cra(db: Session, actor, cra_id) -> Result:
    """Soft delete; only the creator, only while draft."""
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

    cra.deleted_at = utcnow()
    db.flush()

    logger.info("cra_deleted", cra_id=str(cra.id))
    return Success(data={"id": str(cra.id)}, message="CRA deleted")


@service_operation("cra", readonly=True)
def get_lock_snapshot(db: Session, actor, cra_id) -> Result:
    cra, failure = load_cra(db, cra_id)
    if failure:
        return failure

    checked = AccessControl(db, actor).authorize_access(cra)
    if not checked.ok:
        return checked

    snapshot = ledger.get_snapshot(db, cra.id)
    if snapshot is None:
        return not_found("cra_lock_snapshot", "CRA has no lock snapshot")
    return Success(
        data=LockSnapshotRead.model_validate(snapshot),
        meta={"verified": ledger.verify_snapshot(snapshot)},
    )
