"""
Lock ledger.
Append-only snapshots of a report at lock time, with integrity hashing.
"""
import hashlib
import json
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Cra, CraEntry, CraEntryCra, CraLockSnapshot
from .time_rules import utcnow


logger = structlog.get_logger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _active_entries(db: Session, cra: Cra):
    return (
        db.query(CraEntry)
        .join(CraEntryCra, CraEntryCra.cra_entry_id == CraEntry.id)
        .filter(CraEntryCra.cra_id == cra.id, CraEntry.deleted_at.is_(None))
        .all()
    )


def build_payload(db: Session, cra: Cra) -> Dict[str, Any]:
    """
    Canonical view of a report: header, sorted mission ids, active entries
    ordered by (date, id) and the stored totals.

    Decimals are rendered as strings so the payload hashes the exact values.
    """
    entries = [
        {
            "id": str(entry.id),
            "date": entry.date.isoformat(),
            "quantity": str(entry.quantity),
            "unit_price": entry.unit_price,
            "description": entry.description,
            "mission_id": str(entry.mission_id) if entry.mission_id else None,
        }
        for entry in _active_entries(db, cra)
    ]
    entries.sort(key=lambda e: (e["date"], e["id"]))

    return {
        "cra_id": str(cra.id),
        "month": cra.month,
        "year": cra.year,
        "currency": cra.currency,
        "description": cra.description,
        "status": cra.status,
        "locked_at": _iso(cra.locked_at),
        "created_by_user_id": str(cra.created_by_user_id),
        "missions": [str(mission_id) for mission_id in cra.mission_ids],
        "entries": entries,
        "totals": {
            "total_days": str(cra.total_days),
            "total_amount": cra.total_amount,
        },
    }


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_integrity_hash(payload: Dict[str, Any], secret: Optional[str] = None) -> str:
    """SHA256 over the canonical JSON, keyed with the ledger secret."""
    if secret is None:
        secret = settings.ledger_secret
    hash_input = f"{canonical_json(payload)}:{secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def create_lock_snapshot(db: Session, cra: Cra, actor, secret: Optional[str] = None) -> CraLockSnapshot:
    """
    Append the lock snapshot for a report.

    Runs inside the lock transaction: the row is flushed, never committed here.
    """
    payload = build_payload(db, cra)
    snapshot = CraLockSnapshot(
        cra_id=cra.id,
        locked_at=cra.locked_at or utcnow(),
        locked_by_user_id=getattr(actor, "id", None),
        payload=payload,
        integrity_hash=compute_integrity_hash(payload, secret),
    )
    db.add(snapshot)
    db.flush()

    logger.info(
        "cra_lock_snapshot_created",
        cra_id=str(cra.id),
        snapshot_id=str(snapshot.id),
        entries=len(payload["entries"]),
    )
    return snapshot


def get_snapshot(db: Session, cra_id) -> Optional[CraLockSnapshot]:
    return db.query(CraLockSnapshot).filter(CraLockSnapshot.cra_id == cra_id).first()


def verify_snapshot(snapshot: CraLockSnapshot, secret: Optional[str] = None) -> bool:
    return compute_integrity_hash(snapshot.payload, secret) == snapshot.integrity_hash
