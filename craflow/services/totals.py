"""
Report totals.

total_days and total_amount are stored on the report row and recomputed after
every entry write, inside the writer's transaction. Read paths never call this.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple

import structlog
from sqlalchemy.orm import Session

from ..models.models import Cra, CraEntry, CraEntryCra


logger = structlog.get_logger(__name__)

DAYS_SCALE = Decimal("0.01")


def line_amount(quantity, unit_price: int) -> Decimal:
    return Decimal(quantity) * unit_price


def compute_totals(lines: Iterable[Tuple[Decimal, int]]) -> Tuple[Decimal, int]:
    """
    Sum (quantity, unit_price) pairs.

    Quantities carry two decimals, so the exact amount is summed first and
    rounded half-up to whole minor units once, at the end.
    """
    total_days = Decimal("0")
    raw_amount = Decimal("0")
    for quantity, unit_price in lines:
        total_days += Decimal(quantity)
        raw_amount += line_amount(quantity, unit_price)
    return (
        total_days.quantize(DAYS_SCALE),
        int(raw_amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
    )


def active_entry_lines(db: Session, cra_id):
    return (
        db.query(CraEntry.quantity, CraEntry.unit_price)
        .join(CraEntryCra, CraEntryCra.cra_entry_id == CraEntry.id)
        .filter(CraEntryCra.cra_id == cra_id, CraEntry.deleted_at.is_(None))
        .all()
    )


def count_active_entries(db: Session, cra_id) -> int:
    return (
        db.query(CraEntry.id)
        .join(CraEntryCra, CraEntryCra.cra_entry_id == CraEntry.id)
        .filter(CraEntryCra.cra_id == cra_id, CraEntry.deleted_at.is_(None))
        .count()
    )


def recalculate(db: Session, cra: Cra) -> Cra:
    """
    Recompute and persist total_days / total_amount from the report's active entries.
    Idempotent; pending entry writes are flushed first so they are counted.
    """
    db.flush()
    total_days, total_amount = compute_totals(active_entry_lines(db, cra.id))
    cra.total_days = total_days
    cra.total_amount = total_amount
    db.flush()
    logger.info(
        "cra_totals_recalculated",
        cra_id=str(cra.id),
        total_days=str(total_days),
        total_amount=total_amount,
    )
    return cra
