"""
Access control for reports and missions.

Visibility follows the join chain user -> company (independent/client role)
-> mission -> report. Report creators always see their own reports.
"""
import uuid
from typing import FrozenSet, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import (
    CRA_LOCKED,
    CRA_SUBMITTED,
    ROLE_CLIENT,
    ROLE_INDEPENDENT,
    Cra,
    CraEntryCra,
    CraMission,
    Mission,
    MissionCompany,
    UserCompany,
)
from ..result import ErrorCode, Result, Success, conflict, forbidden


logger = structlog.get_logger(__name__)

VISIBILITY_ROLES = (ROLE_INDEPENDENT, ROLE_CLIENT)


class AccessControl:
    """
    Read-only access queries for one actor.

    Id sets are computed on first use and kept for the lifetime of the
    instance, which is one operation call.
    """

    def __init__(self, db: Session, user):
        self.db = db
        self.user = user
        self._mission_ids: Optional[FrozenSet[uuid.UUID]] = None
        self._report_ids: Optional[FrozenSet[uuid.UUID]] = None

    def _membership_query(self, *columns):
        return (
            self.db.query(*columns)
            .select_from(MissionCompany)
            .join(UserCompany, UserCompany.company_id == MissionCompany.company_id)
            .join(Mission, Mission.id == MissionCompany.mission_id)
            .filter(
                UserCompany.user_id == self.user.id,
                UserCompany.role.in_(VISIBILITY_ROLES),
                UserCompany.deleted_at.is_(None),
                MissionCompany.deleted_at.is_(None),
                Mission.deleted_at.is_(None),
            )
        )

    def accessible_mission_ids(self) -> FrozenSet[uuid.UUID]:
        if self._mission_ids is None:
            rows = self._membership_query(MissionCompany.mission_id).distinct().all()
            self._mission_ids = frozenset(row[0] for row in rows)
        return self._mission_ids

    def accessible_report_ids(self) -> FrozenSet[uuid.UUID]:
        if self._report_ids is None:
            rows = (
                self._membership_query(CraMission.cra_id)
                .join(CraMission, CraMission.mission_id == MissionCompany.mission_id)
                .join(Cra, Cra.id == CraMission.cra_id)
                .filter(Cra.deleted_at.is_(None))
                .distinct()
                .all()
            )
            self._report_ids = frozenset(row[0] for row in rows)
        return self._report_ids

    def accessible_entry_ids(self) -> FrozenSet[uuid.UUID]:
        report_ids = self.accessible_report_ids() | self._own_report_ids()
        if not report_ids:
            return frozenset()
        rows = (
            self.db.query(CraEntryCra.cra_entry_id)
            .filter(CraEntryCra.cra_id.in_(list(report_ids)))
            .distinct()
            .all()
        )
        return frozenset(row[0] for row in rows)

    def _own_report_ids(self) -> FrozenSet[uuid.UUID]:
        rows = self.db.query(Cra.id).filter(
            Cra.created_by_user_id == self.user.id,
            Cra.deleted_at.is_(None),
        ).all()
        return frozenset(row[0] for row in rows)

    def has_role(self, role: str) -> bool:
        return self.db.query(
            self.db.query(UserCompany)
            .filter(
                UserCompany.user_id == self.user.id,
                UserCompany.role == role,
                UserCompany.deleted_at.is_(None),
            )
            .exists()
        ).scalar()

    def is_creator(self, cra: Cra) -> bool:
        return cra.created_by_user_id == self.user.id

    def authorize_access(self, cra: Cra) -> Result:
        if self.is_creator(cra):
            return Success()
        if cra.id in self.accessible_report_ids():
            return Success()
        logger.warning("cra_access_denied", cra_id=str(cra.id), user_id=str(self.user.id))
        return forbidden("Access denied to this CRA")

    def require_creator(self, cra: Cra, message: str = "Only the CRA creator can perform this action") -> Result:
        if self.is_creator(cra):
            return Success()
        logger.warning("cra_not_creator", cra_id=str(cra.id), user_id=str(self.user.id))
        return forbidden(message)

    def authorize_modification(self, cra: Cra) -> Result:
        checked = self.require_creator(cra)
        if not checked.ok:
            return checked
        if cra.status == CRA_SUBMITTED:
            return conflict(ErrorCode.report_submitted, "Submitted CRAs cannot be modified")
        if cra.status == CRA_LOCKED:
            return conflict(ErrorCode.report_locked, "Locked CRAs cannot be modified")
        return Success()
