import uuid
import datetime as dt
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    UniqueConstraint,
    BigInteger,
    Index,
    Uuid,
    event,
    text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Company roles granting visibility over missions and reports
ROLE_INDEPENDENT = "independent"
ROLE_CLIENT = "client"

CRA_DRAFT = "draft"
CRA_SUBMITTED = "submitted"
CRA_LOCKED = "locked"
CRA_STATUSES = (CRA_DRAFT, CRA_SUBMITTED, CRA_LOCKED)


class ImmutableRecordError(RuntimeError):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    company_roles: Mapped[List["UserCompany"]] = relationship("UserCompany", back_populates="user")


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    siret: Mapped[Optional[str]] = mapped_column(String(14), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class UserCompany(Base):
    __tablename__ = "user_companies"
    __table_args__ = (
        UniqueConstraint("user_id", "company_id", "role", name="uq_user_company_role"),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # independent|client|admin|manager
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user = relationship("User", back_populates="company_roles")
    company = relationship("Company")


class Mission(Base):
    __tablename__ = "missions"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(2000))
    mission_type: Mapped[str] = mapped_column(String(32), nullable=False, default="time_based")  # time_based|fixed_price
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="lead")
    daily_rate: Mapped[Optional[int]] = mapped_column(BigInteger)  # minor units, time_based only
    fixed_price: Mapped[Optional[int]] = mapped_column(BigInteger)  # minor units, fixed_price only
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    created_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class MissionCompany(Base):
    __tablename__ = "mission_companies"
    __table_args__ = (
        UniqueConstraint("mission_id", "company_id", "role", name="uq_mission_company_role"),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    mission_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("missions.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)  # independent|client
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Cra(Base):
    __tablename__ = "cras"
    __table_args__ = (
        # one live report per (creator, month, year)
        Index(
            "uq_cras_creator_period_active",
            "created_by_user_id",
            "month",
            "year",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    description: Mapped[Optional[str]] = mapped_column(String(2000))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CRA_DRAFT, index=True)  # draft|submitted|locked
    total_days: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # minor units
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by_user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=_utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    mission_links: Mapped[List["CraMission"]] = relationship("CraMission", cascade="all, delete-orphan")

    @property
    def mission_ids(self) -> List[uuid.UUID]:
        return sorted((link.mission_id for link in self.mission_links), key=str)


class CraEntry(Base):
    __tablename__ = "cra_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)  # days
    unit_price: Mapped[int] = mapped_column(BigInteger, nullable=False)  # minor units
    description: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=_utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)

    cra_links: Mapped[List["CraEntryCra"]] = relationship("CraEntryCra", cascade="all, delete-orphan")
    mission_links: Mapped[List["CraEntryMission"]] = relationship("CraEntryMission", cascade="all, delete-orphan")

    @property
    def mission_id(self) -> Optional[uuid.UUID]:
        return self.mission_links[0].mission_id if self.mission_links else None

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.quantity) * self.unit_price


class CraMission(Base):
    __tablename__ = "cra_missions"
    __table_args__ = (
        UniqueConstraint("cra_id", "mission_id", name="uq_cra_mission"),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    cra_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("cras.id", ondelete="CASCADE"), nullable=False, index=True)
    mission_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("missions.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class CraEntryCra(Base):
    __tablename__ = "cra_entry_cras"
    __table_args__ = (
        UniqueConstraint("cra_entry_id", "cra_id", name="uq_cra_entry_cra"),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    cra_entry_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("cra_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    cra_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("cras.id", ondelete="CASCADE"), nullable=False, index=True)


class CraEntryMission(Base):
    __tablename__ = "cra_entry_missions"
    __table_args__ = (
        UniqueConstraint("cra_entry_id", "mission_id", name="uq_cra_entry_mission"),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    cra_entry_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("cra_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    mission_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("missions.id", ondelete="CASCADE"), nullable=False, index=True)


class CraEntrySlot(Base):
    """
    Occupancy of a (report, mission, date) triple by an active entry.

    Rows exist only for non-deleted entries that bill a mission; the unique
    constraint makes the store reject a second active entry on the same triple.
    """
    __tablename__ = "cra_entry_slots"
    __table_args__ = (
        UniqueConstraint("cra_id", "mission_id", "date", name="uq_cra_entry_slot"),
    )

    id: Mapped[uuid.UUID] = uuid_pk()
    cra_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("cras.id", ondelete="CASCADE"), nullable=False)
    mission_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("missions.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    cra_entry_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("cra_entries.id", ondelete="CASCADE"), nullable=False, unique=True)


class CraLockSnapshot(Base):
    __tablename__ = "cra_lock_snapshots"

    id: Mapped[uuid.UUID] = uuid_pk()
    cra_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("cras.id"), nullable=False, unique=True)
    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"))
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)  # canonical report + entries + totals
    integrity_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


@event.listens_for(CraLockSnapshot, "before_update")
def _refuse_snapshot_update(mapper, connection, target):
    raise ImmutableRecordError(f"Lock snapshot {target.id} is append-only")


@event.listens_for(CraLockSnapshot, "before_delete")
def _refuse_snapshot_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Lock snapshot {target.id} is append-only")
