import uuid
import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class CraEntryRead(BaseModel):
    id: uuid.UUID
    date: dt.date
    quantity: Decimal
    unit_price: int  # minor units
    description: Optional[str] = None
    mission_id: Optional[uuid.UUID] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    deleted_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class CraRead(BaseModel):
    id: uuid.UUID
    month: int
    year: int
    currency: str
    description: Optional[str] = None
    status: str
    total_days: Decimal
    total_amount: int  # minor units
    locked_at: Optional[dt.datetime] = None
    created_by_user_id: uuid.UUID
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    mission_ids: List[uuid.UUID] = []

    class Config:
        from_attributes = True


class CraDetail(CraRead):
    entries: List[CraEntryRead] = []


class Page(BaseModel):
    items: List[Any]
    page: int
    per_page: int
    total: int
    pages: int

    def meta(self) -> Dict[str, int]:
        return {"page": self.page, "per_page": self.per_page, "total": self.total, "pages": self.pages}


class LockSnapshotRead(BaseModel):
    id: uuid.UUID
    cra_id: uuid.UUID
    locked_at: dt.datetime
    locked_by_user_id: Optional[uuid.UUID] = None
    payload: Dict[str, Any]
    integrity_hash: str

    class Config:
        from_attributes = True
