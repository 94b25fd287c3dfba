from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from . import models


class PartCreate(BaseModel):
    code: str = Field(..., min_length=1)
    part_number: Optional[str] = None
    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    cost_price: Optional[float] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)
    min_stock_level: Optional[int] = Field(default=None, ge=0)
    max_stock_level: Optional[int] = Field(default=None, ge=0)


class PartRead(PartCreate):
    id: int
    tenant_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class MovementCreate(BaseModel):
    """
    Movement request body.

    Fields are deliberately loose; the movement service enforces the rules
    so that each failure maps to its own error kind instead of a generic 422.
    """

    part_id: int
    action_type: Any = None
    quantity: Any = None
    source: Any = None
    destination: Any = None
    unit_cost: Optional[float] = Field(default=None, ge=0)
    reference_id: Optional[str] = None
    reference_note: Optional[str] = None


class LedgerEntryRead(BaseModel):
    id: int
    tenant_id: str
    part_id: int
    part_number: Optional[str] = None
    action_type: models.LedgerActionTypeEnum
    quantity: int
    source: str
    destination: str
    unit_cost: Optional[float] = None
    total_value: Optional[float] = None
    balance_after: int
    reference_id: Optional[str] = None
    reference_note: Optional[str] = None
    created_by_user_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BalanceRead(BaseModel):
    tenant_id: str
    part_id: int
    on_hand_quantity: int
    available_quantity: int
    reserved_quantity: int = 0
    defective_quantity: int = 0
    quarantine_quantity: int = 0
    last_restocked_at: Optional[datetime] = None
    last_issued_at: Optional[datetime] = None
    last_cost: Optional[float] = None

    class Config:
        from_attributes = True


class BalanceWithPartRead(BalanceRead):
    part_code: str
    part_name: str
    min_stock_level: Optional[int] = None
    is_low_stock: bool = False


class MovementResult(BaseModel):
    entry: LedgerEntryRead
    balance: BalanceRead


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class LedgerPage(BaseModel):
    entries: List[LedgerEntryRead]
    pagination: Pagination


class ActionSummary(BaseModel):
    count: int
    total_quantity: int
    total_value: float


class LedgerSummary(BaseModel):
    start_date: datetime
    end_date: datetime
    actions: Dict[str, ActionSummary]


class BalanceVerification(BaseModel):
    tenant_id: str
    part_id: int
    consistent: bool
    on_hand: int
    folded: int
    entry_count: int
    mismatched_entry_ids: List[int] = Field(default_factory=list)


class SyncItem(BaseModel):
    sku: Optional[str] = None
    quantity: Any = None
    action: Optional[str] = None
    note: Optional[str] = None
    unit_cost: Optional[float] = Field(default=None, ge=0)


class SyncRequest(SyncItem):
    """Either a single item inline or a batch under `items`."""

    items: Optional[List[SyncItem]] = None


class SyncSuccess(BaseModel):
    sku: str
    new_balance: int
    ledger_entry_id: int


class SyncFailure(BaseModel):
    sku: Optional[str] = None
    error: str
    message: str


class SyncResult(BaseModel):
    successful: List[SyncSuccess] = Field(default_factory=list)
    errors: List[SyncFailure] = Field(default_factory=list)
