from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from partsdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerActionTypeEnum(str, enum.Enum):
    ADD = "ADD"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    REVERSE_IN = "REVERSE_IN"
    REVERSE_OUT = "REVERSE_OUT"
    CONSUMED = "CONSUMED"


class LocationTagEnum(str, enum.Enum):
    """Parties a movement can come from or go to.

    Free-form tags are accepted as well; these are the ones the portal and
    the sync integration emit.
    """

    BRAND = "BRAND"
    SERVICE_CENTER = "SERVICE_CENTER"
    DISTRIBUTOR = "DISTRIBUTOR"
    CUSTOMER = "CUSTOMER"
    SYSTEM = "SYSTEM"
    EXTERNAL = "EXTERNAL"


class Part(Base):
    __tablename__ = "inventory_parts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_inventory_part_code"),
        Index("ix_inventory_parts_tenant_part_number", "tenant_id", "part_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(64), nullable=False, index=True)
    part_number = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(64), nullable=True)
    cost_price = Column(Float, nullable=True)
    price = Column(Float, nullable=True)
    min_stock_level = Column(Integer, nullable=True)
    max_stock_level = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LedgerEntry(Base):
    """
    One stock movement. Rows are inserted once and never updated or deleted;
    corrections are compensating REVERSE_IN / REVERSE_OUT entries.
    """

    __tablename__ = "inventory_ledger_entries"
    __table_args__ = (
        Index("ix_inventory_ledger_tenant_part_created", "tenant_id", "part_id", "created_at"),
        Index("ix_inventory_ledger_tenant_created", "tenant_id", "created_at"),
        CheckConstraint("quantity > 0", name="ck_inventory_ledger_quantity_positive"),
        CheckConstraint("balance_after >= 0", name="ck_inventory_ledger_balance_after_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("inventory_parts.id", ondelete="CASCADE"), nullable=False, index=True)
    part_number = Column(String(64), nullable=True)

    action_type = Column(
        SAEnum(LedgerActionTypeEnum, name="ledger_action_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    quantity = Column(Integer, nullable=False)
    source = Column(String(64), nullable=False, index=True)
    destination = Column(String(64), nullable=False, index=True)

    unit_cost = Column(Float, nullable=True)
    total_value = Column(Float, nullable=True)
    balance_after = Column(Integer, nullable=False)

    reference_id = Column(String(64), nullable=True, index=True)
    reference_note = Column(Text, nullable=True)

    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    part = relationship("Part", lazy="joined")


class BalanceRecord(Base):
    """
    Materialised on-hand quantity per (tenant, part).

    Created at zero on the first movement, changed only by the movement
    service, never deleted. `version` guards the read-modify-write.
    """

    __tablename__ = "inventory_balances"
    __table_args__ = (
        UniqueConstraint("tenant_id", "part_id", name="uq_inventory_balance_tenant_part"),
        CheckConstraint("on_hand_quantity >= 0", name="ck_inventory_balance_on_hand_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("inventory_parts.id", ondelete="CASCADE"), nullable=False, index=True)

    on_hand_quantity = Column(Integer, nullable=False, default=0)
    available_quantity = Column(Integer, nullable=False, default=0)

    # Maintained by reservation / quality collaborators, read here only.
    reserved_quantity = Column(Integer, nullable=False, default=0)
    defective_quantity = Column(Integer, nullable=False, default=0)
    quarantine_quantity = Column(Integer, nullable=False, default=0)

    last_restocked_at = Column(DateTime(timezone=True), nullable=True)
    last_issued_at = Column(DateTime(timezone=True), nullable=True)
    last_cost = Column(Float, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    version = Column(Integer, nullable=False)

    part = relationship("Part", lazy="joined")

    __mapper_args__ = {"version_id_col": version}
