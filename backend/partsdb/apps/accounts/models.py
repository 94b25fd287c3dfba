# backend/partsdb/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from partsdb.database import Base
from partsdb.ids import generate_tenant_id, generate_user_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class AccountRole(str, enum.Enum):
    """Portal roles.

    Brand roles own inventory; service centres and distributors only see
    what a brand shares with them.
    """

    SUPER_ADMIN = "SUPER_ADMIN"       # Platform owner
    BRAND_ADMIN = "BRAND_ADMIN"
    BRAND_STAFF = "BRAND_STAFF"
    SERVICE_CENTER = "SERVICE_CENTER"
    DISTRIBUTOR = "DISTRIBUTOR"
    VIEW_ONLY = "VIEW_ONLY"


# ---------------------------------------------------------------------------
# TENANTS
# ---------------------------------------------------------------------------


class Tenant(Base):
    """
    A brand account. Parts, ledger entries and balances are always scoped
    to exactly one tenant and never visible to another.
    """

    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=generate_tenant_id)
    code = Column(String(32), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    users = relationship("User", back_populates="tenant", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Tenant {self.code} {self.name}>"


class User(Base):
    """
    Portal user. `tenant_id` is NULL only for platform super admins.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        Index("idx_users_role_active", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_user_id)
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)

    role = Column(
        Enum(AccountRole, name="account_role_enum"),
        nullable=False,
        default=AccountRole.VIEW_ONLY,
        index=True,
    )

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_superuser = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    tenant = relationship("Tenant", back_populates="users", lazy="joined")

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role}>"
