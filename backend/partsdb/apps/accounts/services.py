from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from . import models


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AuthorisationError(Exception):
    """Raised when a user acts outside the tenant they belong to."""


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------


def _normalise_email(value: str) -> str:
    return value.strip().lower()


def _normalise_code(value: str) -> str:
    return value.strip().upper()


# ---------------------------------------------------------------------------
# Tenants and users
# ---------------------------------------------------------------------------


def create_tenant(
    db: Session,
    *,
    code: str,
    name: str,
    contact_email: Optional[str] = None,
) -> models.Tenant:
    code = _normalise_code(code)
    existing = db.query(models.Tenant).filter(models.Tenant.code == code).first()
    if existing:
        raise ValueError(f"Tenant code {code} already exists.")
    tenant = models.Tenant(
        code=code,
        name=name.strip(),
        contact_email=_normalise_email(contact_email) if contact_email else None,
    )
    db.add(tenant)
    db.flush()
    return tenant


def create_user(
    db: Session,
    *,
    tenant_id: Optional[str],
    email: str,
    full_name: str,
    role: models.AccountRole,
) -> models.User:
    if role != models.AccountRole.SUPER_ADMIN and not tenant_id:
        raise ValueError("Only super admins may exist without a tenant.")
    user = models.User(
        tenant_id=tenant_id,
        email=_normalise_email(email),
        full_name=full_name.strip(),
        role=role,
        is_superuser=role == models.AccountRole.SUPER_ADMIN,
        is_active=True,
    )
    db.add(user)
    db.flush()
    return user


def get_user(db: Session, user_id: str) -> Optional[models.User]:
    if user_id is None:
        return None
    return db.query(models.User).filter(models.User.id == str(user_id).strip()).first()


def require_tenant_id(user: models.User) -> str:
    """
    Return the tenant the user acts for.

    Super admins have no tenant of their own and must not touch tenant
    inventory through tenant-scoped routes.
    """
    tenant_id = getattr(user, "tenant_id", None)
    if not tenant_id:
        raise AuthorisationError("No tenant selected for the current session.")
    return tenant_id
