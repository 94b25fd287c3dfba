"""
Seed a demo brand with a few parts and an opening stock position.

Prints a bearer token for the brand admin so the API can be exercised
straight away. Safe to re-run: existing tenant and parts are reused.
"""

import os

from sqlalchemy.orm import Session

from partsdb.database import Base, SessionLocal, write_engine
from partsdb.security import create_access_token
from partsdb.apps.accounts import models as account_models
from partsdb.apps.accounts import services as account_services
from partsdb.apps.inventory import models as inventory_models
from partsdb.apps.inventory import schemas as inventory_schemas
from partsdb.apps.inventory import services as inventory_services

TENANT_CODE = os.getenv("PARTSDB_DEMO_TENANT_CODE", "DEMO")
ADMIN_EMAIL = os.getenv("PARTSDB_DEMO_ADMIN_EMAIL", "admin@demo-brand.example")

DEMO_PARTS = [
    # code, part number, name, cost, opening stock
    ("SCR-001", "PN-SCR-001", "Display assembly 6.1in", 42.5, 40),
    ("BAT-002", "PN-BAT-002", "Battery 4500mAh", 11.0, 120),
    ("CHG-003", "PN-CHG-003", "USB-C charging port", 2.75, 8),
]


def _ensure_tenant(db: Session) -> account_models.Tenant:
    tenant = db.query(account_models.Tenant).filter(account_models.Tenant.code == TENANT_CODE).first()
    if tenant:
        return tenant
    return account_services.create_tenant(db, code=TENANT_CODE, name="Demo Brand")


def _ensure_admin(db: Session, tenant: account_models.Tenant) -> account_models.User:
    user = (
        db.query(account_models.User)
        .filter(account_models.User.tenant_id == tenant.id, account_models.User.email == ADMIN_EMAIL)
        .first()
    )
    if user:
        return user
    return account_services.create_user(
        db,
        tenant_id=tenant.id,
        email=ADMIN_EMAIL,
        full_name="Demo Admin",
        role=account_models.AccountRole.BRAND_ADMIN,
    )


def main() -> None:
    Base.metadata.create_all(bind=write_engine)
    db: Session = SessionLocal()
    try:
        tenant = _ensure_tenant(db)
        admin = _ensure_admin(db, tenant)
        db.commit()

        for code, part_number, name, cost, opening in DEMO_PARTS:
            part = (
                db.query(inventory_models.Part)
                .filter(inventory_models.Part.tenant_id == tenant.id, inventory_models.Part.code == code)
                .first()
            )
            if part:
                continue
            part = inventory_services.create_part(
                db,
                tenant_id=tenant.id,
                payload=inventory_schemas.PartCreate(
                    code=code, part_number=part_number, name=name, cost_price=cost, min_stock_level=10
                ),
                actor_user_id=admin.id,
            )
            inventory_services.record_movement(
                db,
                tenant_id=tenant.id,
                payload=inventory_schemas.MovementCreate(
                    part_id=part.id,
                    action_type="ADD",
                    quantity=opening,
                    source="SYSTEM",
                    destination="BRAND",
                    reference_note="Opening stock",
                ),
                actor_user_id=admin.id,
            )

        token = create_access_token(data={"sub": admin.id, "tenant_id": tenant.id})
        print(f"Tenant {tenant.code} ({tenant.id}) seeded.")
        print(f"Bearer token for {admin.email}:\n{token}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
