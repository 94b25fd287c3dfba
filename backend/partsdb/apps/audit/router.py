from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from partsdb.database import get_read_db
from partsdb.security import require_roles
from partsdb.apps.accounts import models as account_models
from partsdb.apps.accounts import services as account_services

from . import schemas, services

router = APIRouter(prefix="/audit", tags=["audit"])

AUDIT_READ_ROLES = [account_models.AccountRole.BRAND_ADMIN]


@router.get("/events", response_model=List[schemas.AuditEventRead])
def list_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_roles(*AUDIT_READ_ROLES)),
):
    try:
        tenant_id = account_services.require_tenant_id(current_user)
    except account_services.AuthorisationError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return services.list_audit_events(
        db,
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        start=start,
        end=end,
    )
