from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from partsdb.security import get_current_active_user, require_roles
from partsdb.database import get_db, get_read_db
from partsdb.apps.accounts import models as account_models
from partsdb.apps.accounts import services as account_services

from . import errors, schemas, services

router = APIRouter(
    prefix="/inventory",
    tags=["inventory"],
)

INVENTORY_WRITE_ROLES = [
    account_models.AccountRole.BRAND_ADMIN,
    account_models.AccountRole.BRAND_STAFF,
]


def _tenant_id(current_user: account_models.User) -> str:
    try:
        return account_services.require_tenant_id(current_user)
    except account_services.AuthorisationError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=errors.NotAuthorized(str(exc)).to_detail(),
        )


def _http_error(exc: errors.InventoryError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@router.post(
    "/parts",
    response_model=schemas.PartRead,
    status_code=status.HTTP_201_CREATED,
)
def create_part(
    payload: schemas.PartCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*INVENTORY_WRITE_ROLES)),
):
    tenant_id = _tenant_id(current_user)
    try:
        part = services.create_part(db, tenant_id=tenant_id, payload=payload, actor_user_id=current_user.id)
    except errors.InventoryError as exc:
        raise _http_error(exc)
    db.refresh(part)
    return part


@router.get("/parts", response_model=List[schemas.PartRead])
def list_parts(
    search: Optional[str] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.list_parts(db, tenant_id=_tenant_id(current_user), search=search)
    except errors.InventoryError as exc:
        raise _http_error(exc)


@router.post(
    "/movements",
    response_model=schemas.MovementResult,
    status_code=status.HTTP_201_CREATED,
)
def record_movement(
    payload: schemas.MovementCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*INVENTORY_WRITE_ROLES)),
):
    tenant_id = _tenant_id(current_user)
    try:
        entry, balance = services.record_movement(
            db,
            tenant_id=tenant_id,
            payload=payload,
            actor_user_id=current_user.id,
        )
    except errors.InventoryError as exc:
        raise _http_error(exc)
    return {"entry": entry, "balance": balance}


@router.post("/sync", response_model=schemas.SyncResult)
def sync_stock(
    payload: schemas.SyncRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*INVENTORY_WRITE_ROLES)),
):
    tenant_id = _tenant_id(current_user)
    if payload.items is not None:
        items = payload.items
    else:
        items = [schemas.SyncItem(**payload.model_dump(exclude={"items"}))]
    return services.sync_stock(db, tenant_id=tenant_id, items=items, actor_user_id=current_user.id)


@router.get("/ledger", response_model=schemas.LedgerPage)
def list_ledger(
    part_id: Optional[int] = None,
    action_type: Optional[str] = None,
    source: Optional[str] = None,
    destination: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort_order: str = "desc",
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    # page / limit stay strings so junk values clamp to defaults instead of 422.
    try:
        entries, pagination = services.list_ledger(
            db,
            tenant_id=_tenant_id(current_user),
            part_id=part_id,
            action_type=action_type,
            source=source,
            destination=destination,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
            sort_order=sort_order,
        )
    except errors.InventoryError as exc:
        raise _http_error(exc)
    return {"entries": entries, "pagination": pagination}


@router.get("/ledger/summary", response_model=schemas.LedgerSummary)
def ledger_summary(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.summarize_ledger(
            db,
            tenant_id=_tenant_id(current_user),
            start_date=start_date,
            end_date=end_date,
        )
    except errors.InventoryError as exc:
        raise _http_error(exc)


@router.get("/balance", response_model=schemas.BalanceRead)
def get_balance(
    part_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.get_balance(db, tenant_id=_tenant_id(current_user), part_id=part_id)
    except errors.InventoryError as exc:
        raise _http_error(exc)


@router.get("/balance/verify", response_model=schemas.BalanceVerification)
def verify_balance(
    part_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_roles(*INVENTORY_WRITE_ROLES)),
):
    try:
        return services.verify_balance(db, tenant_id=_tenant_id(current_user), part_id=part_id)
    except errors.InventoryError as exc:
        raise _http_error(exc)


@router.get("/balances", response_model=List[schemas.BalanceWithPartRead])
def list_balances(
    search: Optional[str] = None,
    low_stock: bool = False,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.list_balances(
            db,
            tenant_id=_tenant_id(current_user),
            search=search,
            low_stock=low_stock,
        )
    except errors.InventoryError as exc:
        raise _http_error(exc)
