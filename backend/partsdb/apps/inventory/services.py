from __future__ import annotations

import logging
import math
import os
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, lazyload
from sqlalchemy.orm.exc import StaleDataError

from partsdb.apps.audit import schemas as audit_schemas
from partsdb.apps.audit import services as audit_services
from . import errors, models, projector, schemas

logger = logging.getLogger(__name__)

Action = models.LedgerActionTypeEnum
Location = models.LocationTagEnum

LOW_STOCK_THRESHOLD = int(os.getenv("INVENTORY_LOW_STOCK_THRESHOLD", "10"))
LEDGER_DEFAULT_LIMIT = int(os.getenv("INVENTORY_LEDGER_DEFAULT_LIMIT", "50"))
LEDGER_MAX_LIMIT = int(os.getenv("INVENTORY_LEDGER_MAX_LIMIT", "200"))
SUMMARY_WINDOW_DAYS = 30

# Verbs accepted by the stock sync integration -> (action, source, destination).
SYNC_ACTIONS = {
    "ADD": (Action.ADD, Location.SYSTEM, Location.BRAND),
    "RESTOCK": (Action.ADD, Location.SYSTEM, Location.BRAND),
    "CONSUMED": (Action.CONSUMED, Location.BRAND, Location.SYSTEM),
    "SCRAP": (Action.CONSUMED, Location.BRAND, Location.SYSTEM),
    "TRANSFER_OUT": (Action.TRANSFER_OUT, Location.BRAND, Location.EXTERNAL),
}

# serialization_failure, deadlock_detected, lock_not_available
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_code(value: Optional[str]) -> str:
    return (value or "").strip().upper()


# ---------------------------------------------------------------------------
# Database error translation
# ---------------------------------------------------------------------------


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _is_balance_key_conflict(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "uq_inventory_balance_tenant_part" in message or "inventory_balances.tenant_id" in message


def _is_storage_failure(exc: DBAPIError) -> bool:
    return bool(exc.connection_invalidated) or isinstance(exc, (OperationalError, InterfaceError))


@contextmanager
def _movement_transaction(db: Session, *, tenant_id: str, part_id: int) -> Iterator[None]:
    """
    One unit of work: everything staged inside commits together or not at all.
    """
    log_ctx = {"tenant_id": tenant_id, "part_id": part_id}
    try:
        yield
        db.commit()
    except errors.InventoryError as exc:
        db.rollback()
        logger.info("Inventory movement rejected", extra={**log_ctx, "error": exc.kind})
        raise
    except StaleDataError as exc:
        db.rollback()
        logger.warning("Stale balance on movement", extra=log_ctx)
        raise errors.ConcurrentModification(
            "balance was changed by another movement, resubmit"
        ) from exc
    except IntegrityError as exc:
        db.rollback()
        if not _is_balance_key_conflict(exc):
            raise
        logger.warning("Concurrent balance creation on movement", extra=log_ctx)
        raise errors.ConcurrentModification(
            "balance was created by another movement, resubmit"
        ) from exc
    except DBAPIError as exc:
        db.rollback()
        if _sqlstate(exc) in _CONFLICT_SQLSTATES:
            logger.warning("Serialization conflict on movement", extra=log_ctx)
            raise errors.ConcurrentModification(
                "movement conflicted with another transaction, resubmit"
            ) from exc
        if _is_storage_failure(exc):
            logger.warning("Inventory store unavailable", extra={**log_ctx, "error": str(exc.orig)})
            raise errors.StorageUnavailable("inventory store unavailable, retry later") from exc
        raise
    except Exception:
        db.rollback()
        raise


@contextmanager
def _storage_errors() -> Iterator[None]:
    try:
        yield
    except DBAPIError as exc:
        if _is_storage_failure(exc):
            logger.warning("Inventory store unavailable", extra={"error": str(exc.orig)})
            raise errors.StorageUnavailable("inventory store unavailable, retry later") from exc
        raise


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_quantity(value: Any) -> int:
    # bool is an int subclass; True must not become a quantity of 1.
    if value is None or isinstance(value, bool):
        raise errors.InvalidQuantity("quantity must be a positive integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise errors.InvalidQuantity(f"quantity must be a positive integer, got {value}")
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise errors.InvalidQuantity(f"quantity must be a positive integer, got {value}")
    return value


def _validate_location(value: Optional[str], field: str) -> str:
    cleaned = (value or "").strip() if isinstance(value, str) else ""
    if not cleaned:
        raise errors.MissingLocation(f"{field} is required")
    return cleaned.upper()


def _validate_movement(
    payload: schemas.MovementCreate,
    *,
    tenant_id: Optional[str],
    actor_user_id: Optional[str],
) -> Tuple[int, models.LedgerActionTypeEnum, str, str]:
    if not tenant_id or not actor_user_id:
        raise errors.NotAuthorized("an authenticated tenant user is required to record movements")
    quantity = _validate_quantity(payload.quantity)
    action = projector.parse_action_type(payload.action_type)
    source = _validate_location(payload.source, "source")
    destination = _validate_location(payload.destination, "destination")
    return quantity, action, source, destination


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------


def _get_part(db: Session, *, tenant_id: str, part_id: int) -> models.Part:
    part = (
        db.query(models.Part)
        .filter(models.Part.tenant_id == tenant_id, models.Part.id == part_id)
        .first()
    )
    if not part:
        raise errors.NotFound(f"part {part_id} not found")
    return part


def _find_part_by_sku(db: Session, *, tenant_id: str, sku: str) -> models.Part:
    sku = _normalize_code(sku)
    part = (
        db.query(models.Part)
        .filter(
            models.Part.tenant_id == tenant_id,
            or_(models.Part.code == sku, models.Part.part_number == sku),
        )
        .order_by(models.Part.id.asc())
        .first()
    )
    if not part:
        raise errors.NotFound(f"part {sku} not found")
    return part


def create_part(
    db: Session,
    *,
    tenant_id: str,
    payload: schemas.PartCreate,
    actor_user_id: Optional[str],
) -> models.Part:
    code = _normalize_code(payload.code)
    existing = (
        db.query(models.Part)
        .filter(models.Part.tenant_id == tenant_id, models.Part.code == code)
        .first()
    )
    if existing:
        raise errors.AlreadyExists(f"part code {code} already exists")

    part = models.Part(
        tenant_id=tenant_id,
        code=code,
        part_number=_normalize_code(payload.part_number) or None,
        name=payload.name.strip(),
        category=payload.category,
        cost_price=payload.cost_price,
        price=payload.price,
        min_stock_level=payload.min_stock_level,
        max_stock_level=payload.max_stock_level,
    )
    try:
        db.add(part)
        db.flush()
        _audit_event(
            db,
            tenant_id=tenant_id,
            entity_type="Part",
            entity_id=str(part.id),
            action="create",
            actor_user_id=actor_user_id,
            after_json={"code": part.code, "name": part.name},
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise errors.AlreadyExists(f"part code {code} already exists") from exc
    return part


def list_parts(db: Session, *, tenant_id: str, search: Optional[str] = None) -> List[models.Part]:
    with _storage_errors():
        query = db.query(models.Part).filter(models.Part.tenant_id == tenant_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    models.Part.code.ilike(pattern),
                    models.Part.part_number.ilike(pattern),
                    models.Part.name.ilike(pattern),
                )
            )
        return query.order_by(models.Part.code.asc()).all()


# ---------------------------------------------------------------------------
# Movements
# ---------------------------------------------------------------------------


def _lock_balance(db: Session, *, tenant_id: str, part_id: int) -> Optional[models.BalanceRecord]:
    """
    Read the balance row under a row lock, bypassing the identity map so the
    projection always starts from the committed value.
    """
    return (
        db.query(models.BalanceRecord)
        .filter(
            models.BalanceRecord.tenant_id == tenant_id,
            models.BalanceRecord.part_id == part_id,
        )
        .options(lazyload(models.BalanceRecord.part))
        .with_for_update(of=models.BalanceRecord)
        .populate_existing()
        .first()
    )


def _resolve_unit_cost(unit_cost: Optional[float], part: models.Part) -> Optional[float]:
    if unit_cost is not None:
        return unit_cost
    if part.cost_price is not None:
        return part.cost_price
    return part.price


def _audit_event(
    db: Session,
    *,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    actor_user_id: Optional[str],
    after_json: dict,
) -> None:
    audit_services.create_audit_event(
        db,
        tenant_id=tenant_id,
        data=audit_schemas.AuditEventCreate(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_user_id=actor_user_id,
            after=after_json,
        ),
    )


def record_movement(
    db: Session,
    *,
    tenant_id: str,
    payload: schemas.MovementCreate,
    actor_user_id: Optional[str],
) -> Tuple[models.LedgerEntry, models.BalanceRecord]:
    """
    Validate a movement, append it to the ledger and update the balance.

    All input checks run before anything is staged. The balance read, the
    ledger insert and the balance update then commit as one transaction.
    """
    with _movement_transaction(db, tenant_id=tenant_id, part_id=payload.part_id):
        quantity, action, source, destination = _validate_movement(
            payload, tenant_id=tenant_id, actor_user_id=actor_user_id
        )
        part = _get_part(db, tenant_id=tenant_id, part_id=payload.part_id)

        balance = _lock_balance(db, tenant_id=tenant_id, part_id=part.id)
        if balance is None:
            balance = projector.empty_balance(tenant_id=tenant_id, part_id=part.id)
            db.add(balance)

        new_balance = projector.project(balance.on_hand_quantity or 0, action, quantity)
        unit_cost = _resolve_unit_cost(payload.unit_cost, part)
        now = _utcnow()

        entry = models.LedgerEntry(
            tenant_id=tenant_id,
            part_id=part.id,
            part_number=part.part_number or part.code,
            action_type=action,
            quantity=quantity,
            source=source,
            destination=destination,
            unit_cost=unit_cost,
            total_value=unit_cost * quantity if unit_cost is not None else None,
            balance_after=new_balance,
            reference_id=payload.reference_id,
            reference_note=payload.reference_note,
            created_by_user_id=actor_user_id,
            created_at=now,
        )
        db.add(entry)
        projector.apply(balance, entry, at=now)
        db.flush()

        _audit_event(
            db,
            tenant_id=tenant_id,
            entity_type="LedgerEntry",
            entity_id=str(entry.id),
            action=action.value.lower(),
            actor_user_id=actor_user_id,
            after_json={
                "part_id": part.id,
                "quantity": quantity,
                "balance_after": new_balance,
            },
        )

    logger.info(
        "Inventory movement recorded",
        extra={
            "tenant_id": tenant_id,
            "part_id": entry.part_id,
            "action_type": action.value,
            "quantity": quantity,
            "balance_after": new_balance,
        },
    )
    return entry, balance


def sync_stock(
    db: Session,
    *,
    tenant_id: str,
    items: List[schemas.SyncItem],
    actor_user_id: Optional[str],
) -> schemas.SyncResult:
    """
    Apply SKU-addressed stock updates from an external system.

    Each item is its own movement; a failing item is reported and the rest
    of the batch still runs.
    """
    result = schemas.SyncResult()
    for item in items:
        sku = (item.sku or "").strip()
        try:
            if not sku or item.quantity is None or not item.action:
                result.errors.append(
                    schemas.SyncFailure(
                        sku=sku or None,
                        error="MissingFields",
                        message="missing required fields: sku, quantity, action",
                    )
                )
                continue
            verb = item.action.strip().upper()
            if verb not in SYNC_ACTIONS:
                raise errors.InvalidActionType(
                    "invalid action, use: " + ", ".join(SYNC_ACTIONS)
                )
            action, source, destination = SYNC_ACTIONS[verb]
            with _storage_errors():
                part = _find_part_by_sku(db, tenant_id=tenant_id, sku=sku)
            entry, _ = record_movement(
                db,
                tenant_id=tenant_id,
                payload=schemas.MovementCreate(
                    part_id=part.id,
                    action_type=action.value,
                    quantity=item.quantity,
                    source=source.value,
                    destination=destination.value,
                    unit_cost=item.unit_cost,
                    reference_note=item.note or f"API sync - {verb}",
                ),
                actor_user_id=actor_user_id,
            )
        except errors.InventoryError as exc:
            if isinstance(exc, errors.StorageUnavailable):
                # Clear the failed lookup so the next item starts clean.
                db.rollback()
            result.errors.append(schemas.SyncFailure(sku=sku, error=exc.kind, message=exc.message))
            continue
        result.successful.append(
            schemas.SyncSuccess(sku=sku, new_balance=entry.balance_after, ledger_entry_id=entry.id)
        )

    if result.errors:
        logger.info(
            "Stock sync finished with errors",
            extra={"tenant_id": tenant_id, "ok": len(result.successful), "failed": len(result.errors)},
        )
    return result


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def clamp_page(value: Any) -> int:
    page = _coerce_int(value)
    if page is None or page < 1:
        return 1
    return page


def clamp_limit(value: Any) -> int:
    limit = _coerce_int(value)
    if limit is None or limit < 1:
        return LEDGER_DEFAULT_LIMIT
    return min(limit, LEDGER_MAX_LIMIT)


def _pagination(*, page: int, limit: int, total: int) -> schemas.Pagination:
    return schemas.Pagination(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
    )


def list_ledger(
    db: Session,
    *,
    tenant_id: str,
    part_id: Optional[int] = None,
    action_type: Optional[str] = None,
    source: Optional[str] = None,
    destination: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: Any = 1,
    limit: Any = None,
    sort_order: str = "desc",
) -> Tuple[List[models.LedgerEntry], schemas.Pagination]:
    page = clamp_page(page)
    limit = clamp_limit(limit)

    query = db.query(models.LedgerEntry).filter(models.LedgerEntry.tenant_id == tenant_id)
    if part_id is not None:
        query = query.filter(models.LedgerEntry.part_id == part_id)
    if action_type:
        query = query.filter(models.LedgerEntry.action_type == projector.parse_action_type(action_type))
    if source:
        query = query.filter(models.LedgerEntry.source == source.strip().upper())
    if destination:
        query = query.filter(models.LedgerEntry.destination == destination.strip().upper())
    if start_date:
        query = query.filter(models.LedgerEntry.created_at >= start_date)
    if end_date:
        query = query.filter(models.LedgerEntry.created_at <= end_date)

    if (sort_order or "").lower() == "asc":
        ordering = (models.LedgerEntry.created_at.asc(), models.LedgerEntry.id.asc())
    else:
        ordering = (models.LedgerEntry.created_at.desc(), models.LedgerEntry.id.desc())

    with _storage_errors():
        total = query.order_by(None).count()
        entries = query.order_by(*ordering).offset((page - 1) * limit).limit(limit).all()
    return entries, _pagination(page=page, limit=limit, total=total)


def get_balance(db: Session, *, tenant_id: str, part_id: int) -> models.BalanceRecord:
    """
    Current balance for a catalogued part; a zero balance (not persisted)
    when the part has never moved.
    """
    with _storage_errors():
        part = _get_part(db, tenant_id=tenant_id, part_id=part_id)
        balance = (
            db.query(models.BalanceRecord)
            .filter(
                models.BalanceRecord.tenant_id == tenant_id,
                models.BalanceRecord.part_id == part.id,
            )
            .first()
        )
    if balance is None:
        return projector.empty_balance(tenant_id=tenant_id, part_id=part.id)
    return balance


def list_balances(
    db: Session,
    *,
    tenant_id: str,
    search: Optional[str] = None,
    low_stock: bool = False,
) -> List[schemas.BalanceWithPartRead]:
    threshold = func.coalesce(models.Part.min_stock_level, LOW_STOCK_THRESHOLD)
    query = (
        db.query(models.BalanceRecord, models.Part)
        .join(models.Part, models.Part.id == models.BalanceRecord.part_id)
        .filter(models.BalanceRecord.tenant_id == tenant_id)
    )
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                models.Part.code.ilike(pattern),
                models.Part.part_number.ilike(pattern),
                models.Part.name.ilike(pattern),
            )
        )
    if low_stock:
        query = query.filter(models.BalanceRecord.on_hand_quantity <= threshold)

    with _storage_errors():
        rows = query.order_by(models.BalanceRecord.updated_at.desc()).all()

    items = []
    for balance, part in rows:
        limit = part.min_stock_level if part.min_stock_level is not None else LOW_STOCK_THRESHOLD
        items.append(
            schemas.BalanceWithPartRead(
                **schemas.BalanceRead.model_validate(balance).model_dump(),
                part_code=part.code,
                part_name=part.name,
                min_stock_level=part.min_stock_level,
                is_low_stock=balance.on_hand_quantity <= limit,
            )
        )
    return items


def summarize_ledger(
    db: Session,
    *,
    tenant_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> schemas.LedgerSummary:
    end_date = end_date or _utcnow()
    start_date = start_date or end_date - timedelta(days=SUMMARY_WINDOW_DAYS)

    with _storage_errors():
        rows = (
            db.query(
                models.LedgerEntry.action_type,
                func.count(models.LedgerEntry.id),
                func.coalesce(func.sum(models.LedgerEntry.quantity), 0),
                func.coalesce(func.sum(models.LedgerEntry.total_value), 0.0),
            )
            .filter(
                models.LedgerEntry.tenant_id == tenant_id,
                models.LedgerEntry.created_at >= start_date,
                models.LedgerEntry.created_at <= end_date,
            )
            .group_by(models.LedgerEntry.action_type)
            .all()
        )

    actions = {
        action.value: schemas.ActionSummary(
            count=count,
            total_quantity=int(total_quantity),
            total_value=float(total_value),
        )
        for action, count, total_quantity, total_value in rows
    }
    return schemas.LedgerSummary(start_date=start_date, end_date=end_date, actions=actions)


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


def verify_balance(db: Session, *, tenant_id: str, part_id: int) -> schemas.BalanceVerification:
    """
    Replay the full history of one part and compare it with the cached
    `balance_after` snapshots and the materialised on-hand quantity.
    """
    balance = get_balance(db, tenant_id=tenant_id, part_id=part_id)
    with _storage_errors():
        entries = (
            db.query(models.LedgerEntry)
            .filter(
                models.LedgerEntry.tenant_id == tenant_id,
                models.LedgerEntry.part_id == part_id,
            )
            .order_by(models.LedgerEntry.id.asc())
            .all()
        )

    running = 0
    mismatched: List[int] = []
    for entry in entries:
        running += projector.signed_delta(entry.action_type, entry.quantity)
        if running < 0 or entry.balance_after != running:
            mismatched.append(entry.id)

    on_hand = balance.on_hand_quantity or 0
    report = schemas.BalanceVerification(
        tenant_id=tenant_id,
        part_id=part_id,
        consistent=not mismatched and running == on_hand,
        on_hand=on_hand,
        folded=running,
        entry_count=len(entries),
        mismatched_entry_ids=mismatched,
    )
    if not report.consistent:
        logger.warning(
            "Inventory ledger drift detected",
            extra={
                "tenant_id": tenant_id,
                "part_id": part_id,
                "on_hand": on_hand,
                "folded": running,
                "mismatched": len(mismatched),
            },
        )
    return report


def verify_all_balances(db: Session, *, tenant_id: Optional[str] = None) -> List[schemas.BalanceVerification]:
    query = db.query(models.BalanceRecord.tenant_id, models.BalanceRecord.part_id)
    if tenant_id:
        query = query.filter(models.BalanceRecord.tenant_id == tenant_id)
    with _storage_errors():
        keys = query.order_by(models.BalanceRecord.tenant_id, models.BalanceRecord.part_id).all()
    return [verify_balance(db, tenant_id=t_id, part_id=p_id) for t_id, p_id in keys]
