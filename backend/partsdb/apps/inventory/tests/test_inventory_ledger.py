from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from partsdb.apps.accounts import models as account_models
from partsdb.apps.accounts import services as account_services
from partsdb.apps.audit import models as audit_models
from partsdb.apps.inventory import errors
from partsdb.apps.inventory import models as inventory_models
from partsdb.apps.inventory import projector
from partsdb.apps.inventory import schemas as inventory_schemas
from partsdb.apps.inventory import services as inventory_services


def _create_tenant(db, code: str = "ACME") -> account_models.Tenant:
    tenant = account_services.create_tenant(db, code=code, name=f"{code} Brand")
    db.commit()
    return tenant


def _create_user(db, tenant_id: str, email: str = "stock@example.com") -> account_models.User:
    user = account_services.create_user(
        db,
        tenant_id=tenant_id,
        email=email,
        full_name="Stock Keeper",
        role=account_models.AccountRole.BRAND_STAFF,
    )
    db.commit()
    return user


def _create_part(db, tenant_id: str, code: str = "BP-100", **kwargs) -> inventory_models.Part:
    return inventory_services.create_part(
        db,
        tenant_id=tenant_id,
        payload=inventory_schemas.PartCreate(code=code, name=f"Part {code}", **kwargs),
        actor_user_id=None,
    )


def _move(db, tenant_id, user_id, part_id, action_type, quantity, **kwargs):
    payload = inventory_schemas.MovementCreate(
        part_id=part_id,
        action_type=action_type,
        quantity=quantity,
        source=kwargs.pop("source", "SYSTEM"),
        destination=kwargs.pop("destination", "BRAND"),
        **kwargs,
    )
    return inventory_services.record_movement(
        db,
        tenant_id=tenant_id,
        payload=payload,
        actor_user_id=user_id,
    )


@pytest.fixture()
def stock(db_session):
    tenant = _create_tenant(db_session)
    user = _create_user(db_session, tenant.id)
    part = _create_part(db_session, tenant.id)
    return db_session, tenant, user, part


def _entry_count(db) -> int:
    return db.query(inventory_models.LedgerEntry).count()


def test_movement_sequence_tracks_balance_and_rejects_overdraw(stock):
    db, tenant, user, part = stock

    entry, balance = _move(db, tenant.id, user.id, part.id, "ADD", 50)
    assert entry.balance_after == 50
    assert balance.on_hand_quantity == 50

    entry, balance = _move(
        db, tenant.id, user.id, part.id, "TRANSFER_OUT", 20, source="BRAND", destination="SERVICE_CENTER"
    )
    assert entry.balance_after == 30
    assert balance.on_hand_quantity == 30

    with pytest.raises(errors.InsufficientStock) as exc:
        _move(db, tenant.id, user.id, part.id, "CONSUMED", 35, source="BRAND", destination="CUSTOMER")
    assert exc.value.available == 30
    assert exc.value.message == "insufficient inventory, available: 30"

    current = inventory_services.get_balance(db, tenant_id=tenant.id, part_id=part.id)
    assert current.on_hand_quantity == 30
    assert _entry_count(db) == 2


def test_zero_quantity_is_rejected_without_writing(stock):
    db, tenant, user, part = stock

    with pytest.raises(errors.InvalidQuantity):
        _move(db, tenant.id, user.id, part.id, "ADD", 0)

    assert _entry_count(db) == 0
    assert db.query(inventory_models.BalanceRecord).count() == 0


@pytest.mark.parametrize("quantity", [-5, 2.5, None, True, False, "5", "abc", []])
def test_non_positive_or_fractional_quantity_is_rejected(stock, quantity):
    db, tenant, user, part = stock

    with pytest.raises(errors.InvalidQuantity):
        _move(db, tenant.id, user.id, part.id, "ADD", quantity)
    assert _entry_count(db) == 0


def test_integral_float_quantity_is_accepted(stock):
    db, tenant, user, part = stock

    entry, _ = _move(db, tenant.id, user.id, part.id, "ADD", 4.0)
    assert entry.quantity == 4


@pytest.mark.parametrize("action_type", ["SCRAP", "add", "", None, 5, ["ADD"]])
def test_unknown_action_type_is_rejected(stock, action_type):
    db, tenant, user, part = stock

    with pytest.raises(errors.InvalidActionType):
        _move(db, tenant.id, user.id, part.id, action_type, 5)
    assert _entry_count(db) == 0


def test_blank_location_is_rejected(stock):
    db, tenant, user, part = stock

    with pytest.raises(errors.MissingLocation):
        _move(db, tenant.id, user.id, part.id, "ADD", 5, source="   ")
    with pytest.raises(errors.MissingLocation):
        _move(db, tenant.id, user.id, part.id, "ADD", 5, destination=None)
    assert _entry_count(db) == 0


def test_locations_are_normalised(stock):
    db, tenant, user, part = stock

    entry, _ = _move(db, tenant.id, user.id, part.id, "ADD", 5, source=" supplier ", destination="brand")
    assert entry.source == "SUPPLIER"
    assert entry.destination == "BRAND"


def test_movement_requires_actor(stock):
    db, tenant, _, part = stock

    with pytest.raises(errors.NotAuthorized):
        _move(db, tenant.id, None, part.id, "ADD", 5)
    assert _entry_count(db) == 0


def test_unknown_part_is_not_found(stock):
    db, tenant, user, _ = stock

    with pytest.raises(errors.NotFound):
        _move(db, tenant.id, user.id, 9999, "ADD", 5)
    with pytest.raises(errors.NotFound):
        inventory_services.get_balance(db, tenant_id=tenant.id, part_id=9999)


def test_rejected_movement_can_be_resubmitted_with_same_outcome(stock):
    db, tenant, user, part = stock
    _move(db, tenant.id, user.id, part.id, "ADD", 3)

    for _ in range(2):
        with pytest.raises(errors.InsufficientStock):
            _move(db, tenant.id, user.id, part.id, "CONSUMED", 4, source="BRAND", destination="CUSTOMER")

    assert _entry_count(db) == 1
    assert inventory_services.get_balance(db, tenant_id=tenant.id, part_id=part.id).on_hand_quantity == 3


def test_balance_defaults_to_zero_for_unmoved_part(stock):
    db, tenant, _, part = stock

    balance = inventory_services.get_balance(db, tenant_id=tenant.id, part_id=part.id)
    assert balance.on_hand_quantity == 0
    assert balance.available_quantity == 0
    assert db.query(inventory_models.BalanceRecord).count() == 0


def test_replaying_ledger_matches_balance(stock):
    db, tenant, user, part = stock
    sequence = [
        ("ADD", 40, "SYSTEM", "BRAND"),
        ("TRANSFER_OUT", 15, "BRAND", "DISTRIBUTOR"),
        ("TRANSFER_IN", 5, "DISTRIBUTOR", "BRAND"),
        ("CONSUMED", 12, "BRAND", "CUSTOMER"),
        ("REVERSE_OUT", 3, "BRAND", "SYSTEM"),
        ("REVERSE_IN", 2, "CUSTOMER", "BRAND"),
    ]
    for action_type, quantity, source, destination in sequence:
        _move(db, tenant.id, user.id, part.id, action_type, quantity, source=source, destination=destination)

    entries = (
        db.query(inventory_models.LedgerEntry)
        .filter(inventory_models.LedgerEntry.part_id == part.id)
        .order_by(inventory_models.LedgerEntry.id.asc())
        .all()
    )
    balance = inventory_services.get_balance(db, tenant_id=tenant.id, part_id=part.id)
    assert projector.fold(entries) == balance.on_hand_quantity == 17
    assert entries[-1].balance_after == 17

    report = inventory_services.verify_balance(db, tenant_id=tenant.id, part_id=part.id)
    assert report.consistent is True
    assert report.entry_count == 6


def test_balance_keeps_restock_issue_and_cost_details(stock):
    db, tenant, user, _ = stock
    part = _create_part(db, tenant.id, code="BP-200", cost_price=2.5, price=4.0)

    entry, balance = _move(db, tenant.id, user.id, part.id, "ADD", 10)
    assert entry.unit_cost == 2.5
    assert entry.total_value == 25.0
    assert balance.last_restocked_at is not None
    assert balance.last_issued_at is None
    assert balance.last_cost == 2.5

    entry, balance = _move(
        db, tenant.id, user.id, part.id, "CONSUMED", 4, source="BRAND", destination="CUSTOMER", unit_cost=3.0
    )
    assert entry.total_value == 12.0
    assert balance.last_issued_at is not None
    assert balance.last_cost == 3.0


def test_available_quantity_excludes_held_stock(stock):
    db, tenant, user, part = stock
    _move(db, tenant.id, user.id, part.id, "ADD", 10)

    record = db.query(inventory_models.BalanceRecord).one()
    record.reserved_quantity = 3
    record.quarantine_quantity = 2
    db.commit()

    _, balance = _move(db, tenant.id, user.id, part.id, "ADD", 1)
    assert balance.on_hand_quantity == 11
    assert balance.available_quantity == 6


def test_movement_writes_audit_event(stock):
    db, tenant, user, part = stock

    entry, _ = _move(db, tenant.id, user.id, part.id, "ADD", 7, reference_id="PO-1")

    event = (
        db.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.entity_type == "LedgerEntry")
        .one()
    )
    assert event.entity_id == str(entry.id)
    assert event.action == "add"
    assert event.actor_user_id == user.id
    assert event.after["balance_after"] == 7


def test_duplicate_part_code_is_rejected(stock):
    db, tenant, _, _ = stock

    with pytest.raises(errors.AlreadyExists):
        _create_part(db, tenant.id, code="bp-100")


def test_ledger_pagination_returns_requested_window(stock):
    db, tenant, user, part = stock
    created = [_move(db, tenant.id, user.id, part.id, "ADD", 1)[0] for _ in range(25)]

    entries, pagination = inventory_services.list_ledger(
        db, tenant_id=tenant.id, page=2, limit=10
    )

    # Newest first: page two holds the 11th to 20th most recent entries.
    assert [e.id for e in entries] == [created[i].id for i in range(14, 4, -1)]
    assert pagination.model_dump() == {"page": 2, "limit": 10, "total": 25, "pages": 3}

    oldest_first, _ = inventory_services.list_ledger(
        db, tenant_id=tenant.id, page=1, limit=3, sort_order="asc"
    )
    assert [e.id for e in oldest_first] == [c.id for c in created[:3]]


@pytest.mark.parametrize(
    "page,limit,expected_page,expected_limit",
    [
        (0, 0, 1, 50),
        (-3, 1000, 1, 200),
        ("abc", "xyz", 1, 50),
        (None, None, 1, 50),
        ("4", "25", 4, 25),
    ],
)
def test_ledger_paging_inputs_are_clamped(stock, page, limit, expected_page, expected_limit):
    db, tenant, _, _ = stock

    entries, pagination = inventory_services.list_ledger(db, tenant_id=tenant.id, page=page, limit=limit)
    assert entries == []
    assert pagination.page == expected_page
    assert pagination.limit == expected_limit
    assert pagination.total == 0
    assert pagination.pages == 0


def test_ledger_filters(stock):
    db, tenant, user, part = stock
    other = _create_part(db, tenant.id, code="BP-300")
    _move(db, tenant.id, user.id, part.id, "ADD", 10)
    _move(db, tenant.id, user.id, part.id, "TRANSFER_OUT", 4, source="BRAND", destination="DISTRIBUTOR")
    _move(db, tenant.id, user.id, other.id, "ADD", 6)

    by_part, page = inventory_services.list_ledger(db, tenant_id=tenant.id, part_id=part.id)
    assert page.total == 2
    assert {e.part_id for e in by_part} == {part.id}

    outbound, _ = inventory_services.list_ledger(db, tenant_id=tenant.id, action_type="TRANSFER_OUT")
    assert [e.quantity for e in outbound] == [4]

    to_distributor, _ = inventory_services.list_ledger(db, tenant_id=tenant.id, destination="distributor")
    assert len(to_distributor) == 1

    future, _ = inventory_services.list_ledger(
        db,
        tenant_id=tenant.id,
        start_date=datetime.now(timezone.utc) + timedelta(days=1),
    )
    assert future == []

    with pytest.raises(errors.InvalidActionType):
        inventory_services.list_ledger(db, tenant_id=tenant.id, action_type="SCRAP")


def test_tenants_are_isolated(db_session):
    acme = _create_tenant(db_session, "ACME")
    globex = _create_tenant(db_session, "GLOBEX")
    acme_user = _create_user(db_session, acme.id, "a@acme.example")
    globex_user = _create_user(db_session, globex.id, "g@globex.example")
    part = _create_part(db_session, acme.id)
    _move(db_session, acme.id, acme_user.id, part.id, "ADD", 12)

    with pytest.raises(errors.NotFound):
        _move(db_session, globex.id, globex_user.id, part.id, "ADD", 1)
    with pytest.raises(errors.NotFound):
        inventory_services.get_balance(db_session, tenant_id=globex.id, part_id=part.id)

    entries, pagination = inventory_services.list_ledger(db_session, tenant_id=globex.id)
    assert entries == []
    assert pagination.total == 0
    assert inventory_services.list_balances(db_session, tenant_id=globex.id) == []

    # Same part code may exist under another tenant.
    globex_part = _create_part(db_session, globex.id)
    assert globex_part.id != part.id
    assert inventory_services.get_balance(
        db_session, tenant_id=acme.id, part_id=part.id
    ).on_hand_quantity == 12


def test_ledger_summary_groups_by_action(stock):
    db, tenant, user, _ = stock
    part = _create_part(db, tenant.id, code="BP-400", cost_price=1.5)
    _move(db, tenant.id, user.id, part.id, "ADD", 10)
    _move(db, tenant.id, user.id, part.id, "ADD", 5)
    _move(db, tenant.id, user.id, part.id, "CONSUMED", 6, source="BRAND", destination="CUSTOMER")

    summary = inventory_services.summarize_ledger(db, tenant_id=tenant.id)

    assert summary.end_date - summary.start_date == timedelta(days=30)
    assert summary.actions["ADD"].count == 2
    assert summary.actions["ADD"].total_quantity == 15
    assert summary.actions["ADD"].total_value == 22.5
    assert summary.actions["CONSUMED"].total_quantity == 6
    assert "TRANSFER_OUT" not in summary.actions


def test_list_balances_flags_low_stock(stock):
    db, tenant, user, part = stock
    bolt = _create_part(db, tenant.id, code="BOLT-1", min_stock_level=20)
    _move(db, tenant.id, user.id, part.id, "ADD", 50)
    _move(db, tenant.id, user.id, bolt.id, "ADD", 15)

    balances = inventory_services.list_balances(db, tenant_id=tenant.id)
    assert {b.part_code: b.is_low_stock for b in balances} == {"BP-100": False, "BOLT-1": True}

    low = inventory_services.list_balances(db, tenant_id=tenant.id, low_stock=True)
    assert [b.part_code for b in low] == ["BOLT-1"]

    found = inventory_services.list_balances(db, tenant_id=tenant.id, search="bolt")
    assert [b.part_id for b in found] == [bolt.id]


def test_verify_balance_reports_drift(stock):
    db, tenant, user, part = stock
    entry, _ = _move(db, tenant.id, user.id, part.id, "ADD", 10)

    record = db.query(inventory_models.BalanceRecord).one()
    record.on_hand_quantity = 7
    db.commit()

    report = inventory_services.verify_balance(db, tenant_id=tenant.id, part_id=part.id)
    assert report.consistent is False
    assert report.on_hand == 7
    assert report.folded == 10
    assert report.mismatched_entry_ids == []

    entry.balance_after = 99
    db.commit()
    report = inventory_services.verify_balance(db, tenant_id=tenant.id, part_id=part.id)
    assert report.mismatched_entry_ids == [entry.id]

    reports = inventory_services.verify_all_balances(db)
    assert [(r.tenant_id, r.part_id, r.consistent) for r in reports] == [(tenant.id, part.id, False)]


def test_sync_stock_applies_items_and_collects_errors(stock):
    db, tenant, user, part = stock
    items = [
        inventory_schemas.SyncItem(sku="bp-100", quantity=8, action="restock"),
        inventory_schemas.SyncItem(sku="BP-100", quantity=3, action="SCRAP", note="damaged"),
        inventory_schemas.SyncItem(sku="BP-100", quantity=50, action="CONSUMED"),
        inventory_schemas.SyncItem(sku="BP-100", quantity=1, action="LEND"),
        inventory_schemas.SyncItem(sku="NOPE-1", quantity=1, action="ADD"),
        inventory_schemas.SyncItem(quantity=1, action="ADD"),
    ]

    result = inventory_services.sync_stock(db, tenant_id=tenant.id, items=items, actor_user_id=user.id)

    assert [(s.sku, s.new_balance) for s in result.successful] == [("bp-100", 8), ("BP-100", 5)]
    assert [f.error for f in result.errors] == [
        "InsufficientStock",
        "InvalidActionType",
        "NotFound",
        "MissingFields",
    ]

    scrap = db.query(inventory_models.LedgerEntry).filter(
        inventory_models.LedgerEntry.id == result.successful[1].ledger_entry_id
    ).one()
    assert scrap.action_type == inventory_models.LedgerActionTypeEnum.CONSUMED
    assert scrap.reference_note == "damaged"
    assert inventory_services.get_balance(db, tenant_id=tenant.id, part_id=part.id).on_hand_quantity == 5


def test_sync_stock_collects_storage_failure_and_continues(stock, monkeypatch):
    db, tenant, user, part = stock
    real_lookup = inventory_services._find_part_by_sku

    def flaky_lookup(db, *, tenant_id, sku):
        if sku == "FLAKY-1":
            raise OperationalError("SELECT inventory_parts", {}, Exception("server closed the connection unexpectedly"))
        return real_lookup(db, tenant_id=tenant_id, sku=sku)

    monkeypatch.setattr(inventory_services, "_find_part_by_sku", flaky_lookup)
    items = [
        inventory_schemas.SyncItem(sku="FLAKY-1", quantity=1, action="ADD"),
        inventory_schemas.SyncItem(sku="BP-100", quantity=6, action="ADD"),
        inventory_schemas.SyncItem(sku="BP-100", quantity=True, action="ADD"),
    ]

    result = inventory_services.sync_stock(db, tenant_id=tenant.id, items=items, actor_user_id=user.id)

    assert [(f.sku, f.error) for f in result.errors] == [
        ("FLAKY-1", "StorageUnavailable"),
        ("BP-100", "InvalidQuantity"),
    ]
    assert [(s.sku, s.new_balance) for s in result.successful] == [("BP-100", 6)]
    assert inventory_services.get_balance(db, tenant_id=tenant.id, part_id=part.id).on_hand_quantity == 6
