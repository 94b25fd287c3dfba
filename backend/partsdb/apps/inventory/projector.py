"""
Balance projection: the direction rule and how a movement changes a balance.

Pure functions over ORM rows; nothing here touches the session.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Union

from . import errors, models

Action = models.LedgerActionTypeEnum

INBOUND_ACTIONS = frozenset({Action.ADD, Action.TRANSFER_IN, Action.REVERSE_IN})
OUTBOUND_ACTIONS = frozenset({Action.TRANSFER_OUT, Action.REVERSE_OUT, Action.CONSUMED})


def parse_action_type(value: Union[str, Action, None]) -> Action:
    if isinstance(value, Action):
        return value
    try:
        return Action(value)
    except (TypeError, ValueError):
        allowed = ", ".join(a.value for a in Action)
        raise errors.InvalidActionType(
            f"invalid action type {value!r}, must be one of: {allowed}"
        )


def signed_delta(action_type: Union[str, Action], quantity: int) -> int:
    action = parse_action_type(action_type)
    if action in INBOUND_ACTIONS:
        return quantity
    if action in OUTBOUND_ACTIONS:
        return -quantity
    raise errors.InvalidActionType(f"no direction defined for {action.value}")


def project(on_hand: int, action_type: Union[str, Action], quantity: int) -> int:
    """Return the on-hand quantity after the movement, or raise InsufficientStock."""
    new_balance = on_hand + signed_delta(action_type, quantity)
    if new_balance < 0:
        raise errors.InsufficientStock(available=on_hand, requested=quantity)
    return new_balance


def fold(entries: Iterable[models.LedgerEntry]) -> int:
    """Replay entries (in commit order) from zero."""
    total = 0
    for entry in entries:
        total += signed_delta(entry.action_type, entry.quantity)
    return total


def available(balance: models.BalanceRecord) -> int:
    held = (
        (balance.reserved_quantity or 0)
        + (balance.defective_quantity or 0)
        + (balance.quarantine_quantity or 0)
    )
    return max((balance.on_hand_quantity or 0) - held, 0)


def apply(
    balance: models.BalanceRecord,
    entry: models.LedgerEntry,
    *,
    at: Optional[datetime] = None,
) -> models.BalanceRecord:
    at = at or entry.created_at
    balance.on_hand_quantity = entry.balance_after
    balance.available_quantity = available(balance)
    if entry.action_type in INBOUND_ACTIONS:
        balance.last_restocked_at = at
    else:
        balance.last_issued_at = at
    if entry.unit_cost is not None:
        balance.last_cost = entry.unit_cost
    balance.updated_at = at
    return balance


def empty_balance(*, tenant_id: str, part_id: int) -> models.BalanceRecord:
    return models.BalanceRecord(
        tenant_id=tenant_id,
        part_id=part_id,
        on_hand_quantity=0,
        available_quantity=0,
        reserved_quantity=0,
        defective_quantity=0,
        quarantine_quantity=0,
    )
