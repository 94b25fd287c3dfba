"""
Inventory error kinds.

Services raise these; routers turn them into HTTP responses. `kind` is the
stable identifier clients switch on, the message says which rule failed.
"""

from __future__ import annotations

from fastapi import status


class InventoryError(Exception):
    kind = "InventoryError"
    status_code = status.HTTP_400_BAD_REQUEST
    # Transient errors are safe for the caller to resubmit unchanged.
    transient = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidQuantity(InventoryError):
    kind = "InvalidQuantity"


class InvalidActionType(InventoryError):
    kind = "InvalidActionType"


class MissingLocation(InventoryError):
    kind = "MissingLocation"


class InsufficientStock(InventoryError):
    kind = "InsufficientStock"

    def __init__(self, available: int, requested: int) -> None:
        super().__init__(f"insufficient inventory, available: {available}")
        self.available = available
        self.requested = requested


class ConcurrentModification(InventoryError):
    kind = "ConcurrentModification"
    status_code = status.HTTP_409_CONFLICT
    transient = True


class NotAuthorized(InventoryError):
    kind = "NotAuthorized"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(InventoryError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class StorageUnavailable(InventoryError):
    kind = "StorageUnavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    transient = True


class AlreadyExists(InventoryError):
    kind = "AlreadyExists"
    status_code = status.HTTP_409_CONFLICT
