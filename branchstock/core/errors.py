"""
Typed errors raised by the inventory ledger.

Every error carries a machine-readable ``code`` and structured attributes so
callers (the HTTP layer, scripts, tests) branch on the type and read the
fields instead of parsing messages.

    InventoryError
    +-- InsufficientStockError
    +-- InvalidArgumentError
    |   +-- InvalidStateError
    +-- NotFoundError
    +-- ConcurrencyConflictError
    +-- InvariantViolationError
        +-- AuditLogImmutableError
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from uuid import UUID


class InventoryError(Exception):
    """Base class for every ledger error."""

    code: str = "INVENTORY_ERROR"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


@dataclass(frozen=True)
class StockShortage:
    item_id: UUID
    item_name: str
    required: Decimal
    available: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.required - self.available

    def describe(self) -> str:
        return f"{self.item_name} (Required: {self.required}, Available: {self.available})"


class InsufficientStockError(InventoryError):
    """Available stock is below the requested amount for one or more items."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, shortages: List[StockShortage]):
        self.shortages = list(shortages)
        super().__init__(
            "Insufficient stock for: " + "; ".join(s.describe() for s in self.shortages) + "."
        )

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["shortages"] = [
            {
                "item_id": str(s.item_id),
                "item_name": s.item_name,
                "required": str(s.required),
                "available": str(s.available),
                "shortfall": str(s.shortfall),
            }
            for s in self.shortages
        ]
        return out


class InvalidArgumentError(InventoryError):
    """Input rejected by a business rule."""

    code: str = "INVALID_ARGUMENT"

    def __init__(self, message: str, *, field: Optional[str] = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict:
        out = super().to_dict()
        if self.field:
            out["field"] = self.field
        return out


class InvalidStateError(InvalidArgumentError):
    """The entity is not in a state that allows the operation."""

    code: str = "INVALID_STATE"


class NotFoundError(InventoryError):
    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["entity"] = self.entity
        out["entity_id"] = str(self.entity_id)
        return out


class ConcurrencyConflictError(InventoryError):
    """A locked recheck disagreed with what the caller saw earlier. Retryable."""

    code: str = "CONCURRENCY_CONFLICT"
    retryable: bool = True


class InvariantViolationError(InventoryError):
    """A ledger invariant failed. Never expected in correct operation."""

    code: str = "INVARIANT_VIOLATION"


class AuditLogImmutableError(InvariantViolationError):
    code: str = "AUDIT_LOG_IMMUTABLE"

    def __init__(self, log_id, operation: str):
        self.log_id = log_id
        self.operation = operation
        super().__init__(f"Inventory log {log_id} is append-only; {operation} refused")
