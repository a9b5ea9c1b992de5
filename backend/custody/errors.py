"""
Typed errors for the custody ledger.

Every error carries a machine-readable ``code`` and the HTTP status a route
should answer with. Callers catch by type, never by message.

    LedgerError
    +-- NotFoundError              NOT_FOUND                404
    +-- InsufficientStockError     INSUFFICIENT_STOCK       409
    +-- InvalidStateError          INVALID_STATE            409
    |   +-- ConcurrencyConflictError  CONCURRENT_MODIFICATION  409
    +-- EngineUnavailableError     ENGINE_UNAVAILABLE       503

NotFound / InsufficientStock / InvalidState are expected outcomes: the engine
raises them inside a unit of work to abort it, then hands them back to the
caller inside a ``LedgerResult``. EngineUnavailable is raised to the caller.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all custody ledger errors."""

    code: str = "LEDGER_ERROR"
    http_status: int = 400

    def __init__(self, message: str, **data: Any):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.data:
            payload["details"] = self.data
        return payload


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStockError(LedgerError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, warehouse_id: Any, available: int, requested: int):
        super().__init__(
            "Giving warehouse has no enough stock",
            warehouse_id=warehouse_id,
            available=available,
            requested=requested,
        )
        self.warehouse_id = warehouse_id
        self.available = available
        self.requested = requested


class InvalidStateError(LedgerError):
    code = "INVALID_STATE"
    http_status = 409


class ConcurrencyConflictError(InvalidStateError):
    """A concurrent writer changed the same rows and retries were exhausted."""

    code = "CONCURRENT_MODIFICATION"


class EngineUnavailableError(LedgerError):
    """Store or transaction infrastructure failed; nothing was written."""

    code = "ENGINE_UNAVAILABLE"
    http_status = 503
