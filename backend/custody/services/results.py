# Overview: Typed result values returned by the ledger engine and custody workflow.

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Generic, Optional, TypeVar

from ..errors import LedgerError

T = TypeVar("T")

WARNING_NO_ACTIVE_TRANSFER = "NO_ACTIVE_TRANSFER"


@dataclass(frozen=True)
class LedgerResult(Generic[T]):
    """
    Outcome of a public ledger/workflow operation.

    Contract:
        Either carries a value (ok=True) or an error (ok=False), never both.
        Expected failures (NotFound, InsufficientStock, InvalidState) come
        back here instead of being raised; warnings flag tolerated drift on
        an otherwise successful operation.
    """

    ok: bool
    value: T | None = None
    error: LedgerError | None = None
    warnings: tuple[str, ...] = ()

    @classmethod
    def success(cls, value: T, warnings: tuple[str, ...] | list[str] = ()) -> "LedgerResult[T]":
        return cls(ok=True, value=value, warnings=tuple(warnings))

    @classmethod
    def failure(cls, error: LedgerError) -> "LedgerResult[T]":
        return cls(ok=False, error=error)

    def to_dict(self) -> dict:
        if not self.ok:
            return self.error.to_dict()
        value = self.value
        if isinstance(value, list):
            payload = [v.to_dict() for v in value]
        else:
            payload = value.to_dict() if hasattr(value, "to_dict") else value
        if self.warnings:
            payload = {"data": payload, "warnings": list(self.warnings)}
        return payload


@dataclass(frozen=True)
class ReturnOutcome:
    """AddRecord written by a return, plus the TransferRecord it closed (if any)."""

    add_record: Any
    closed_transfer: Any = None

    def to_dict(self) -> dict:
        return {
            "add_record": self.add_record.to_dict(),
            "closed_transfer": self.closed_transfer.to_dict() if self.closed_transfer else None,
        }


@dataclass
class ReconcileSummary:
    total_items: int = 0
    updated_to_person: int = 0
    updated_to_warehouse: int = 0
    already_correct: int = 0
    failed_item_ids: list[int] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return self.updated_to_person + self.updated_to_warehouse

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UnassignSummary:
    total_assigned_items: int = 0
    items_with_transfer_records: int = 0
    items_unassigned: int = 0
    people_updated: int = 0
    warehouses_updated: int = 0
    items_without_warehouse: list[int] = field(default_factory=list)
    failed_item_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IntegrityReport:
    """Read-only snapshot of ledger vs counter drift."""

    total_items: int = 0
    person_held_without_transfer: list[int] = field(default_factory=list)
    warehouse_held_with_transfer: list[int] = field(default_factory=list)
    multiple_active_transfers: list[int] = field(default_factory=list)
    assignee_mismatch: list[int] = field(default_factory=list)
    person_counter_drift: list[dict] = field(default_factory=list)
    warehouse_stock: list[dict] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not (
            self.person_held_without_transfer
            or self.warehouse_held_with_transfer
            or self.multiple_active_transfers
            or self.assignee_mismatch
            or self.person_counter_drift
        )

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["is_consistent"] = self.is_consistent
        return payload


OUTCOME_RETURNED = "returned"
OUTCOME_REVOKED = "revoked"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class ItemOutcome:
    """Per-entry result of a demobilization checklist line."""

    id: Any
    kind: str
    status: str
    reason: str | None = None
    add_record_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status,
            "reason": self.reason,
            "addRecordId": self.add_record_id,
        }


@dataclass(frozen=True)
class DemobOutcome:
    record: Any
    outcomes: tuple[ItemOutcome, ...]

    @property
    def failures(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.status == OUTCOME_FAILED]

    def to_dict(self) -> dict:
        return {
            "record": self.record.to_dict(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass(frozen=True)
class TaskTransition:
    """An offboarding task after a status change, with any side effect it triggered."""

    task: Any
    previous_status: str
    return_outcome: Optional[ReturnOutcome] = None
    revoked_access: Any = None

    @property
    def changed(self) -> bool:
        return self.task.status != self.previous_status

    def to_dict(self) -> dict:
        return {
            "task": self.task.to_dict(),
            "previous_status": self.previous_status,
            "return": self.return_outcome.to_dict() if self.return_outcome else None,
            "revoked_access": self.revoked_access.to_dict() if self.revoked_access else None,
        }
