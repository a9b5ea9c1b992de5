# Overview: Pure custody rules; validates a requested change against snapshots and computes the writes.

"""
Ledger Rules -- pure functional core for custody changes.

No database access, no clock. Callers read current state through the
EntityStore, freeze it into ItemState / HolderState snapshots, and get back
a LedgerPlan (counter changes plus the new custody of the item) or a typed
LedgerError. The engine applies a plan inside one unit of work.

STOCK CHECK:
    strict=True  -> available must EXCEED requested (stock == requested is insufficient)
    strict=False -> available must be at least requested

COUNTER RULES:
    assign:   warehouse -= q, person += q, item -> person custody
    return:   item.quantity += q, person = max(0, person - q), warehouse += q,
              item -> warehouse custody
    transfer: giving -= q, receiving += q, item stays in warehouse custody
    add:      item.quantity += q, warehouse += q
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..errors import InsufficientStockError, InvalidStateError
from ..models.master_data import LOCATION_PERSON, LOCATION_WAREHOUSE


@dataclass(frozen=True)
class ItemState:
    id: int
    quantity: int
    location_type: str
    assignee_id: Optional[int]
    warehouse_id: Optional[int]

    @classmethod
    def from_model(cls, item) -> "ItemState":
        return cls(
            id=item.id,
            quantity=item.quantity or 0,
            location_type=item.current_location_type,
            assignee_id=item.assigned_to_person_id,
            warehouse_id=item.warehouse_id,
        )

    @property
    def person_held(self) -> bool:
        return self.location_type == LOCATION_PERSON


@dataclass(frozen=True)
class HolderState:
    """A person or a warehouse, as far as the counters are concerned."""

    id: int
    stock_qty: int

    @classmethod
    def from_model(cls, holder) -> "HolderState":
        return cls(id=holder.id, stock_qty=holder.stock_qty or 0)


@dataclass(frozen=True)
class CustodyChange:
    location_type: str
    assignee_id: Optional[int]
    warehouse_id: Optional[int]


@dataclass(frozen=True)
class LedgerPlan:
    item_id: int
    item_quantity: int
    custody: CustodyChange
    warehouse_stock: dict[int, int] = field(default_factory=dict)
    person_stock: dict[int, int] = field(default_factory=dict)


def ensure_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidStateError("Quantity must be a positive integer", quantity=quantity)
    return quantity


def check_sufficient_stock(warehouse: HolderState, requested: int, *, strict: bool = True) -> None:
    """
    Raise InsufficientStockError unless the warehouse can give `requested`.

    Strict mode keeps the historical rule that a warehouse holding exactly
    the requested quantity cannot give it.
    """
    available = warehouse.stock_qty
    enough = available > requested if strict else available >= requested
    if not enough:
        raise InsufficientStockError(warehouse.id, available, requested)


def plan_assign(
    item: ItemState,
    person: HolderState,
    warehouse: HolderState,
    quantity: int,
    *,
    strict: bool = True,
) -> LedgerPlan:
    ensure_positive_quantity(quantity)
    if item.person_held:
        raise InvalidStateError(
            f"Item {item.id} is already assigned to person {item.assignee_id}",
            item_id=item.id,
            assigned_to_person_id=item.assignee_id,
        )
    check_sufficient_stock(warehouse, quantity, strict=strict)

    return LedgerPlan(
        item_id=item.id,
        item_quantity=item.quantity,
        custody=CustodyChange(
            location_type=LOCATION_PERSON,
            assignee_id=person.id,
            warehouse_id=item.warehouse_id if item.warehouse_id is not None else warehouse.id,
        ),
        warehouse_stock={warehouse.id: warehouse.stock_qty - quantity},
        person_stock={person.id: person.stock_qty + quantity},
    )


def plan_return(
    item: ItemState,
    person: HolderState,
    warehouse: HolderState,
    quantity: int,
) -> LedgerPlan:
    """
    Item comes back from `person` into `warehouse`.

    Person stock is floored at zero so a drifted counter never goes
    negative. An item currently held by a different person is rejected.
    """
    ensure_positive_quantity(quantity)
    if item.person_held and item.assignee_id not in (None, person.id):
        raise InvalidStateError(
            f"Item {item.id} is held by person {item.assignee_id}, not {person.id}",
            item_id=item.id,
            assigned_to_person_id=item.assignee_id,
        )

    return LedgerPlan(
        item_id=item.id,
        item_quantity=item.quantity + quantity,
        custody=CustodyChange(
            location_type=LOCATION_WAREHOUSE,
            assignee_id=None,
            warehouse_id=warehouse.id,
        ),
        warehouse_stock={warehouse.id: warehouse.stock_qty + quantity},
        person_stock={person.id: max(0, person.stock_qty - quantity)},
    )


def plan_warehouse_transfer(
    item: ItemState,
    giving: HolderState,
    receiving: HolderState,
    quantity: int,
    *,
    strict: bool = True,
) -> LedgerPlan:
    ensure_positive_quantity(quantity)
    if giving.id == receiving.id:
        raise InvalidStateError("Giving and receiving warehouse must differ", warehouse_id=giving.id)
    if item.person_held:
        raise InvalidStateError(
            f"Item {item.id} is assigned to a person and cannot move between warehouses",
            item_id=item.id,
        )
    check_sufficient_stock(giving, quantity, strict=strict)

    return LedgerPlan(
        item_id=item.id,
        item_quantity=item.quantity,
        custody=CustodyChange(
            location_type=LOCATION_WAREHOUSE,
            assignee_id=None,
            warehouse_id=receiving.id,
        ),
        warehouse_stock={
            giving.id: giving.stock_qty - quantity,
            receiving.id: receiving.stock_qty + quantity,
        },
    )


def plan_stock_addition(item: ItemState, warehouse: HolderState, quantity: int) -> LedgerPlan:
    ensure_positive_quantity(quantity)
    return LedgerPlan(
        item_id=item.id,
        item_quantity=item.quantity + quantity,
        custody=CustodyChange(
            location_type=item.location_type,
            assignee_id=item.assignee_id,
            warehouse_id=item.warehouse_id if item.warehouse_id is not None else warehouse.id,
        ),
        warehouse_stock={warehouse.id: warehouse.stock_qty + quantity},
    )


# Reconciliation verdicts
RECONCILE_ALREADY_CORRECT = "already_correct"
RECONCILE_TO_PERSON = "to_person"
RECONCILE_TO_WAREHOUSE = "to_warehouse"


def classify_custody(item: ItemState, active_person_id: Optional[int]) -> str:
    """
    Compare an item's stored custody with what the ledger says.

    active_person_id is the holder named by the item's latest active
    TransferRecord, or None when no active record exists.
    """
    if active_person_id is not None:
        if item.location_type == LOCATION_PERSON and item.assignee_id == active_person_id:
            return RECONCILE_ALREADY_CORRECT
        return RECONCILE_TO_PERSON
    if item.location_type == LOCATION_WAREHOUSE and item.assignee_id is None:
        return RECONCILE_ALREADY_CORRECT
    return RECONCILE_TO_WAREHOUSE


@dataclass(frozen=True)
class OrphanUnassignmentPlan:
    item_ids: list[int]
    person_stock: dict[int, int]
    warehouse_stock: dict[int, int]
    items_without_warehouse: list[int]


def plan_orphan_unassignment(
    items: list[ItemState],
    people: dict[int, HolderState],
    warehouses: dict[int, HolderState],
) -> OrphanUnassignmentPlan:
    """
    Reverse custody for person-held items that have no active ledger record.

    Each item decrements its assignee by 1 (floored at zero) and increments
    its home warehouse by 1. Items with no home warehouse are still moved
    back to warehouse custody; no warehouse counter changes for them.
    """
    person_stock = {pid: holder.stock_qty for pid, holder in people.items()}
    warehouse_stock = {wid: holder.stock_qty for wid, holder in warehouses.items()}
    touched_people: set[int] = set()
    touched_warehouses: set[int] = set()
    without_warehouse: list[int] = []

    for item in items:
        if item.assignee_id in person_stock:
            person_stock[item.assignee_id] = max(0, person_stock[item.assignee_id] - 1)
            touched_people.add(item.assignee_id)
        if item.warehouse_id in warehouse_stock:
            warehouse_stock[item.warehouse_id] += 1
            touched_warehouses.add(item.warehouse_id)
        else:
            without_warehouse.append(item.id)

    return OrphanUnassignmentPlan(
        item_ids=[item.id for item in items],
        person_stock={pid: person_stock[pid] for pid in touched_people},
        warehouse_stock={wid: warehouse_stock[wid] for wid in touched_warehouses},
        items_without_warehouse=without_warehouse,
    )
