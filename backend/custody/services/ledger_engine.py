# Overview: Stock ledger engine; custody transitions, stock intake and batch maintenance over an injected EntityStore.

"""
Stock Ledger Engine

================================================================================
PURPOSE: Move serialized items between warehouse and person custody while
keeping the ledger (TransferRecord / AddRecord) and the denormalized
counters (Item.quantity, Person.stock_qty, Warehouse.stock_qty) in step.
================================================================================

EVERY OPERATION:
1. Runs inside store.unit_of_work(): locked reads, rule check, writes, commit.
2. Aborts with a typed LedgerError -> nothing written.
3. Returns a LedgerResult; NotFound / InsufficientStock / InvalidState come
   back as failures, EngineUnavailable is raised.
4. Notifies the audit trail only after commit (best-effort).

LOCK ORDER: warehouses (ascending id) -> item -> person. Keeping one order
across operations avoids lock cycles on databases that honour FOR UPDATE.

BATCH MAINTENANCE (reconcile_locations, unassign_without_ledger_record):
One unit of work per batch. A failed batch is recorded in the summary and
the pass continues; both operations are idempotent.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..errors import (
    EngineUnavailableError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
)
from ..models.ledger import TRANSFER_STATUS_RETURNED
from ..models.master_data import LOCATION_PERSON, LOCATION_WAREHOUSE
from ..time_utils import utcnow
from . import audit_service
from .audit_service import Actor
from .ledger_rules import (
    RECONCILE_ALREADY_CORRECT,
    RECONCILE_TO_PERSON,
    HolderState,
    ItemState,
    LedgerPlan,
    classify_custody,
    plan_assign,
    plan_orphan_unassignment,
    plan_return,
    plan_stock_addition,
    plan_warehouse_transfer,
)
from .results import (
    WARNING_NO_ACTIVE_TRANSFER,
    IntegrityReport,
    LedgerResult,
    ReconcileSummary,
    ReturnOutcome,
    UnassignSummary,
)

logger = logging.getLogger(__name__)

EXPECTED_ERRORS = (NotFoundError, InsufficientStockError, InvalidStateError)


def _chunks(values: list, size: int):
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _snapshot(entity) -> Optional[dict]:
    if entity is None:
        return None
    snap = {"id": entity.id, "title": entity.title}
    if hasattr(entity, "serial_number"):
        snap["serial_number"] = entity.serial_number
    if hasattr(entity, "stock_qty"):
        snap["stock_qty"] = entity.stock_qty
    return snap


class StockLedgerEngine:
    def __init__(self, store, audit, *, strict_stock_check: bool = True, batch_size: int = 100):
        self.store = store
        self.audit = audit
        self.strict_stock_check = strict_stock_check
        self.batch_size = max(1, batch_size)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _execute(self, operation: str, func: Callable[[], tuple]) -> LedgerResult:
        try:
            value, warnings = self.store.unit_of_work(func)
        except EXPECTED_ERRORS as exc:
            logger.info("%s rejected: %s (%s)", operation, exc.message, exc.code)
            return LedgerResult.failure(exc)
        return LedgerResult.success(value, warnings)

    def notify(self, action, entity_type, entity_id, entity_name, actor: Optional[Actor], details=None):
        audit_service.emit(self.audit, action, entity_type, entity_id, entity_name, actor, details)

    def _require(self, entity, label: str, entity_id):
        if entity is None:
            raise NotFoundError(label, entity_id)
        return entity

    def _apply(self, plan: LedgerPlan) -> None:
        self.store.update_item(
            plan.item_id,
            quantity=plan.item_quantity,
            current_location_type=plan.custody.location_type,
            assigned_to_person_id=plan.custody.assignee_id,
            warehouse_id=plan.custody.warehouse_id,
        )
        for warehouse_id, stock_qty in plan.warehouse_stock.items():
            self.store.update_warehouse(warehouse_id, stock_qty=stock_qty)
        for person_id, stock_qty in plan.person_stock.items():
            self.store.update_person(person_id, stock_qty=stock_qty)

    # ------------------------------------------------------------------
    # Custody transitions
    # ------------------------------------------------------------------

    def assign_item(
        self,
        item_id: int,
        person_id: int,
        giving_warehouse_id: int,
        quantity: int,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        """
        Check an item out of a warehouse to a person.

        Returns:
            LedgerResult with the new active TransferRecord.
            Failures: NotFound (warehouse/item/person), InsufficientStock,
            InvalidState (item already person-held, inactive person,
            non-positive quantity).
        """
        def _op():
            warehouse = self._require(
                self.store.get_warehouse(giving_warehouse_id, lock=True), "Warehouse", giving_warehouse_id
            )
            item = self._require(self.store.get_item(item_id, lock=True), "Item", item_id)
            person = self._require(self.store.get_person(person_id, lock=True), "Person", person_id)
            if not person.is_active:
                raise InvalidStateError(f"Person {person_id} is not active", person_id=person_id)

            plan = plan_assign(
                ItemState.from_model(item),
                HolderState.from_model(person),
                HolderState.from_model(warehouse),
                quantity,
                strict=self.strict_stock_check,
            )
            self._apply(plan)
            record = self.store.create_transfer_record(
                item_id=item.id,
                people_id=person.id,
                giving_warehouse_id=warehouse.id,
                transfer_stock_qty=quantity,
                reference_number=reference_number,
                notes=notes,
            )
            return record, ()

        result = self._execute("assign_item", _op)
        if result.ok:
            record = result.value
            logger.info(
                "Assigned item %s to person %s from warehouse %s (qty=%s, transfer=%s)",
                item_id, person_id, giving_warehouse_id, quantity, record.id,
            )
            self.notify(
                audit_service.ASSIGN_ITEM,
                audit_service.ENTITY_ITEM,
                record.item_id,
                record.item.title,
                actor,
                {
                    "transfer_record_id": record.id,
                    "quantity": quantity,
                    "reference_number": reference_number,
                    "item": _snapshot(record.item),
                    "person": _snapshot(record.person),
                    "warehouse": _snapshot(record.giving_warehouse),
                },
            )
        return result

    def apply_return(
        self,
        item_id: int,
        person_id: int,
        receiving_warehouse_id: int,
        quantity: int,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> tuple[ReturnOutcome, tuple[str, ...]]:
        """
        Return writes without a transaction of their own.

        Must be called inside store.unit_of_work(); callers that combine a
        return with other writes (offboarding tasks) use this directly.
        """
        warehouse = self._require(
            self.store.get_warehouse(receiving_warehouse_id, lock=True), "Warehouse", receiving_warehouse_id
        )
        item = self._require(self.store.get_item(item_id, lock=True), "Item", item_id)
        person = self._require(self.store.get_person(person_id, lock=True), "Person", person_id)

        plan = plan_return(
            ItemState.from_model(item),
            HolderState.from_model(person),
            HolderState.from_model(warehouse),
            quantity,
        )
        self._apply(plan)

        warnings: tuple[str, ...] = ()
        transfer = self.store.find_active_transfer_record(item_id, person_id, lock=True)
        if transfer is not None:
            self.store.update_transfer_record_status(
                transfer.id, TRANSFER_STATUS_RETURNED, returned_at=utcnow()
            )
        else:
            warnings = (WARNING_NO_ACTIVE_TRANSFER,)
            logger.warning(
                "Return of item %s from person %s closed no transfer record (none active)",
                item_id, person_id,
            )

        add_record = self.store.create_add_record(
            item_id=item.id,
            people_id=person.id,
            receiving_warehouse_id=warehouse.id,
            closed_transfer_id=transfer.id if transfer is not None else None,
            add_stock_qty=quantity,
            reference_number=reference_number,
            notes=notes,
        )
        return ReturnOutcome(add_record=add_record, closed_transfer=transfer), warnings

    def notify_return(self, outcome: ReturnOutcome, warnings, actor: Optional[Actor]) -> None:
        add_record = outcome.add_record
        logger.info(
            "Returned item %s from person %s to warehouse %s (qty=%s, add_record=%s)",
            add_record.item_id, add_record.people_id, add_record.receiving_warehouse_id,
            add_record.add_stock_qty, add_record.id,
        )
        self.notify(
            audit_service.RETURN_ITEM,
            audit_service.ENTITY_ITEM,
            add_record.item_id,
            add_record.item.title,
            actor,
            {
                "add_record_id": add_record.id,
                "closed_transfer_id": add_record.closed_transfer_id,
                "quantity": add_record.add_stock_qty,
                "reference_number": add_record.reference_number,
                "item": _snapshot(add_record.item),
                "person": _snapshot(add_record.person),
                "warehouse": _snapshot(add_record.receiving_warehouse),
                "warnings": list(warnings),
            },
        )

    def return_item(
        self,
        item_id: int,
        person_id: int,
        receiving_warehouse_id: int,
        quantity: int,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        """
        Bring an item back from a person into a warehouse.

        A return with no active TransferRecord still proceeds; the result
        then carries the NO_ACTIVE_TRANSFER warning.
        """
        def _op():
            return self.apply_return(
                item_id, person_id, receiving_warehouse_id, quantity, reference_number, notes
            )

        result = self._execute("return_item", _op)
        if result.ok:
            self.notify_return(result.value, result.warnings, actor)
        return result

    def transfer_between_warehouses(
        self,
        item_id: int,
        giving_warehouse_id: int,
        receiving_warehouse_id: int,
        quantity: int,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        def _op():
            locked = {}
            for warehouse_id in sorted({giving_warehouse_id, receiving_warehouse_id}):
                locked[warehouse_id] = self._require(
                    self.store.get_warehouse(warehouse_id, lock=True), "Warehouse", warehouse_id
                )
            item = self._require(self.store.get_item(item_id, lock=True), "Item", item_id)

            plan = plan_warehouse_transfer(
                ItemState.from_model(item),
                HolderState.from_model(locked[giving_warehouse_id]),
                HolderState.from_model(locked[receiving_warehouse_id]),
                quantity,
                strict=self.strict_stock_check,
            )
            self._apply(plan)
            record = self.store.create_warehouse_transfer_record(
                item_id=item.id,
                giving_warehouse_id=giving_warehouse_id,
                receiving_warehouse_id=receiving_warehouse_id,
                transfer_stock_qty=quantity,
                reference_number=reference_number,
                notes=notes,
            )
            return record, ()

        result = self._execute("transfer_between_warehouses", _op)
        if result.ok:
            record = result.value
            logger.info(
                "Moved item %s from warehouse %s to %s (qty=%s)",
                item_id, giving_warehouse_id, receiving_warehouse_id, quantity,
            )
            item = self.store.get_item(item_id)
            self.notify(
                audit_service.TRANSFER_WAREHOUSE,
                audit_service.ENTITY_WAREHOUSE,
                giving_warehouse_id,
                item.title if item else None,
                actor,
                {
                    "warehouse_transfer_record_id": record.id,
                    "item_id": item_id,
                    "receiving_warehouse_id": receiving_warehouse_id,
                    "quantity": quantity,
                    "reference_number": reference_number,
                },
            )
        return result

    # ------------------------------------------------------------------
    # Stock intake
    # ------------------------------------------------------------------

    def register_item(
        self,
        title: str,
        warehouse_id: int,
        serial_number: Optional[str] = None,
        asset_tag: Optional[str] = None,
        model: Optional[str] = None,
        notes: Optional[str] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        """New serialized item, placed in warehouse custody; warehouse stock +1."""
        def _op():
            warehouse = self._require(self.store.get_warehouse(warehouse_id, lock=True), "Warehouse", warehouse_id)
            if serial_number and self.store.get_item_by_serial(serial_number) is not None:
                raise InvalidStateError(
                    f"Serial number {serial_number} already registered", serial_number=serial_number
                )
            item = self.store.create_item(
                title=title,
                serial_number=serial_number,
                asset_tag=asset_tag,
                model=model,
                notes=notes,
                quantity=1,
                current_location_type=LOCATION_WAREHOUSE,
                assigned_to_person_id=None,
                warehouse_id=warehouse.id,
            )
            self.store.update_warehouse(warehouse.id, stock_qty=(warehouse.stock_qty or 0) + 1)
            return item, ()

        result = self._execute("register_item", _op)
        if result.ok:
            item = result.value
            logger.info("Registered item %s (%s) into warehouse %s", item.id, serial_number, warehouse_id)
            self.notify(
                audit_service.RECEIVE_ITEM,
                audit_service.ENTITY_ITEM,
                item.id,
                item.title,
                actor,
                {"serial_number": serial_number, "warehouse_id": warehouse_id},
            )
        return result

    def add_warehouse_stock(
        self,
        item_id: int,
        receiving_warehouse_id: int,
        quantity: int,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        def _op():
            warehouse = self._require(
                self.store.get_warehouse(receiving_warehouse_id, lock=True), "Warehouse", receiving_warehouse_id
            )
            item = self._require(self.store.get_item(item_id, lock=True), "Item", item_id)
            plan = plan_stock_addition(ItemState.from_model(item), HolderState.from_model(warehouse), quantity)
            self._apply(plan)
            record = self.store.create_warehouse_add_record(
                item_id=item.id,
                receiving_warehouse_id=warehouse.id,
                add_stock_qty=quantity,
                reference_number=reference_number,
                notes=notes,
            )
            return record, ()

        result = self._execute("add_warehouse_stock", _op)
        if result.ok:
            record = result.value
            logger.info("Added %s units of item %s to warehouse %s", quantity, item_id, receiving_warehouse_id)
            self.notify(
                audit_service.ADD_STOCK,
                audit_service.ENTITY_WAREHOUSE,
                receiving_warehouse_id,
                None,
                actor,
                {
                    "warehouse_add_record_id": record.id,
                    "item_id": item_id,
                    "quantity": quantity,
                    "reference_number": reference_number,
                },
            )
        return result

    def holdings(self, person_id: int) -> LedgerResult:
        person = self.store.get_person(person_id)
        if person is None:
            return LedgerResult.failure(NotFoundError("Person", person_id))
        return LedgerResult.success(self.store.active_transfer_records_for_person(person_id))

    # ------------------------------------------------------------------
    # Batch maintenance
    # ------------------------------------------------------------------

    def reconcile_locations(self, *, actor: Optional[Actor] = None) -> ReconcileSummary:
        """
        Repair Item custody fields from the latest active TransferRecord.

        Item with an active record -> person custody of that record's holder.
        Item without one -> warehouse custody, no assignee. Counters are not
        touched; see integrity_report() for counter drift.
        """
        summary = ReconcileSummary()
        item_ids = self.store.item_ids()
        summary.total_items = len(item_ids)

        for batch in _chunks(item_ids, self.batch_size):
            try:
                to_person, to_warehouse, correct = self.store.unit_of_work(
                    lambda batch=batch: self._reconcile_batch(batch)
                )
            except (EngineUnavailableError, InvalidStateError) as exc:
                logger.error("Reconcile batch %s..%s failed: %s", batch[0], batch[-1], exc.message)
                summary.failed_item_ids.extend(batch)
                continue
            summary.updated_to_person += to_person
            summary.updated_to_warehouse += to_warehouse
            summary.already_correct += correct

        logger.info(
            "Reconciled %s items: %s to person, %s to warehouse, %s already correct, %s failed",
            summary.total_items, summary.updated_to_person, summary.updated_to_warehouse,
            summary.already_correct, len(summary.failed_item_ids),
        )
        if summary.changed:
            self.notify(
                audit_service.RECONCILE,
                audit_service.ENTITY_ITEM,
                None,
                "reconcile-locations",
                actor,
                summary.to_dict(),
            )
        return summary

    def _reconcile_batch(self, item_ids: list[int]) -> tuple[int, int, int]:
        to_person = to_warehouse = correct = 0
        items = self.store.items_by_ids(item_ids, lock=True)
        latest = self.store.latest_active_transfer_by_item(item_ids)
        for item in items:
            record = latest.get(item.id)
            verdict = classify_custody(ItemState.from_model(item), record.people_id if record else None)
            if verdict == RECONCILE_ALREADY_CORRECT:
                correct += 1
            elif verdict == RECONCILE_TO_PERSON:
                self.store.update_item(
                    item.id, current_location_type=LOCATION_PERSON, assigned_to_person_id=record.people_id
                )
                to_person += 1
            else:
                self.store.update_item(
                    item.id, current_location_type=LOCATION_WAREHOUSE, assigned_to_person_id=None
                )
                to_warehouse += 1
        return to_person, to_warehouse, correct

    def unassign_without_ledger_record(self, *, actor: Optional[Actor] = None) -> UnassignSummary:
        """
        Move person-held items with no active TransferRecord back to warehouse custody.

        Compensates for items imported as "assigned" without ledger entries.
        Each item: assignee stock -1 (floored at zero), home warehouse stock +1.
        A second run finds nothing to do.
        """
        summary = UnassignSummary()
        held = self.store.person_held_items()
        summary.total_assigned_items = len(held)
        active = self.store.latest_active_transfer_by_item([item.id for item in held])
        orphan_ids = [item.id for item in held if item.id not in active]
        summary.items_with_transfer_records = len(held) - len(orphan_ids)

        people_touched: set[int] = set()
        warehouses_touched: set[int] = set()
        for batch in _chunks(orphan_ids, self.batch_size):
            try:
                unassigned, people, warehouses, no_home = self.store.unit_of_work(
                    lambda batch=batch: self._unassign_batch(batch)
                )
            except (EngineUnavailableError, InvalidStateError) as exc:
                logger.error("Unassign batch %s..%s failed: %s", batch[0], batch[-1], exc.message)
                summary.failed_item_ids.extend(batch)
                continue
            summary.items_unassigned += unassigned
            summary.items_without_warehouse.extend(no_home)
            people_touched.update(people)
            warehouses_touched.update(warehouses)

        summary.people_updated = len(people_touched)
        summary.warehouses_updated = len(warehouses_touched)
        logger.info(
            "Unassigned %s of %s person-held items without ledger records (%s people, %s warehouses)",
            summary.items_unassigned, summary.total_assigned_items,
            summary.people_updated, summary.warehouses_updated,
        )
        if summary.items_unassigned:
            self.notify(
                audit_service.RECONCILE,
                audit_service.ENTITY_ITEM,
                None,
                "unassign-orphans",
                actor,
                summary.to_dict(),
            )
        return summary

    def _unassign_batch(self, item_ids: list[int]):
        # Re-check inside the transaction; state may have moved since the scan.
        active = self.store.latest_active_transfer_by_item(item_ids)
        items = [
            ItemState.from_model(item)
            for item in self.store.items_by_ids(item_ids, lock=True)
            if item.is_person_held and item.assigned_to_person_id is not None and item.id not in active
        ]
        if not items:
            return 0, set(), set(), []

        people = {}
        for person_id in sorted({item.assignee_id for item in items}):
            person = self.store.get_person(person_id, lock=True)
            if person is not None:
                people[person_id] = HolderState.from_model(person)
        warehouses = {}
        for warehouse_id in sorted({item.warehouse_id for item in items if item.warehouse_id is not None}):
            warehouse = self.store.get_warehouse(warehouse_id, lock=True)
            if warehouse is not None:
                warehouses[warehouse_id] = HolderState.from_model(warehouse)

        plan = plan_orphan_unassignment(items, people, warehouses)
        unassigned = self.store.move_items_to_warehouse(plan.item_ids)
        for person_id, stock_qty in plan.person_stock.items():
            self.store.update_person(person_id, stock_qty=stock_qty)
        for warehouse_id, stock_qty in plan.warehouse_stock.items():
            self.store.update_warehouse(warehouse_id, stock_qty=stock_qty)
        return unassigned, set(plan.person_stock), set(plan.warehouse_stock), plan.items_without_warehouse

    def integrity_report(self) -> IntegrityReport:
        """Compare ledger and counters without writing anything."""
        report = IntegrityReport()
        items = self.store.all_items()
        report.total_items = len(items)
        counts = self.store.count_active_transfers_by_item()
        latest = self.store.latest_active_transfer_by_item()

        for item in items:
            active_count = counts.get(item.id, 0)
            if active_count > 1:
                report.multiple_active_transfers.append(item.id)
            if item.is_person_held and active_count == 0:
                report.person_held_without_transfer.append(item.id)
            elif not item.is_person_held and active_count > 0:
                report.warehouse_held_with_transfer.append(item.id)
            elif item.is_person_held and latest[item.id].people_id != item.assigned_to_person_id:
                report.assignee_mismatch.append(item.id)

        expected = self.store.active_quantity_by_person()
        for person in self.store.all_people():
            ledger_qty = expected.get(person.id, 0)
            if (person.stock_qty or 0) != ledger_qty:
                report.person_counter_drift.append(
                    {"person_id": person.id, "stock_qty": person.stock_qty, "expected": ledger_qty}
                )
        for warehouse in self.store.all_warehouses():
            report.warehouse_stock.append(
                {"warehouse_id": warehouse.id, "title": warehouse.title, "stock_qty": warehouse.stock_qty}
            )
        return report

