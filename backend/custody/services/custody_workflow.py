# Overview: Custody transition workflow; demobilization and offboarding-task orchestration over the ledger engine.

"""
Custody Transition Workflow

Multi-step transitions built from ledger engine operations:

DEMOBILIZE (best-effort, process all and collect outcomes):
    for each checked item  -> return it to the warehouse it was issued from
                              (own unit of work per item)
    for each checked access -> revoke it (own unit of work per access)
    then, in one unit of work -> DemobRecord + person inactive
    One item or access failing never stops the others; the caller gets a
    per-entry outcome list.

OFFBOARDING TASKS (atomic per PATCH):
    status change + its side effect commit together:
    item_collection  -> asset_collected : return the task's item
    access_revocation -> revoke_granted : revoke the task's access
"""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import EngineUnavailableError, InvalidStateError, NotFoundError
from ..models.master_data import PERSON_STATUS_INACTIVE
from ..models.offboarding import (
    ACCESS_STATUS_ACTIVE,
    TASK_TYPE_ACCESS_REVOCATION,
    TASK_TYPE_ITEM_COLLECTION,
)
from ..time_utils import epoch_millis, parse_iso_datetime, utcnow
from . import audit_service
from .audit_service import Actor
from .offboarding_lifecycle import (
    STATUS_ASSET_COLLECTED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_REVOKE_GRANTED,
    assert_transition,
    validate_task_type,
)
from .results import (
    OUTCOME_FAILED,
    OUTCOME_RETURNED,
    OUTCOME_REVOKED,
    OUTCOME_SKIPPED,
    WARNING_NO_ACTIVE_TRANSFER,
    DemobOutcome,
    ItemOutcome,
    LedgerResult,
    TaskTransition,
)

logger = logging.getLogger(__name__)

EXPECTED_ERRORS = (NotFoundError, InvalidStateError)


def _entry_id(entry: dict):
    return entry.get("id")


class CustodyWorkflow:
    def __init__(self, engine, store, access, audit, *, require_contract_end: bool = False):
        self.engine = engine
        self.store = store
        self.access = access
        self.audit = audit
        self.require_contract_end = require_contract_end

    # ------------------------------------------------------------------
    # Demobilization
    # ------------------------------------------------------------------

    def demobilize(
        self,
        person_id: int,
        items_returned: list[dict],
        accesses_revoked: list[dict],
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        """
        Close out a person's custody and accesses.

        Args:
            person_id: Person being demobilized
            items_returned: checklist [{id, title, serialNumber, checked}, ...]
            accesses_revoked: checklist [{id, name, checked}, ...]
            actor: performer written to the DemobRecord and the audit trail

        Returns:
            LedgerResult with a DemobOutcome (record + per-entry outcomes).
            Failures: NotFound (person), InvalidState (person already
            inactive, or no contract end date when that is required).

        Raises:
            EngineUnavailableError: if the DemobRecord itself cannot be written.
        """
        actor = actor or Actor()
        person = self.store.get_person(person_id)
        if person is None:
            return LedgerResult.failure(NotFoundError("Person", person_id))
        if person.status == PERSON_STATUS_INACTIVE:
            return LedgerResult.failure(
                InvalidStateError(f"Person {person_id} is already inactive", person_id=person_id)
            )
        if self.require_contract_end and person.contract_end_date is None:
            return LedgerResult.failure(
                InvalidStateError(f"Person {person_id} has no contract end date", person_id=person_id)
            )

        reference_number = f"DEMOB-{epoch_millis()}"
        notes = f"Returned via demobilization - {actor.name}"

        outcomes: list[ItemOutcome] = []
        for entry in items_returned or []:
            if entry.get("checked"):
                outcomes.append(self._return_for_demob(person_id, _entry_id(entry), reference_number, notes, actor))
        for entry in accesses_revoked or []:
            if entry.get("checked"):
                outcomes.append(self._revoke_for_demob(person_id, _entry_id(entry), actor))

        failed = [o for o in outcomes if o.status == OUTCOME_FAILED]

        def _finalize():
            record = self.store.create_demob_record(
                people_id=person_id,
                items_returned=list(items_returned or []),
                accesses_revoked=list(accesses_revoked or []),
                outcomes=[o.to_dict() for o in outcomes],
                demob_performed_by=actor.name,
                demob_performed_by_email=actor.email,
                is_completed=not failed,
            )
            self.store.update_person(person_id, status=PERSON_STATUS_INACTIVE)
            return record

        record = self.store.unit_of_work(_finalize)

        logger.info(
            "Demobilized person %s: %s returned/revoked, %s skipped, %s failed (record %s)",
            person_id,
            sum(1 for o in outcomes if o.status in (OUTCOME_RETURNED, OUTCOME_REVOKED)),
            sum(1 for o in outcomes if o.status == OUTCOME_SKIPPED),
            len(failed),
            record.id,
        )
        audit_service.emit(
            self.audit,
            audit_service.DEMOBILIZE,
            audit_service.ENTITY_PEOPLE,
            person_id,
            person.title,
            actor,
            {
                "demob_record_id": record.id,
                "reference_number": reference_number,
                "outcomes": [o.to_dict() for o in outcomes],
            },
        )
        return LedgerResult.success(DemobOutcome(record=record, outcomes=tuple(outcomes)))

    def _return_for_demob(self, person_id, item_id, reference_number, notes, actor) -> ItemOutcome:
        transfer = self.store.find_active_transfer_record(item_id, person_id)
        if transfer is None:
            logger.warning("Demobilization of person %s: item %s has no active transfer record", person_id, item_id)
            return ItemOutcome(item_id, "item", OUTCOME_SKIPPED, reason="No active transfer record")
        try:
            result = self.engine.return_item(
                item_id,
                person_id,
                transfer.giving_warehouse_id,
                transfer.transfer_stock_qty or 1,
                reference_number,
                notes,
                actor=actor,
            )
        except EngineUnavailableError as exc:
            logger.error("Demobilization of person %s: return of item %s failed: %s", person_id, item_id, exc.message)
            return ItemOutcome(item_id, "item", OUTCOME_FAILED, reason=exc.message)
        if not result.ok:
            logger.warning(
                "Demobilization of person %s: return of item %s rejected: %s", person_id, item_id, result.error.message
            )
            return ItemOutcome(item_id, "item", OUTCOME_FAILED, reason=result.error.message)
        return ItemOutcome(item_id, "item", OUTCOME_RETURNED, add_record_id=result.value.add_record.id)

    def _revoke_for_demob(self, person_id, access_id, actor) -> ItemOutcome:
        try:
            result = self.access.revoke(access_id, revoked_by=actor.name, person_id=person_id, actor=actor)
        except EngineUnavailableError as exc:
            logger.error("Demobilization: revoking access %s failed: %s", access_id, exc.message)
            return ItemOutcome(access_id, "access", OUTCOME_FAILED, reason=exc.message)
        if result.ok:
            return ItemOutcome(access_id, "access", OUTCOME_REVOKED)
        if isinstance(result.error, InvalidStateError):
            return ItemOutcome(access_id, "access", OUTCOME_SKIPPED, reason=result.error.message)
        return ItemOutcome(access_id, "access", OUTCOME_FAILED, reason=result.error.message)

    def update_demob_record(
        self,
        record_id: int,
        signed_document_url: Optional[str] = None,
        is_completed: Optional[bool] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        """Patch the signed document URL and/or completion flag; nothing else is editable."""
        def _op():
            record = self.store.get_demob_record(record_id)
            if record is None:
                raise NotFoundError("DemobRecord", record_id)
            changes = {}
            if signed_document_url is not None:
                changes["signed_document_url"] = signed_document_url
            if is_completed is not None:
                changes["is_completed"] = bool(is_completed)
            record = self.store.update_demob_record(record_id, **changes)
            if is_completed:
                self.store.update_person(record.people_id, status=PERSON_STATUS_INACTIVE)
            return record

        try:
            record = self.store.unit_of_work(_op)
        except EXPECTED_ERRORS as exc:
            return LedgerResult.failure(exc)

        audit_service.emit(
            self.audit,
            audit_service.DEMOBILIZE,
            audit_service.ENTITY_DEMOB_DOCUMENT,
            record.id,
            None,
            actor,
            {"signed_document_url": signed_document_url, "is_completed": is_completed},
        )
        return LedgerResult.success(record)

    def list_demob_records(self, person_id: Optional[int] = None):
        return self.store.list_demob_records(person_id)

    # ------------------------------------------------------------------
    # Offboarding tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        task_type: str,
        title: str,
        people_id: int,
        item_id: Optional[int] = None,
        access_id: Optional[int] = None,
        priority: str = "medium",
        due_date=None,
        assigned_to: Optional[str] = None,
        description: Optional[str] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        def _op():
            validate_task_type(task_type)
            if self.store.get_person(people_id) is None:
                raise NotFoundError("Person", people_id)
            if task_type == TASK_TYPE_ITEM_COLLECTION:
                if item_id is None:
                    raise InvalidStateError("item_collection task requires an item")
                if self.store.get_item(item_id) is None:
                    raise NotFoundError("Item", item_id)
            if task_type == TASK_TYPE_ACCESS_REVOCATION:
                if access_id is None:
                    raise InvalidStateError("access_revocation task requires an access")
                access = self.store.get_access(access_id)
                if access is None:
                    raise NotFoundError("EmployeeAccess", access_id)
                if access.people_id != people_id:
                    raise InvalidStateError(
                        f"Access {access_id} does not belong to person {people_id}",
                        access_id=access_id,
                        person_id=people_id,
                    )
            return self.store.create_task(
                task_type=task_type,
                title=title,
                people_id=people_id,
                item_id=item_id,
                access_id=access_id,
                priority=priority or "medium",
                due_date=parse_iso_datetime(due_date) if isinstance(due_date, str) else due_date,
                assigned_to=assigned_to,
                description=description,
                status=STATUS_PENDING,
            )

        try:
            task = self.store.unit_of_work(_op)
        except EXPECTED_ERRORS as exc:
            return LedgerResult.failure(exc)

        logger.info("Created %s task %s for person %s", task_type, task.id, people_id)
        audit_service.emit(
            self.audit,
            audit_service.OFFBOARDING_TASK_UPDATE,
            audit_service.ENTITY_OFFBOARDING_TASK,
            task.id,
            title,
            actor,
            {"task_type": task_type, "status": task.status, "people_id": people_id},
        )
        return LedgerResult.success(task)

    def advance_task(
        self,
        task_id: int,
        status: str,
        notes: Optional[str] = None,
        completed_date=None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        """
        Move a task to `status` (one legal step) and apply that step's side effect.

        Returns:
            LedgerResult with a TaskTransition. Warns NO_ACTIVE_TRANSFER when an
            item_collection task reaches asset_collected but the item had no
            active transfer to close (nothing is returned then).
            Failures: NotFound (task), InvalidState (illegal transition).
        """
        actor = actor or Actor()

        def _op():
            task = self.store.get_task(task_id, lock=True)
            if task is None:
                raise NotFoundError("OffboardingTask", task_id)
            previous = task.status
            assert_transition(task.task_type, previous, status)

            warnings: tuple[str, ...] = ()
            return_outcome = None
            revoked_access = None
            if previous == status:
                if notes is not None:
                    self.store.update_task(task.id, notes=notes)
                return TaskTransition(task=task, previous_status=previous), warnings

            if task.task_type == TASK_TYPE_ITEM_COLLECTION and status == STATUS_ASSET_COLLECTED:
                return_outcome, warnings = self._collect_item(task)
            if task.task_type == TASK_TYPE_ACCESS_REVOCATION and status == STATUS_REVOKE_GRANTED:
                revoked_access = self._revoke_task_access(task, actor)

            changes = {"status": status}
            if notes is not None:
                changes["notes"] = notes
            if status == STATUS_COMPLETED:
                stamp = parse_iso_datetime(completed_date) if isinstance(completed_date, str) else completed_date
                changes["completed_date"] = stamp or utcnow()
            task = self.store.update_task(task.id, **changes)
            transition = TaskTransition(
                task=task,
                previous_status=previous,
                return_outcome=return_outcome,
                revoked_access=revoked_access,
            )
            return transition, warnings

        try:
            transition, warnings = self.store.unit_of_work(_op)
        except EXPECTED_ERRORS as exc:
            return LedgerResult.failure(exc)

        if transition.changed:
            if transition.return_outcome is not None:
                self.engine.notify_return(transition.return_outcome, warnings, actor)
            if transition.revoked_access is not None:
                self.access.notify_revoke(transition.revoked_access, actor)
            task = transition.task
            logger.info("Task %s moved %s -> %s", task.id, transition.previous_status, task.status)
            audit_service.emit(
                self.audit,
                audit_service.OFFBOARDING_TASK_UPDATE,
                audit_service.ENTITY_OFFBOARDING_TASK,
                task.id,
                task.title,
                actor,
                {
                    "from_status": transition.previous_status,
                    "to_status": task.status,
                    "people_id": task.people_id,
                    "warnings": list(warnings),
                },
            )
        return LedgerResult.success(transition, warnings)

    def complete_item_collection_task(self, task_id: int, *, actor: Optional[Actor] = None) -> LedgerResult:
        """pending -> asset_collected on an item_collection task, returning its item."""
        task = self.store.get_task(task_id)
        if task is None:
            return LedgerResult.failure(NotFoundError("OffboardingTask", task_id))
        if task.task_type != TASK_TYPE_ITEM_COLLECTION:
            return LedgerResult.failure(
                InvalidStateError(f"Task {task_id} is not an item_collection task", task_id=task_id)
            )
        return self.advance_task(task_id, STATUS_ASSET_COLLECTED, actor=actor)

    def _collect_item(self, task):
        if task.item_id is None:
            raise InvalidStateError(f"Task {task.id} has no item to collect", task_id=task.id)
        transfer = self.store.find_active_transfer_record(task.item_id, task.people_id, lock=True)
        if transfer is None:
            logger.warning(
                "Task %s: item %s has no active transfer for person %s; nothing returned",
                task.id, task.item_id, task.people_id,
            )
            return None, (WARNING_NO_ACTIVE_TRANSFER,)
        return self.engine.apply_return(
            task.item_id,
            task.people_id,
            transfer.giving_warehouse_id,
            transfer.transfer_stock_qty or 1,
            f"OFFBOARD-{task.id}",
            f"Auto-returned via offboarding task: {task.title}",
        )

    def _revoke_task_access(self, task, actor: Actor):
        if task.access_id is None:
            return None
        access = self.store.get_access(task.access_id)
        if access is None or access.status != ACCESS_STATUS_ACTIVE:
            return None
        return self.access.apply_revoke(task.access_id, actor.name, person_id=task.people_id)
