"""
Demobilization and offboarding task orchestration.
"""

import pytest

from custody.errors import InvalidStateError, NotFoundError
from custody.models import AddRecord, DemobRecord, EmployeeAccess, Item, Person, Warehouse
from custody.models.ledger import TransferRecord
from custody.services.audit_service import DEMOBILIZE, OFFBOARDING_TASK_UPDATE, RETURN_ITEM, REVOKE_ACCESS, Actor
from custody.services.factory import build_ledger_services
from custody.services.results import (
    OUTCOME_FAILED,
    OUTCOME_RETURNED,
    OUTCOME_REVOKED,
    OUTCOME_SKIPPED,
    WARNING_NO_ACTIVE_TRANSFER,
)

from conftest import active_transfers, make_access, make_item, make_person, make_warehouse


def _reload(session, model, entity_id):
    session.expire_all()
    return session.get(model, entity_id)


@pytest.fixture
def issued(db_session, engine):
    """Warehouse with one item assigned to an active person."""
    warehouse = make_warehouse(db_session, stock_qty=5)
    person = make_person(db_session, title="Departing Employee", email="leaver@example.com")
    item = make_item(db_session, warehouse, serial_number="SN-100")
    assert engine.assign_item(item.id, person.id, warehouse.id, 1).ok
    return warehouse, person, item


class TestDemobilize:
    def test_returns_item_and_deactivates_person(self, db_session, workflow, issued, audit):
        warehouse, person, item = issued
        checklist = [{"id": item.id, "title": "Laptop", "serialNumber": "SN-100", "checked": True}]

        result = workflow.demobilize(person.id, checklist, [], actor=Actor(name="hr.officer"))

        assert result.ok
        outcome = result.value
        assert [o.status for o in outcome.outcomes] == [OUTCOME_RETURNED]
        assert outcome.failures == []
        assert outcome.record.items_returned == checklist
        assert outcome.record.is_completed is True
        assert outcome.record.demob_performed_by == "hr.officer"

        item_row = _reload(db_session, Item, item.id)
        assert item_row.current_location_type == "warehouse"
        assert item_row.warehouse_id == warehouse.id
        assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 5
        assert _reload(db_session, Person, person.id).status == "inactive"
        assert active_transfers(db_session, item.id) == []

        add_record = db_session.query(AddRecord).one()
        assert add_record.reference_number.startswith("DEMOB-")
        assert add_record.notes == "Returned via demobilization - hr.officer"
        assert audit.actions()[-2:] == [RETURN_ITEM, DEMOBILIZE]

    def test_unchecked_entries_are_ignored(self, db_session, workflow, issued):
        _, person, item = issued

        result = workflow.demobilize(person.id, [{"id": item.id, "checked": False}], [])

        assert result.value.outcomes == ()
        assert _reload(db_session, Item, item.id).current_location_type == "person"
        assert _reload(db_session, Person, person.id).status == "inactive"

    def test_item_without_active_transfer_is_skipped(self, db_session, workflow, issued):
        warehouse, person, item = issued
        stray = make_item(db_session, warehouse, title="Monitor")

        result = workflow.demobilize(
            person.id,
            [{"id": stray.id, "checked": True}, {"id": item.id, "checked": True}],
            [],
        )

        statuses = {o.id: o.status for o in result.value.outcomes}
        assert statuses == {stray.id: OUTCOME_SKIPPED, item.id: OUTCOME_RETURNED}
        assert result.value.record.is_completed is True

    def test_one_failing_item_does_not_stop_the_rest(self, db_session, workflow, issued):
        warehouse, person, item = issued
        other_warehouse = make_warehouse(db_session, title="Site Store", stock_qty=3)
        other = make_item(db_session, other_warehouse, title="Phone")
        # Ledger row pointing at a warehouse that no longer exists
        db_session.add(TransferRecord(
            item_id=other.id, people_id=person.id, giving_warehouse_id=987654,
            transfer_stock_qty=1, status="active",
        ))
        db_session.commit()

        result = workflow.demobilize(
            person.id,
            [{"id": other.id, "checked": True}, {"id": item.id, "checked": True}],
            [],
        )

        assert result.ok
        statuses = {o.id: o.status for o in result.value.outcomes}
        assert statuses[other.id] == OUTCOME_FAILED
        assert statuses[item.id] == OUTCOME_RETURNED
        assert result.value.record.is_completed is False
        assert _reload(db_session, Person, person.id).status == "inactive"
        stored = _reload(db_session, DemobRecord, result.value.record.id)
        assert {o["id"]: o["status"] for o in stored.outcomes} == statuses

    def test_revokes_checked_accesses(self, db_session, workflow, issued, audit):
        _, person, _ = issued
        vpn = make_access(db_session, person, "VPN")
        mailbox = make_access(db_session, person, "Mailbox")
        mailbox.status = "revoked"
        db_session.commit()

        result = workflow.demobilize(
            person.id,
            [],
            [{"id": vpn.id, "name": "VPN", "checked": True},
             {"id": mailbox.id, "name": "Mailbox", "checked": True}],
            actor=Actor(name="it.admin"),
        )

        statuses = {o.id: o.status for o in result.value.outcomes}
        assert statuses == {vpn.id: OUTCOME_REVOKED, mailbox.id: OUTCOME_SKIPPED}
        vpn_row = _reload(db_session, EmployeeAccess, vpn.id)
        assert vpn_row.status == "revoked"
        assert vpn_row.revoked_by == "it.admin"
        assert REVOKE_ACCESS in audit.actions()

    def test_unknown_access_is_failed(self, workflow, issued):
        _, person, _ = issued

        result = workflow.demobilize(person.id, [], [{"id": 4040, "checked": True}])

        assert result.value.outcomes[0].status == OUTCOME_FAILED
        assert result.value.record.is_completed is False

    def test_access_of_another_person_is_not_revoked(self, db_session, workflow, issued):
        _, person, _ = issued
        bystander = make_person(db_session, title="Bystander", email="stays@example.com")
        foreign = make_access(db_session, bystander, "VPN")

        result = workflow.demobilize(person.id, [], [{"id": foreign.id, "checked": True}])

        assert result.ok
        assert [o.status for o in result.value.outcomes] == [OUTCOME_SKIPPED]
        assert "does not belong" in result.value.outcomes[0].reason
        assert _reload(db_session, EmployeeAccess, foreign.id).status == "active"

    def test_status_other_than_inactive_can_be_demobilized(self, db_session, workflow):
        person = make_person(db_session, status="suspended")

        result = workflow.demobilize(person.id, [], [])

        assert result.ok
        assert _reload(db_session, Person, person.id).status == "inactive"

    def test_inactive_person_rejected(self, db_session, workflow):
        person = make_person(db_session, status="inactive")

        result = workflow.demobilize(person.id, [], [])

        assert isinstance(result.error, InvalidStateError)
        assert db_session.query(DemobRecord).count() == 0

    def test_missing_person_not_found(self, workflow, db_session):
        result = workflow.demobilize(31337, [], [])

        assert isinstance(result.error, NotFoundError)

    def test_contract_end_required_when_configured(self, app, db_session, audit):
        config = dict(app.config, DEMOB_REQUIRE_CONTRACT_END=True)
        workflow = build_ledger_services(db_session, config, audit=audit).workflow
        person = make_person(db_session)

        result = workflow.demobilize(person.id, [], [])

        assert isinstance(result.error, InvalidStateError)
        assert _reload(db_session, Person, person.id).status == "active"


class TestDemobRecordUpdate:
    def test_patch_signed_document(self, db_session, workflow, issued):
        _, person, _ = issued
        record = workflow.demobilize(person.id, [], [{"id": 1, "checked": True}]).value.record
        assert record.is_completed is False

        result = workflow.update_demob_record(
            record.id, signed_document_url="https://docs.example.com/demob/1.pdf", is_completed=True
        )

        assert result.ok
        stored = _reload(db_session, DemobRecord, record.id)
        assert stored.signed_document_url == "https://docs.example.com/demob/1.pdf"
        assert stored.is_completed is True

    def test_missing_record(self, workflow, db_session):
        assert isinstance(workflow.update_demob_record(555, is_completed=True).error, NotFoundError)

    def test_list_by_person(self, db_session, workflow):
        first = make_person(db_session, title="First")
        second = make_person(db_session, title="Second")
        workflow.demobilize(first.id, [], [])
        workflow.demobilize(second.id, [], [])

        assert [r.people_id for r in workflow.list_demob_records(first.id)] == [first.id]
        assert len(workflow.list_demob_records()) == 2


class TestOffboardingTasks:
    def test_item_collection_task_returns_item(self, db_session, workflow, issued, audit):
        warehouse, person, item = issued
        task = workflow.create_task("item_collection", "Collect laptop", person.id, item_id=item.id).value
        assert task.status == "pending"

        result = workflow.complete_item_collection_task(task.id, actor=Actor(name="it.desk"))

        assert result.ok
        assert result.warnings == ()
        transition = result.value
        assert transition.previous_status == "pending"
        assert transition.task.status == "asset_collected"
        assert transition.return_outcome.add_record.reference_number == f"OFFBOARD-{task.id}"
        assert transition.return_outcome.add_record.notes == "Auto-returned via offboarding task: Collect laptop"
        assert _reload(db_session, Item, item.id).current_location_type == "warehouse"
        assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 5
        assert audit.actions()[-2:] == [RETURN_ITEM, OFFBOARDING_TASK_UPDATE]

    def test_item_collection_without_transfer_warns(self, db_session, workflow):
        warehouse = make_warehouse(db_session)
        person = make_person(db_session)
        item = make_item(db_session, warehouse)
        task = workflow.create_task("item_collection", "Collect", person.id, item_id=item.id).value

        result = workflow.advance_task(task.id, "asset_collected")

        assert result.ok
        assert result.warnings == (WARNING_NO_ACTIVE_TRANSFER,)
        assert result.value.return_outcome is None
        assert db_session.query(AddRecord).count() == 0

    def test_skipping_states_is_rejected(self, db_session, workflow, issued):
        _, person, item = issued
        task = workflow.create_task("item_collection", "Collect", person.id, item_id=item.id).value

        result = workflow.advance_task(task.id, "completed")

        assert isinstance(result.error, InvalidStateError)
        assert _reload(db_session, Item, item.id).current_location_type == "person"

    def test_full_item_collection_path_stamps_completion(self, db_session, workflow, issued):
        _, person, item = issued
        task = workflow.create_task("item_collection", "Collect", person.id, item_id=item.id).value

        for status in ("asset_collected", "return_form_filled", "completed"):
            assert workflow.advance_task(task.id, status).ok

        stored = workflow.store.get_task(task.id)
        assert stored.status == "completed"
        assert stored.completed_date is not None
        assert isinstance(workflow.advance_task(task.id, "pending").error, InvalidStateError)

    def test_repeating_current_status_is_noop(self, db_session, workflow, issued, audit):
        _, person, item = issued
        task = workflow.create_task("item_collection", "Collect", person.id, item_id=item.id).value
        before = len(audit.events)

        result = workflow.advance_task(task.id, "pending", notes="waiting on courier")

        assert result.ok
        assert not result.value.changed
        assert workflow.store.get_task(task.id).notes == "waiting on courier"
        assert len(audit.events) == before

    def test_access_revocation_task_revokes_on_grant(self, db_session, workflow, issued):
        _, person, _ = issued
        access = make_access(db_session, person, "ERP")
        task = workflow.create_task("access_revocation", "Remove ERP", person.id, access_id=access.id).value

        for status in ("ticket_raised", "in_progress"):
            assert workflow.advance_task(task.id, status).ok
        assert _reload(db_session, EmployeeAccess, access.id).status == "active"

        result = workflow.advance_task(task.id, "revoke_granted", actor=Actor(name="iam"))

        assert result.value.revoked_access.id == access.id
        assert _reload(db_session, EmployeeAccess, access.id).status == "revoked"

    def test_create_task_validation(self, db_session, workflow):
        person = make_person(db_session)

        assert isinstance(workflow.create_task("laptop_swap", "x", person.id).error, InvalidStateError)
        assert isinstance(workflow.create_task("item_collection", "x", person.id).error, InvalidStateError)
        assert isinstance(workflow.create_task("item_collection", "x", person.id, item_id=77).error, NotFoundError)
        assert isinstance(workflow.create_task("access_revocation", "x", 404).error, NotFoundError)

    def test_access_revocation_task_must_target_own_access(self, db_session, workflow):
        person = make_person(db_session)
        other = make_person(db_session, title="Other")
        access = make_access(db_session, other)

        result = workflow.create_task("access_revocation", "Revoke", person.id, access_id=access.id)

        assert isinstance(result.error, InvalidStateError)
        assert _reload(db_session, EmployeeAccess, access.id).status == "active"

    def test_complete_rejects_other_task_types(self, db_session, workflow):
        person = make_person(db_session)
        access = make_access(db_session, person)
        task = workflow.create_task("access_revocation", "Revoke", person.id, access_id=access.id).value

        assert isinstance(workflow.complete_item_collection_task(task.id).error, InvalidStateError)
        assert isinstance(workflow.complete_item_collection_task(999).error, NotFoundError)
