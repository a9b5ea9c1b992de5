"""
Stock ledger engine against a real (in-memory) database.

Covers the custody transitions, counter conservation, custody exclusivity
and the audit fire-and-forget contract.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from custody.errors import (
    ConcurrencyConflictError,
    EngineUnavailableError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
)
from custody.models import AddRecord, Item, Person, TransferRecord, Warehouse, WarehouseTransferRecord
from custody.services.audit_service import ASSIGN_ITEM, RETURN_ITEM, Actor
from custody.services.factory import build_ledger_services
from custody.services.results import WARNING_NO_ACTIVE_TRANSFER

from conftest import (
    FailingAuditNotifier,
    active_transfers,
    make_item,
    make_person,
    make_warehouse,
)


def _reload(session, model, entity_id):
    session.expire_all()
    return session.get(model, entity_id)


def test_assign_then_return_round_trip(db_session, engine, audit):
    warehouse = make_warehouse(db_session, stock_qty=5)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)

    result = engine.assign_item(item.id, person.id, warehouse.id, 3, "REF-1", "issued")
    assert result.ok
    record = result.value
    assert record.status == "active"
    assert record.transfer_stock_qty == 3

    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 2
    assert _reload(db_session, Person, person.id).stock_qty == 3
    item_row = _reload(db_session, Item, item.id)
    assert item_row.current_location_type == "person"
    assert item_row.assigned_to_person_id == person.id
    assert len(active_transfers(db_session, item.id)) == 1

    result = engine.return_item(item.id, person.id, warehouse.id, 3, "RET-1")
    assert result.ok
    assert result.warnings == ()
    assert result.value.closed_transfer.id == record.id

    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 5
    assert _reload(db_session, Person, person.id).stock_qty == 0
    item_row = _reload(db_session, Item, item.id)
    assert item_row.current_location_type == "warehouse"
    assert item_row.assigned_to_person_id is None
    assert _reload(db_session, TransferRecord, record.id).status == "returned"
    assert db_session.query(AddRecord).count() == 1

    assert audit.actions() == [ASSIGN_ITEM, RETURN_ITEM]


def test_assign_exact_stock_is_rejected_without_writes(db_session, engine, audit):
    warehouse = make_warehouse(db_session, stock_qty=5)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)

    result = engine.assign_item(item.id, person.id, warehouse.id, 5)

    assert not result.ok
    assert isinstance(result.error, InsufficientStockError)
    assert result.error.http_status == 409
    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 5
    assert _reload(db_session, Person, person.id).stock_qty == 0
    assert _reload(db_session, Item, item.id).current_location_type == "warehouse"
    assert db_session.query(TransferRecord).count() == 0
    assert audit.events == []


def test_lenient_stock_check_allows_exact_stock(app, db_session, audit):
    config = dict(app.config, LEDGER_STRICT_STOCK_CHECK=False)
    engine = build_ledger_services(db_session, config, audit=audit).engine
    warehouse = make_warehouse(db_session, stock_qty=2)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)

    result = engine.assign_item(item.id, person.id, warehouse.id, 2)

    assert result.ok
    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 0


@pytest.mark.parametrize("missing", ["warehouse", "item", "person"])
def test_assign_missing_entity_is_not_found(db_session, engine, missing):
    warehouse = make_warehouse(db_session)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)
    ids = {"warehouse": warehouse.id, "item": item.id, "person": person.id}
    ids[missing] = 9999

    result = engine.assign_item(ids["item"], ids["person"], ids["warehouse"], 1)

    assert not result.ok
    assert isinstance(result.error, NotFoundError)
    assert result.error.entity_id == 9999


def test_assign_already_assigned_item_is_invalid_state(db_session, engine):
    warehouse = make_warehouse(db_session, stock_qty=10)
    first = make_person(db_session, title="First")
    second = make_person(db_session, title="Second")
    item = make_item(db_session, warehouse)
    assert engine.assign_item(item.id, first.id, warehouse.id, 1).ok

    result = engine.assign_item(item.id, second.id, warehouse.id, 1)

    assert not result.ok
    assert isinstance(result.error, InvalidStateError)
    assert len(active_transfers(db_session, item.id)) == 1
    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 9


def test_assign_to_inactive_person_is_invalid_state(db_session, engine):
    warehouse = make_warehouse(db_session)
    person = make_person(db_session, status="inactive")
    item = make_item(db_session, warehouse)

    result = engine.assign_item(item.id, person.id, warehouse.id, 1)

    assert isinstance(result.error, InvalidStateError)


def test_return_without_active_transfer_warns(db_session, engine, audit):
    warehouse = make_warehouse(db_session, stock_qty=1)
    person = make_person(db_session, stock_qty=1)
    item = make_item(db_session, warehouse)

    result = engine.return_item(item.id, person.id, warehouse.id, 1)

    assert result.ok
    assert result.warnings == (WARNING_NO_ACTIVE_TRANSFER,)
    assert result.value.closed_transfer is None
    assert result.value.add_record.closed_transfer_id is None
    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 2
    assert audit.events[-1]["details"]["warnings"] == [WARNING_NO_ACTIVE_TRANSFER]


def test_return_never_drives_person_stock_negative(db_session, engine):
    warehouse = make_warehouse(db_session, stock_qty=10)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)
    assert engine.assign_item(item.id, person.id, warehouse.id, 2).ok
    person_row = _reload(db_session, Person, person.id)
    person_row.stock_qty = 1  # drifted counter
    db_session.commit()

    result = engine.return_item(item.id, person.id, warehouse.id, 2)

    assert result.ok
    assert _reload(db_session, Person, person.id).stock_qty == 0


def test_return_closes_most_recent_active_record(db_session, engine):
    warehouse = make_warehouse(db_session, stock_qty=10)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)
    older = TransferRecord(item_id=item.id, people_id=person.id, giving_warehouse_id=warehouse.id,
                           transfer_stock_qty=1, status="active")
    db_session.add(older)
    db_session.commit()
    newer = TransferRecord(item_id=item.id, people_id=person.id, giving_warehouse_id=warehouse.id,
                           transfer_stock_qty=1, status="active")
    db_session.add(newer)
    db_session.commit()

    result = engine.return_item(item.id, person.id, warehouse.id, 1)

    assert result.value.closed_transfer.id == newer.id
    assert _reload(db_session, TransferRecord, older.id).status == "active"


def test_return_missing_warehouse_is_not_found(db_session, engine):
    warehouse = make_warehouse(db_session)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)

    result = engine.return_item(item.id, person.id, 4242, 1)

    assert isinstance(result.error, NotFoundError)
    assert result.error.entity == "Warehouse"


def test_counter_conservation_over_assign_return_sequence(db_session, engine):
    main = make_warehouse(db_session, title="Main", stock_qty=6)
    spare = make_warehouse(db_session, title="Spare", stock_qty=4)
    alice = make_person(db_session, title="Alice")
    bob = make_person(db_session, title="Bob")
    items = [make_item(db_session, main, title=f"Phone {n}") for n in range(3)]

    def total():
        db_session.expire_all()
        warehouses = sum(w.stock_qty for w in db_session.query(Warehouse))
        people = sum(p.stock_qty for p in db_session.query(Person))
        return warehouses + people

    baseline = total()
    assert engine.assign_item(items[0].id, alice.id, main.id, 1).ok
    assert engine.assign_item(items[1].id, bob.id, spare.id, 2).ok
    assert total() == baseline
    assert engine.return_item(items[0].id, alice.id, spare.id, 1).ok
    assert engine.assign_item(items[2].id, alice.id, main.id, 1).ok
    assert engine.return_item(items[1].id, bob.id, main.id, 2).ok
    assert not engine.assign_item(items[0].id, bob.id, spare.id, 99).ok
    assert total() == baseline


def test_custody_exclusivity_holds_after_transitions(db_session, engine):
    warehouse = make_warehouse(db_session, stock_qty=10)
    alice = make_person(db_session, title="Alice")
    bob = make_person(db_session, title="Bob")
    item = make_item(db_session, warehouse)

    engine.assign_item(item.id, alice.id, warehouse.id, 1)
    engine.return_item(item.id, alice.id, warehouse.id, 1)
    engine.assign_item(item.id, bob.id, warehouse.id, 1)

    db_session.expire_all()
    item_row = db_session.get(Item, item.id)
    active = active_transfers(db_session, item.id)
    assert item_row.current_location_type == "person"
    assert len(active) == 1
    assert item_row.assigned_to_person_id == active[0].people_id == bob.id


def test_transfer_between_warehouses(db_session, engine):
    main = make_warehouse(db_session, title="Main", stock_qty=5)
    spare = make_warehouse(db_session, title="Spare", stock_qty=0)
    item = make_item(db_session, main)

    result = engine.transfer_between_warehouses(item.id, main.id, spare.id, 2, "WT-1")

    assert result.ok
    assert isinstance(result.value, WarehouseTransferRecord)
    assert _reload(db_session, Warehouse, main.id).stock_qty == 3
    assert _reload(db_session, Warehouse, spare.id).stock_qty == 2
    item_row = _reload(db_session, Item, item.id)
    assert item_row.current_location_type == "warehouse"
    assert item_row.warehouse_id == spare.id


def test_transfer_between_warehouses_uses_strict_check(db_session, engine):
    main = make_warehouse(db_session, title="Main", stock_qty=2)
    spare = make_warehouse(db_session, title="Spare", stock_qty=0)
    item = make_item(db_session, main)

    result = engine.transfer_between_warehouses(item.id, main.id, spare.id, 2)

    assert isinstance(result.error, InsufficientStockError)


def test_register_item_increments_warehouse(db_session, engine, audit):
    warehouse = make_warehouse(db_session, stock_qty=0)

    result = engine.register_item("ThinkPad T14", warehouse.id, serial_number="SN-001")

    assert result.ok
    assert result.value.quantity == 1
    assert result.value.current_location_type == "warehouse"
    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 1
    assert audit.actions() == ["RECEIVE_ITEM"]

    duplicate = engine.register_item("Another", warehouse.id, serial_number="SN-001")
    assert isinstance(duplicate.error, InvalidStateError)
    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 1


def test_add_warehouse_stock(db_session, engine):
    warehouse = make_warehouse(db_session, stock_qty=1)
    item = make_item(db_session, warehouse)

    result = engine.add_warehouse_stock(item.id, warehouse.id, 4, "PO-7")

    assert result.ok
    assert result.value.add_stock_qty == 4
    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 5
    assert _reload(db_session, Item, item.id).quantity == 5


def test_holdings_lists_active_records(db_session, engine):
    warehouse = make_warehouse(db_session, stock_qty=10)
    person = make_person(db_session)
    first = make_item(db_session, warehouse, title="One")
    second = make_item(db_session, warehouse, title="Two")
    engine.assign_item(first.id, person.id, warehouse.id, 1)
    engine.assign_item(second.id, person.id, warehouse.id, 1)
    engine.return_item(first.id, person.id, warehouse.id, 1)

    result = engine.holdings(person.id)

    assert [r.item_id for r in result.value] == [second.id]
    assert isinstance(engine.holdings(9999).error, NotFoundError)


def test_audit_failure_never_rolls_back_ledger(app, db_session):
    engine = build_ledger_services(db_session, app.config, audit=FailingAuditNotifier()).engine
    warehouse = make_warehouse(db_session, stock_qty=5)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)

    result = engine.assign_item(item.id, person.id, warehouse.id, 1, actor=Actor(name="ops"))

    assert result.ok
    assert _reload(db_session, Warehouse, warehouse.id).stock_qty == 4
    assert len(active_transfers(db_session, item.id)) == 1


# ---------------------------------------------------------------------------
# Failed units of work leave nothing behind
# ---------------------------------------------------------------------------

def _assert_untouched(session, warehouse, person, item):
    # commit first so anything left pending in the session would be flushed
    session.commit()
    session.expire_all()
    assert session.get(Warehouse, warehouse.id).stock_qty == 5
    assert session.get(Person, person.id).stock_qty == 0
    stored = session.get(Item, item.id)
    assert stored.current_location_type == "warehouse"
    assert stored.assigned_to_person_id is None
    assert session.query(TransferRecord).count() == 0


@pytest.mark.parametrize("failure", [
    SQLAlchemyError("disk I/O error"),
    LookupError("row vanished"),
])
def test_store_failure_mid_assign_writes_nothing(db_session, engine, audit, monkeypatch, failure):
    warehouse = make_warehouse(db_session, stock_qty=5)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)

    def _fail(**fields):
        raise failure

    monkeypatch.setattr(engine.store, "create_transfer_record", _fail)

    with pytest.raises(EngineUnavailableError):
        engine.assign_item(item.id, person.id, warehouse.id, 1)

    _assert_untouched(db_session, warehouse, person, item)
    assert audit.events == []


def test_exhausted_stale_retries_become_concurrency_conflict(db_session, engine, audit, monkeypatch):
    warehouse = make_warehouse(db_session, stock_qty=5)
    person = make_person(db_session)
    item = make_item(db_session, warehouse)
    calls = []

    def _stale(**fields):
        calls.append(fields)
        raise StaleDataError("UPDATE statement on table 'items' expected to update 1 row(s); 0 were matched.")

    monkeypatch.setattr(engine.store, "create_transfer_record", _stale)

    result = engine.assign_item(item.id, person.id, warehouse.id, 1)

    assert isinstance(result.error, ConcurrencyConflictError)
    assert result.error.code == "CONCURRENT_MODIFICATION"
    assert len(calls) == engine.store.retry_attempts
    _assert_untouched(db_session, warehouse, person, item)
    assert audit.events == []


def test_vanished_row_during_update_is_not_found(db_session, engine):
    with pytest.raises(NotFoundError):
        engine.store.unit_of_work(lambda: engine.store.update_warehouse(31337, stock_qty=1))
