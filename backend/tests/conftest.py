"""
Pytest fixtures for custody backend tests.

Provides the in-memory application, a clean session per test, entity
factories and a ledger service graph with a recording audit notifier.
"""

import pytest

from custody import create_app
from custody.extensions import db
from custody.models import EmployeeAccess, Item, Person, TransferRecord, Warehouse
from custody.models.master_data import LOCATION_PERSON, LOCATION_WAREHOUSE
from custody.services.factory import build_ledger_services


class RecordingAuditNotifier:
    """Collects audit calls in memory."""

    def __init__(self):
        self.events = []

    def record(self, action, entity_type, entity_id, entity_name, performed_by,
               performed_by_email=None, details=None, request_meta=None):
        self.events.append({
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "entity_name": entity_name,
            "performed_by": performed_by,
            "performed_by_email": performed_by_email,
            "details": details,
        })

    def actions(self):
        return [e["action"] for e in self.events]


class FailingAuditNotifier:
    def record(self, *args, **kwargs):
        raise RuntimeError("audit sink down")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0.0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def audit():
    return RecordingAuditNotifier()


@pytest.fixture(scope='function')
def services(app, db_session, audit):
    """Engine / workflow / access service wired to the test session."""
    return build_ledger_services(db_session, app.config, audit=audit)


@pytest.fixture(scope='function')
def engine(services):
    return services.engine


@pytest.fixture(scope='function')
def workflow(services):
    return services.workflow


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def make_warehouse(session, title="Main Store", stock_qty=5):
    warehouse = Warehouse(title=title, stock_qty=stock_qty)
    session.add(warehouse)
    session.commit()
    return warehouse


def make_person(session, title="Jane Doe", email=None, stock_qty=0, status="active"):
    person = Person(title=title, email=email, stock_qty=stock_qty, status=status)
    session.add(person)
    session.commit()
    return person


def make_item(session, warehouse, title="Laptop", serial_number=None, quantity=1):
    item = Item(
        title=title,
        serial_number=serial_number,
        quantity=quantity,
        current_location_type=LOCATION_WAREHOUSE,
        warehouse_id=warehouse.id if warehouse is not None else None,
    )
    session.add(item)
    session.commit()
    return item


def make_imported_assignment(session, item, person, stock_delta=1):
    """Item marked person-held with no ledger record (bulk-import drift)."""
    item.current_location_type = LOCATION_PERSON
    item.assigned_to_person_id = person.id
    person.stock_qty = (person.stock_qty or 0) + stock_delta
    session.commit()
    return item


def make_access(session, person, access_name="VPN"):
    access = EmployeeAccess(people_id=person.id, access_name=access_name, status="active")
    session.add(access)
    session.commit()
    return access


def active_transfers(session, item_id):
    return session.query(TransferRecord).filter_by(item_id=item_id, status="active").all()
