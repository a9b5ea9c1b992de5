from custody.models import AuditEvent
from custody.services.audit_service import (
    DatabaseAuditNotifier,
    RequestMetadata,
    emit,
    list_audit_events,
)


def test_database_notifier_truncates_long_fields(db_session):
    notifier = DatabaseAuditNotifier(db_session)

    notifier.record(
        "ASSIGN_ITEM",
        "Item",
        7,
        "x" * 500,
        "p" * 300,
        "e" * 300,
        {"quantity": 1},
        RequestMetadata(ip_address="1" * 80, user_agent="u" * 400),
    )

    event = db_session.query(AuditEvent).one()
    assert event.entity_id == "7"
    assert len(event.entity_name) == 200
    assert len(event.performed_by) == 100
    assert len(event.performed_by_email) == 100
    assert len(event.ip_address) == 45
    assert len(event.user_agent) == 255
    assert event.details == {"quantity": 1}


def test_missing_performer_recorded_as_system(db_session):
    DatabaseAuditNotifier(db_session).record("RECONCILE", "Item", None, None, None)

    event = db_session.query(AuditEvent).one()
    assert event.performed_by == "system"
    assert event.entity_id is None


def test_emit_swallows_notifier_errors():
    class Broken:
        def record(self, *args, **kwargs):
            raise ConnectionError("sink unreachable")

    emit(Broken(), "ASSIGN_ITEM", "Item", 1, "Laptop")


def test_list_filters_newest_first(db_session):
    notifier = DatabaseAuditNotifier(db_session)
    notifier.record("ASSIGN_ITEM", "Item", 1, "Laptop", "ops")
    notifier.record("RETURN_ITEM", "Item", 1, "Laptop", "ops")
    notifier.record("ASSIGN_ITEM", "Item", 2, "Phone", "ops")

    events = list_audit_events(db_session, entity_type="Item", entity_id=1)

    assert [e.action for e in events] == ["RETURN_ITEM", "ASSIGN_ITEM"]
    assert len(list_audit_events(db_session, action="ASSIGN_ITEM", limit=1)) == 1
