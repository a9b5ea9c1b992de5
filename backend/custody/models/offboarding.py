from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TASK_TYPE_ITEM_COLLECTION = "item_collection"
TASK_TYPE_ACCESS_REVOCATION = "access_revocation"

ACCESS_STATUS_ACTIVE = "active"
ACCESS_STATUS_REVOKED = "revoked"


class EmployeeAccess(db.Model):
    """
    A system access granted to a person (VPN, mailbox, badge, ...).

    Only the grant/revoke lifecycle lives here; access catalog management
    is handled elsewhere.
    """
    __tablename__ = "employee_accesses"
    __table_args__ = (
        db.Index("ix_employee_accesses_person_status", "people_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    people_id = db.Column(db.Integer, db.ForeignKey("people.id"), nullable=False, index=True)
    access_name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(120), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ACCESS_STATUS_ACTIVE)
    granted_by = db.Column(db.String(100), nullable=True)
    granted_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    revoked_by = db.Column(db.String(100), nullable=True)
    revoked_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    person = db.relationship("Person", backref=db.backref("accesses", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "people_id": self.people_id,
            "access_name": self.access_name,
            "category": self.category,
            "status": self.status,
            "granted_by": self.granted_by,
            "granted_date": to_utc_z(self.granted_date),
            "revoked_by": self.revoked_by,
            "revoked_date": to_utc_z(self.revoked_date),
            "notes": self.notes,
        }


class DemobRecord(db.Model):
    """
    One demobilization event for a person.

    items_returned / accesses_revoked keep the checklist exactly as submitted
    ([{id, title, serialNumber, checked}, ...]); outcomes records what
    happened to each checked entry. Only signed_document_url and
    is_completed may be patched after creation.
    """
    __tablename__ = "demob_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    people_id = db.Column(db.Integer, db.ForeignKey("people.id"), nullable=False, index=True)

    items_returned = db.Column(db.JSON, nullable=False, default=list)
    accesses_revoked = db.Column(db.JSON, nullable=False, default=list)
    outcomes = db.Column(db.JSON, nullable=False, default=list)

    demob_performed_by = db.Column(db.String(100), nullable=False)
    demob_performed_by_email = db.Column(db.String(100), nullable=True)

    signed_document_url = db.Column(db.String(512), nullable=True)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    person = db.relationship("Person", backref=db.backref("demob_records", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "people_id": self.people_id,
            "items_returned": self.items_returned,
            "accesses_revoked": self.accesses_revoked,
            "outcomes": self.outcomes,
            "demob_performed_by": self.demob_performed_by,
            "demob_performed_by_email": self.demob_performed_by_email,
            "signed_document_url": self.signed_document_url,
            "is_completed": self.is_completed,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OffboardingTask(db.Model):
    """
    A unit of offboarding work for a departing person.

    STATE MACHINES (enforced in offboarding_lifecycle):
        item_collection:   pending -> asset_collected -> return_form_filled -> completed
        access_revocation: pending -> ticket_raised -> in_progress -> revoke_granted -> completed
    """
    __tablename__ = "offboarding_tasks"
    __table_args__ = (
        db.Index("ix_offboarding_tasks_person_status", "people_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    task_type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(16), nullable=False, default="medium")
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    assigned_to = db.Column(db.String(100), nullable=True)

    people_id = db.Column(db.Integer, db.ForeignKey("people.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True, index=True)
    access_id = db.Column(db.Integer, db.ForeignKey("employee_accesses.id"), nullable=True, index=True)

    status = db.Column(db.String(32), nullable=False, default="pending")
    notes = db.Column(db.Text, nullable=True)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    person = db.relationship("Person", backref=db.backref("offboarding_tasks", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_type": self.task_type,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "due_date": to_utc_z(self.due_date),
            "assigned_to": self.assigned_to,
            "people_id": self.people_id,
            "item_id": self.item_id,
            "access_id": self.access_id,
            "status": self.status,
            "notes": self.notes,
            "completed_date": to_utc_z(self.completed_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
