from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


LOCATION_WAREHOUSE = "warehouse"
LOCATION_PERSON = "person"

PERSON_STATUS_ACTIVE = "active"
PERSON_STATUS_INACTIVE = "inactive"


class Warehouse(db.Model):
    """
    A stock-holding location.

    stock_qty is a DENORMALIZED counter of units currently held here. It is
    never recomputed on read; every ledger operation that moves stock in or
    out of the warehouse adjusts it in the same transaction.
    """
    __tablename__ = "warehouses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(120), nullable=False, unique=True)
    location = db.Column(db.String(255), nullable=True)
    warehouse_type = db.Column(db.String(32), nullable=True)
    description = db.Column(db.Text, nullable=True)

    stock_qty = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} title={self.title!r} stock_qty={self.stock_qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "location": self.location,
            "warehouse_type": self.warehouse_type,
            "description": self.description,
            "stock_qty": self.stock_qty,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Person(db.Model):
    """
    An employee who can hold items.

    stock_qty mirrors the number of units currently checked out to this
    person (sum of their active TransferRecord quantities). Like
    Warehouse.stock_qty it is maintained by the ledger engine, not computed.

    status only becomes 'inactive' through demobilization.
    """
    __tablename__ = "people"
    __table_args__ = (
        db.Index("ix_people_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    department = db.Column(db.String(120), nullable=True)
    topology = db.Column(db.String(64), nullable=True)
    aow = db.Column(db.String(120), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PERSON_STATUS_ACTIVE)
    contract_end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    stock_qty = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Person id={self.id} title={self.title!r} status={self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status == PERSON_STATUS_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "email": self.email,
            "department": self.department,
            "topology": self.topology,
            "aow": self.aow,
            "status": self.status,
            "contract_end_date": to_utc_z(self.contract_end_date),
            "stock_qty": self.stock_qty,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Item(db.Model):
    """
    A uniquely serialized physical asset.

    CUSTODY INVARIANT:
    - current_location_type == 'person'    <=> assigned_to_person_id IS NOT NULL
    - current_location_type == 'warehouse' <=> assigned_to_person_id IS NULL

    warehouse_id is the home warehouse: where the item sits when in warehouse
    custody, and where it was issued from while a person holds it.

    quantity is a running owned-units counter (1 for serialized assets at
    intake); returns and stock additions increase it.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_location_assignee", "current_location_type", "assigned_to_person_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    serial_number = db.Column(db.String(128), nullable=True, unique=True)
    asset_tag = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)

    current_location_type = db.Column(db.String(16), nullable=False, default=LOCATION_WAREHOUSE)
    assigned_to_person_id = db.Column(db.Integer, db.ForeignKey("people.id"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse", backref=db.backref("items", lazy=True))
    assigned_to = db.relationship("Person", backref=db.backref("assigned_items", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Item id={self.id} serial={self.serial_number!r} "
            f"location={self.current_location_type} assignee={self.assigned_to_person_id}>"
        )

    @property
    def is_person_held(self) -> bool:
        return self.current_location_type == LOCATION_PERSON

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "serial_number": self.serial_number,
            "asset_tag": self.asset_tag,
            "model": self.model,
            "notes": self.notes,
            "quantity": self.quantity,
            "current_location_type": self.current_location_type,
            "assigned_to_person_id": self.assigned_to_person_id,
            "warehouse_id": self.warehouse_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
