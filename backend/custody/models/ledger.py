from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TRANSFER_STATUS_ACTIVE = "active"
TRANSFER_STATUS_RETURNED = "returned"


class TransferRecord(db.Model):
    """
    Custody ledger entry: warehouse -> person.

    LEDGER RULES:
    - Created 'active' on assignment.
    - status is the only field ever mutated after creation ('active' -> 'returned').
    - Never deleted.
    - Exactly one 'active' record per person-held item. This is the source of
      truth for "who holds what, issued from where", independent of the
      denormalized Item/Person/Warehouse counters.
    """
    __tablename__ = "transfer_records"
    __table_args__ = (
        db.Index("ix_transfer_records_item_person_status", "item_id", "people_id", "status"),
        db.Index("ix_transfer_records_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    people_id = db.Column(db.Integer, db.ForeignKey("people.id"), nullable=False, index=True)
    giving_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    transfer_stock_qty = db.Column(db.Integer, nullable=False)
    reference_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_ACTIVE)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item", backref=db.backref("transfer_records", lazy=True))
    person = db.relationship("Person", backref=db.backref("transfer_records", lazy=True))
    giving_warehouse = db.relationship("Warehouse")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<TransferRecord id={self.id} item={self.item_id} person={self.people_id} "
            f"qty={self.transfer_stock_qty} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "people_id": self.people_id,
            "giving_warehouse_id": self.giving_warehouse_id,
            "transfer_stock_qty": self.transfer_stock_qty,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "status": self.status,
            "returned_at": to_utc_z(self.returned_at),
            "created_at": to_utc_z(self.created_at),
        }


class AddRecord(db.Model):
    """
    Custody ledger entry: person -> warehouse (a return).

    Append-only. Also written for system-generated returns (demobilization,
    offboarding) with synthetic reference numbers (DEMOB-*, OFFBOARD-*).
    """
    __tablename__ = "add_records"
    __table_args__ = (
        db.Index("ix_add_records_item_created", "item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    people_id = db.Column(db.Integer, db.ForeignKey("people.id"), nullable=True, index=True)
    receiving_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    # Set when the return closed an active assignment.
    closed_transfer_id = db.Column(db.Integer, db.ForeignKey("transfer_records.id"), nullable=True)

    add_stock_qty = db.Column(db.Integer, nullable=False)
    reference_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")
    person = db.relationship("Person")
    receiving_warehouse = db.relationship("Warehouse")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "people_id": self.people_id,
            "receiving_warehouse_id": self.receiving_warehouse_id,
            "closed_transfer_id": self.closed_transfer_id,
            "add_stock_qty": self.add_stock_qty,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class WarehouseTransferRecord(db.Model):
    """Stock move between two warehouses; no person involved. Append-only."""
    __tablename__ = "warehouse_transfer_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    giving_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    receiving_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    transfer_stock_qty = db.Column(db.Integer, nullable=False)
    reference_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "giving_warehouse_id": self.giving_warehouse_id,
            "receiving_warehouse_id": self.receiving_warehouse_id,
            "transfer_stock_qty": self.transfer_stock_qty,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class WarehouseAddRecord(db.Model):
    """New stock introduced into a warehouse (no custody change). Append-only."""
    __tablename__ = "warehouse_add_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    receiving_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    add_stock_qty = db.Column(db.Integer, nullable=False)
    reference_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "receiving_warehouse_id": self.receiving_warehouse_id,
            "add_stock_qty": self.add_stock_qty,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
