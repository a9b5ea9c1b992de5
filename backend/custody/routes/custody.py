# backend/custody/routes/custody.py
"""
Custody API routes: assign, return, warehouse transfer, stock intake.

All bodies are JSON. performed_by / performed_by_email in the body name the
actor recorded in the audit trail.
"""
from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors, ledger_services, request_actor, result_response
from ..models import Item
from ..validation import (
    LedgerRequestPolicy,
    ModelValidationPolicy,
    enforce_positive_quantity,
    validate_ledger_request,
    validate_payload,
)


custody_bp = Blueprint("custody", __name__, url_prefix="/api/custody")

_TEXT = {"reference_number", "notes"}

ASSIGN_POLICY = LedgerRequestPolicy(
    int_fields={"item_id", "person_id", "giving_warehouse_id", "quantity"},
    required={"item_id", "person_id", "giving_warehouse_id", "quantity"},
    text_fields=_TEXT,
)

RETURN_POLICY = LedgerRequestPolicy(
    int_fields={"item_id", "person_id", "receiving_warehouse_id", "quantity"},
    required={"item_id", "person_id", "receiving_warehouse_id", "quantity"},
    text_fields=_TEXT,
)

WAREHOUSE_TRANSFER_POLICY = LedgerRequestPolicy(
    int_fields={"item_id", "giving_warehouse_id", "receiving_warehouse_id", "quantity"},
    required={"item_id", "giving_warehouse_id", "receiving_warehouse_id", "quantity"},
    text_fields=_TEXT,
)

ADD_STOCK_POLICY = LedgerRequestPolicy(
    int_fields={"item_id", "receiving_warehouse_id", "quantity"},
    required={"item_id", "receiving_warehouse_id", "quantity"},
    text_fields=_TEXT,
)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"title", "serial_number", "asset_tag", "model", "notes", "warehouse_id"},
    required_on_create={"title", "warehouse_id"},
)

_ACTOR_FIELDS = ("performed_by", "performed_by_email")


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _without_actor(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if k not in _ACTOR_FIELDS}


@custody_bp.post("/assign")
@handles_ledger_errors
def assign_item():
    """
    Assign an item from a warehouse to a person.

    Request body:
    {
        "item_id": int, "person_id": int, "giving_warehouse_id": int,
        "quantity": int, "reference_number": str?, "notes": str?
    }

    Returns:
        201: active TransferRecord
        400: invalid request
        404: item / person / warehouse not found
        409: insufficient stock, item already assigned, inactive person
    """
    payload = _body()
    data = validate_ledger_request(payload, ASSIGN_POLICY)
    enforce_positive_quantity(data)

    result = ledger_services().engine.assign_item(
        data["item_id"],
        data["person_id"],
        data["giving_warehouse_id"],
        data["quantity"],
        data.get("reference_number"),
        data.get("notes"),
        actor=request_actor(payload),
    )
    return result_response(result, 201)


@custody_bp.post("/return")
@handles_ledger_errors
def return_item():
    """
    Return an item from a person to a warehouse.

    Returns:
        201: {add_record, closed_transfer} (wrapped with "warnings" when no
             active transfer record was found)
        404: item / person / warehouse not found
    """
    payload = _body()
    data = validate_ledger_request(payload, RETURN_POLICY)
    enforce_positive_quantity(data)

    result = ledger_services().engine.return_item(
        data["item_id"],
        data["person_id"],
        data["receiving_warehouse_id"],
        data["quantity"],
        data.get("reference_number"),
        data.get("notes"),
        actor=request_actor(payload),
    )
    return result_response(result, 201)


@custody_bp.post("/warehouse-transfer")
@handles_ledger_errors
def transfer_between_warehouses():
    payload = _body()
    data = validate_ledger_request(payload, WAREHOUSE_TRANSFER_POLICY)
    enforce_positive_quantity(data)

    result = ledger_services().engine.transfer_between_warehouses(
        data["item_id"],
        data["giving_warehouse_id"],
        data["receiving_warehouse_id"],
        data["quantity"],
        data.get("reference_number"),
        data.get("notes"),
        actor=request_actor(payload),
    )
    return result_response(result, 201)


@custody_bp.post("/items")
@handles_ledger_errors
def register_item():
    """Register a new serialized item into a warehouse (warehouse stock +1)."""
    payload = _body()
    patch = validate_payload(
        model=Item,
        payload=_without_actor(payload),
        policy=ITEM_POLICY,
        partial=False,
    )

    result = ledger_services().engine.register_item(
        patch["title"],
        patch["warehouse_id"],
        serial_number=patch.get("serial_number") or None,
        asset_tag=patch.get("asset_tag"),
        model=patch.get("model"),
        notes=patch.get("notes"),
        actor=request_actor(payload),
    )
    return result_response(result, 201)


@custody_bp.post("/add-stock")
@handles_ledger_errors
def add_stock():
    payload = _body()
    data = validate_ledger_request(payload, ADD_STOCK_POLICY)
    enforce_positive_quantity(data)

    result = ledger_services().engine.add_warehouse_stock(
        data["item_id"],
        data["receiving_warehouse_id"],
        data["quantity"],
        data.get("reference_number"),
        data.get("notes"),
        actor=request_actor(payload),
    )
    return result_response(result, 201)


@custody_bp.get("/people/<int:person_id>/holdings")
@handles_ledger_errors
def person_holdings(person_id: int):
    """Active transfer records for a person, newest first."""
    result = ledger_services().engine.holdings(person_id)
    if not result.ok:
        return result_response(result)
    return jsonify({"person_id": person_id, "holdings": [r.to_dict() for r in result.value]}), 200
