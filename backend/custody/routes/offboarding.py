# backend/custody/routes/offboarding.py
"""
Offboarding API routes: demobilization, demob records, offboarding tasks, employee accesses.
"""
from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors, ledger_services, request_actor, result_response
from ..models import EmployeeAccess, OffboardingTask
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    validate_checklist,
    validate_payload,
)


offboarding_bp = Blueprint("offboarding", __name__, url_prefix="/api/offboarding")

TASK_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "task_type", "title", "description", "priority", "due_date",
        "assigned_to", "people_id", "item_id", "access_id",
    },
    required_on_create={"task_type", "title", "people_id"},
)

TASK_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"status", "notes", "completed_date"},
)

ACCESS_GRANT_POLICY = ModelValidationPolicy(
    writable_fields={"people_id", "access_name", "category", "granted_by", "notes"},
    required_on_create={"people_id", "access_name"},
)

_ACTOR_FIELDS = ("performed_by", "performed_by_email")


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _without_actor(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if k not in _ACTOR_FIELDS}


@offboarding_bp.post("/demobilize")
@handles_ledger_errors
def demobilize():
    """
    Demobilize a person: return checked items, revoke checked accesses,
    write the DemobRecord and set the person inactive.

    Request body:
    {
        "people_id": int,
        "performed_by": str, "performed_by_email": str?,
        "items_returned": [{"id": int, "title": str, "serialNumber": str, "checked": bool}],
        "accesses_revoked": [{"id": int, "name": str, "checked": bool}]
    }

    Returns:
        201: {record, outcomes}
        404: person not found
        409: person already inactive
    """
    payload = _body()
    if payload.get("people_id") is None:
        raise ValidationError("Missing required fields: people_id")
    if not payload.get("performed_by"):
        raise ValidationError("Missing required fields: performed_by")
    person_id = coerce_int("people_id", payload["people_id"])
    items = validate_checklist(payload.get("items_returned"), "items_returned")
    accesses = validate_checklist(payload.get("accesses_revoked"), "accesses_revoked")

    result = ledger_services().workflow.demobilize(
        person_id, items, accesses, actor=request_actor(payload)
    )
    return result_response(result, 201)


@offboarding_bp.get("/demob-records")
@handles_ledger_errors
def list_demob_records():
    person_id = request.args.get("people_id")
    if person_id is not None:
        person_id = coerce_int("people_id", person_id)
    records = ledger_services().workflow.list_demob_records(person_id)
    return jsonify([r.to_dict() for r in records]), 200


@offboarding_bp.patch("/demob-records/<int:record_id>")
@handles_ledger_errors
def update_demob_record(record_id: int):
    """Only signed_document_url and is_completed may change."""
    payload = _body()
    patch = _without_actor(payload)
    unknown = set(patch) - {"signed_document_url", "is_completed"}
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    is_completed = patch.get("is_completed")
    if is_completed is not None and not isinstance(is_completed, bool):
        raise ValidationError("is_completed must be a boolean")

    result = ledger_services().workflow.update_demob_record(
        record_id,
        signed_document_url=patch.get("signed_document_url"),
        is_completed=is_completed,
        actor=request_actor(payload),
    )
    return result_response(result)


@offboarding_bp.post("/tasks")
@handles_ledger_errors
def create_task():
    payload = _body()
    patch = validate_payload(
        model=OffboardingTask,
        payload=_without_actor(payload),
        policy=TASK_CREATE_POLICY,
        partial=False,
    )
    result = ledger_services().workflow.create_task(
        patch["task_type"],
        patch["title"],
        patch["people_id"],
        item_id=patch.get("item_id"),
        access_id=patch.get("access_id"),
        priority=patch.get("priority") or "medium",
        due_date=patch.get("due_date"),
        assigned_to=patch.get("assigned_to"),
        description=patch.get("description"),
        actor=request_actor(payload),
    )
    return result_response(result, 201)


@offboarding_bp.patch("/tasks/<int:task_id>")
@handles_ledger_errors
def update_task(task_id: int):
    """
    Advance a task one step along its state machine.

    Moving an item_collection task to asset_collected returns the item to
    the warehouse it was issued from; moving an access_revocation task to
    revoke_granted revokes the linked access.

    Returns:
        200: {task, previous_status, return, revoked_access}
        404: task not found
        409: illegal transition
    """
    payload = _body()
    patch = validate_payload(
        model=OffboardingTask,
        payload=_without_actor(payload),
        policy=TASK_UPDATE_POLICY,
        partial=True,
    )
    if not patch.get("status"):
        raise ValidationError("Missing required fields: status")

    result = ledger_services().workflow.advance_task(
        task_id,
        patch["status"],
        notes=patch.get("notes"),
        completed_date=patch.get("completed_date"),
        actor=request_actor(payload),
    )
    return result_response(result)


@offboarding_bp.post("/accesses")
@handles_ledger_errors
def grant_access():
    payload = _body()
    patch = validate_payload(
        model=EmployeeAccess,
        payload=_without_actor(payload),
        policy=ACCESS_GRANT_POLICY,
        partial=False,
    )
    actor = request_actor(payload)
    result = ledger_services().access.grant(
        patch["access_name"],
        patch["people_id"],
        granted_by=patch.get("granted_by") or actor.name,
        category=patch.get("category"),
        notes=patch.get("notes"),
        actor=actor,
    )
    return result_response(result, 201)


@offboarding_bp.patch("/accesses/<int:access_id>/revoke")
@handles_ledger_errors
def revoke_access(access_id: int):
    payload = _body()
    actor = request_actor(payload)
    result = ledger_services().access.revoke(
        access_id,
        revoked_by=payload.get("revoked_by") or actor.name,
        notes=payload.get("notes"),
        actor=actor,
    )
    return result_response(result)
